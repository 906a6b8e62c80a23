"""
SOCKS5 dynamic forwarding.

A local listener speaks enough of SOCKS version 5 (RFC 1928) to learn
where each client wants to go, then carries the connection through a
forwarded channel to that destination.

Supported subset:

- authentication method 0x00 (no authentication) only; it is selected
  regardless of what the client offers
- command CONNECT only; BIND and UDP ASSOCIATE get reply 0x07
- IPv4 and domain name destinations; IPv6 gets reply 0x08

Every reply, successful or not, is the 10-byte form with address type
IPv4 and a zeroed bound address and port.
"""

import asyncio
import ipaddress
import logging
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional

from ....core.exceptions import ChannelOpenFailure, SocksProtocolError
from ....core.interfaces.forwarding import ITransport
from .base import ListeningForwarder
from .splice import DEFAULT_BUFFER_SIZE, close_writer, splice

logger = logging.getLogger(__name__)

SOCKS_VERSION = 0x05
METHOD_NO_AUTH = 0x00

CMD_CONNECT = 0x01
CMD_BIND = 0x02
CMD_UDP_ASSOCIATE = 0x03

ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04


class ReplyCode(IntEnum):
    """Reply bytes sent to SOCKS clients."""
    SUCCEEDED = 0x00
    CONNECTION_REFUSED = 0x05
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08


class SocksPhase(Enum):
    AWAITING_GREETING = "awaiting_greeting"
    AWAITING_REQUEST = "awaiting_request"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass(frozen=True)
class SocksDestination:
    address_type: int
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def build_reply(code: int) -> bytes:
    """Reply with address type IPv4 and zeroed bound address/port."""
    return bytes([SOCKS_VERSION, code, 0x00, ATYP_IPV4, 0, 0, 0, 0, 0, 0])


METHOD_SELECTION = bytes([SOCKS_VERSION, METHOD_NO_AUTH])


async def read_greeting(reader: Any) -> bytes:
    """
    Read the method negotiation message (VER NMETHODS METHODS).

    Returns:
        The offered authentication methods

    Raises:
        SocksProtocolError: Wrong version; the connection is closed without reply
    """
    version = (await reader.readexactly(1))[0]
    if version != SOCKS_VERSION:
        raise SocksProtocolError(f"Unsupported SOCKS version {version:#04x}")

    count = (await reader.readexactly(1))[0]
    return await reader.readexactly(count) if count else b""


async def read_request(reader: Any) -> SocksDestination:
    """
    Read a request (VER CMD RSV ATYP DST.ADDR DST.PORT).

    Raises:
        SocksProtocolError: Carrying the reply code to send before closing
    """
    version, command, _reserved, address_type = await reader.readexactly(4)

    if version != SOCKS_VERSION or command != CMD_CONNECT:
        raise SocksProtocolError(
            f"Unsupported request version={version:#04x} command={command:#04x}",
            ReplyCode.COMMAND_NOT_SUPPORTED)

    if address_type == ATYP_IPV4:
        host = str(ipaddress.IPv4Address(await reader.readexactly(4)))
    elif address_type == ATYP_DOMAIN:
        length = (await reader.readexactly(1))[0]
        raw = await reader.readexactly(length)
        try:
            host = raw.decode("ascii")
        except UnicodeDecodeError:
            raise SocksProtocolError(
                f"Domain name is not ASCII: {raw!r}",
                ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED) from None
        if not host:
            raise SocksProtocolError("Empty domain name", ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED)
    elif address_type == ATYP_IPV6:
        raise SocksProtocolError(
            "IPv6 destinations are not supported", ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED)
    else:
        raise SocksProtocolError(
            f"Unknown address type {address_type:#04x}", ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED)

    (port,) = struct.unpack("!H", await reader.readexactly(2))
    return SocksDestination(address_type, host, port)


class Socks5Session:
    """Drives one SOCKS client from greeting to streaming."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        transport: ITransport,
        bind_address: str = "127.0.0.1",
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        label: str = ""
    ):
        self._reader = reader
        self._writer = writer
        self._transport = transport
        self._bind_address = bind_address
        self._buffer_size = buffer_size
        self._label = label
        self.phase = SocksPhase.AWAITING_GREETING
        self.destination: Optional[SocksDestination] = None

    async def run(self) -> None:
        """
        Serve the client until the spliced connection ends.

        Raises:
            SocksProtocolError: After replying (when a reply applies) and closing
            ChannelOpenFailure: After replying 0x05 and closing
        """
        try:
            destination = await self._negotiate()
            channel_reader, channel_writer = await self._connect(destination)
        except (SocksProtocolError, ChannelOpenFailure) as e:
            await self._fail(getattr(e, "reply_code", ReplyCode.CONNECTION_REFUSED))
            raise
        except asyncio.IncompleteReadError as e:
            self._close()
            raise SocksProtocolError(
                f"Client disconnected during {self.phase.value} "
                f"after {len(e.partial)} of {e.expected} bytes") from None
        except BaseException:
            self._close()
            raise

        self.phase = SocksPhase.STREAMING
        try:
            await splice(self._reader, self._writer, channel_reader, channel_writer,
                         self._buffer_size, label=f"{self._label} -> {destination}")
        finally:
            self.phase = SocksPhase.CLOSED

    async def _negotiate(self) -> SocksDestination:
        methods = await read_greeting(self._reader)
        if METHOD_NO_AUTH not in methods:
            logger.debug(f"SOCKS client {self._label} did not offer 'no authentication' "
                         f"(offered {list(methods)}), selecting it anyway")
        self._writer.write(METHOD_SELECTION)
        await self._writer.drain()

        self.phase = SocksPhase.AWAITING_REQUEST
        self.destination = await read_request(self._reader)
        return self.destination

    async def _connect(self, destination: SocksDestination) -> Any:
        logger.debug(f"SOCKS client {self._label} requests {destination}")
        try:
            channel = await self._transport.open_channel(
                destination.host, destination.port, orig_host=self._bind_address, orig_port=0)
        except OSError as e:
            raise ChannelOpenFailure(destination.host, destination.port, str(e)) from e

        self._writer.write(build_reply(ReplyCode.SUCCEEDED))
        try:
            await self._writer.drain()
        except BaseException:
            close_writer(channel[1])
            raise
        return channel

    async def _fail(self, reply_code: Optional[int]) -> None:
        if reply_code is not None:
            try:
                self._writer.write(build_reply(reply_code))
                await self._writer.drain()
            except (OSError, RuntimeError) as e:
                logger.debug(f"Could not send SOCKS reply to {self._label}: {e}")
        self._close()

    def _close(self) -> None:
        self.phase = SocksPhase.CLOSED
        close_writer(self._writer)


class DynamicForwarder(ListeningForwarder):
    """Local SOCKS5 proxy opening one forwarded channel per client."""

    async def open(self) -> None:
        await self._listen()
        logger.info(f"Dynamic SOCKS5 proxy active on {self._spec.bind_address}:{self.bound_port}")

    async def _handle_client(self, reader: asyncio.StreamReader,
                             writer: asyncio.StreamWriter, label: str) -> None:
        session = Socks5Session(
            reader, writer, self._transport,
            bind_address=self._spec.bind_address,
            buffer_size=self._buffer_size,
            label=label
        )
        await session.run()
