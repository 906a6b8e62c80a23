"""
Event bus implementation for publish-subscribe messaging.

Events are queued by priority and dispatched by worker tasks to every
subscription whose pattern matches the event name. With the default single
worker, events of equal priority reach handlers in publication order, which
keeps per-tunnel status transitions ordered for observers.
"""

import asyncio
import fnmatch
import logging
import time
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Union

from ..interfaces.messaging import IEventBus
from ..interfaces.lifecycle import IComponent
from ..domain.events import Event, EventPriority

logger = logging.getLogger(__name__)


class EventSubscription:
    """Represents an event subscription."""

    def __init__(self, subscription_id: str, event_pattern: str,
                 handler: Callable[[Event], Any], priority: EventPriority):
        self.subscription_id = subscription_id
        self.event_pattern = event_pattern
        self.handler = handler
        self.priority = priority
        self.call_count = 0
        self.error_count = 0
        self.last_called: Optional[float] = None

    @property
    def is_wildcard(self) -> bool:
        return '*' in self.event_pattern or '?' in self.event_pattern

    def matches(self, event_name: str) -> bool:
        if self.is_wildcard:
            return fnmatch.fnmatchcase(event_name, self.event_pattern)
        return event_name == self.event_pattern


class EventBus(IComponent, IEventBus):
    """
    Priority event bus with pattern subscriptions.

    Handler failures are counted and logged; they never stop delivery to
    the remaining subscribers.
    """

    def __init__(self, max_workers: int = 1, queue_size: int = 1000):
        self._subscriptions: Dict[str, List[EventSubscription]] = defaultdict(list)
        self._wildcard_subscriptions: List[EventSubscription] = []
        self._queue_size = queue_size
        self._event_queue: asyncio.PriorityQueue[Event] = asyncio.PriorityQueue(maxsize=queue_size)
        self._workers: List[asyncio.Task[None]] = []
        self._max_workers = max_workers
        self._running = False

        self._metrics: Dict[str, int] = {
            'events_published': 0,
            'events_processed': 0,
            'events_failed': 0,
        }

    @property
    def name(self) -> str:
        return "EventBus"

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker tasks."""
        if self._running:
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_process(), name=f"event-bus-worker-{i}")
            for i in range(self._max_workers)
        ]

        logger.info(f"Event bus started with {self._max_workers} worker(s)")

    async def stop(self) -> None:
        """Deliver queued events, then stop the workers."""
        if not self._running:
            return

        # Let already published events (e.g. final inactive statuses) reach handlers
        try:
            await asyncio.wait_for(self._event_queue.join(), timeout=2.0)
        except asyncio.TimeoutError:
            logger.warning(f"Event bus stopping with {self._event_queue.qsize()} undelivered events")

        self._running = False

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        self._subscriptions.clear()
        self._wildcard_subscriptions.clear()

        logger.info("Event bus stopped")

    async def configure(self, config: Dict[str, Any]) -> None:
        """The worker count is fixed at construction; there are no runtime settings."""
        if config:
            raise ValueError(f"Unsupported event bus settings: {', '.join(sorted(config))}")

    async def check_health(self) -> Dict[str, Any]:
        return {
            'healthy': self._running,
            'status': 'running' if self._running else 'stopped',
            'details': {
                'workers_count': len(self._workers),
                'subscriptions_count': self._subscription_count(),
                'queue_size': self._event_queue.qsize(),
                **self._metrics,
            }
        }

    async def publish(self, event: Union[Event, str], data: Any = None,
                      priority: EventPriority = EventPriority.NORMAL) -> str:
        """Queue an event for delivery."""
        if not self._running:
            raise RuntimeError("Event bus is not running")

        if isinstance(event, str):
            event = Event(name=event, data=data, priority=priority)

        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(f"Event queue full, dropping event: {event.name}")
            raise RuntimeError("Event queue is full")

        self._metrics['events_published'] += 1
        logger.debug(f"Published event: {event.name} (ID: {event.event_id})")
        return event.event_id

    async def subscribe(self, event_name: str, handler: Callable[[Event], Any],
                        priority: EventPriority = EventPriority.NORMAL) -> str:
        subscription = EventSubscription(
            subscription_id=str(uuid.uuid4()),
            event_pattern=event_name,
            handler=handler,
            priority=priority
        )

        if subscription.is_wildcard:
            target = self._wildcard_subscriptions
        else:
            target = self._subscriptions[event_name]
        target.append(subscription)
        target.sort(key=lambda s: s.priority.value, reverse=True)

        logger.debug(f"Added subscription for '{event_name}' (ID: {subscription.subscription_id})")
        return subscription.subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        for subscriptions in [*self._subscriptions.values(), self._wildcard_subscriptions]:
            for i, subscription in enumerate(subscriptions):
                if subscription.subscription_id == subscription_id:
                    subscriptions.pop(i)
                    logger.debug(f"Removed subscription {subscription_id}")
                    return True
        return False

    async def get_metrics(self) -> Dict[str, Any]:
        return {
            **self._metrics,
            'subscriptions_count': self._subscription_count(),
            'queue_size': self._event_queue.qsize(),
        }

    def _subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values()) + len(self._wildcard_subscriptions)

    async def _worker_process(self) -> None:
        while self._running:
            event = await self._event_queue.get()
            try:
                await self._process_event(event)
            except Exception as e:
                logger.error(f"Event processing error for {event.name}: {e}")
                self._metrics['events_failed'] += 1
            finally:
                self._event_queue.task_done()

    async def _process_event(self, event: Event) -> None:
        matching = list(self._subscriptions.get(event.name, ()))
        matching.extend(s for s in self._wildcard_subscriptions if s.matches(event.name))
        matching.sort(key=lambda s: s.priority.value, reverse=True)

        for subscription in matching:
            try:
                result = subscription.handler(event)
                if asyncio.iscoroutine(result):
                    await result
                subscription.call_count += 1
                subscription.last_called = time.time()
            except Exception as e:
                subscription.error_count += 1
                self._metrics['events_failed'] += 1
                logger.error(f"Handler error for event {event.name}: {e}")

        self._metrics['events_processed'] += 1
