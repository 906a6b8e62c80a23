"""
Tests for logging setup and configuration utilities.

测试日志设置和配置工具功能。
"""

import io
import logging
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import pytest
from loguru import logger as loguru_logger

from nebula_forward.infrastructure.config.models import LoggingConfig
from nebula_forward.infrastructure.logging.setup import InterceptHandler, setup_logging


@pytest.fixture(autouse=True)
def restore_logging() -> Generator[None, None, None]:
    """测试后恢复日志配置"""
    yield
    loguru_logger.remove()
    logging.basicConfig(handlers=[], force=True)
    logging.getLogger("asyncssh").setLevel(logging.NOTSET)


class TestSetupLogging:
    """测试loguru日志设置"""

    def setup_method(self) -> None:
        """测试前设置"""
        self.config = LoggingConfig()
        self.config.log_directory = "test_logs"
        self.config.level = "INFO"
        self.config.console_enabled = True
        self.config.file_enabled = True

    @patch('nebula_forward.infrastructure.logging.setup.loguru_logger')
    @patch('pathlib.Path.mkdir')
    def test_console_and_file_sinks(self, mock_mkdir: Mock, mock_loguru: Mock) -> None:
        """测试控制台和文件处理器"""
        setup_logging(self.config)

        # 验证目录创建
        mock_mkdir.assert_called_once_with(parents=True, exist_ok=True)
        mock_loguru.remove.assert_called_once()
        assert mock_loguru.add.call_count == 2

        file_call = mock_loguru.add.call_args_list[1]
        assert file_call[0][0] == Path("test_logs") / "nebula-forward.log"
        assert file_call[1]['rotation'] == "10 MB"
        assert file_call[1]['retention'] == 5

    @patch('nebula_forward.infrastructure.logging.setup.loguru_logger')
    def test_console_only(self, mock_loguru: Mock) -> None:
        """测试仅控制台日志"""
        self.config.file_enabled = False

        setup_logging(self.config)

        mock_loguru.add.assert_called_once()
        call_args = mock_loguru.add.call_args
        assert call_args[0][0] == sys.stderr
        assert call_args[1]['level'] == "INFO"

    @patch('nebula_forward.infrastructure.logging.setup.loguru_logger')
    def test_no_sinks(self, mock_loguru: Mock) -> None:
        """测试禁用所有处理器"""
        self.config.file_enabled = False
        self.config.console_enabled = False

        setup_logging(self.config)

        mock_loguru.remove.assert_called_once()
        mock_loguru.add.assert_not_called()

    def test_standard_logging_reaches_console_sink(self) -> None:
        """测试标准库日志转发到loguru"""
        self.config.file_enabled = False
        stream = io.StringIO()

        setup_logging(self.config, console_stream=stream)
        logging.getLogger("nebula_forward.tests").info("tunnel t1 active")

        output = stream.getvalue()
        assert "tunnel t1 active" in output
        assert "INFO" in output

    def test_level_filters_messages(self) -> None:
        """测试日志级别过滤"""
        self.config.file_enabled = False
        self.config.level = "warning"
        stream = io.StringIO()

        setup_logging(self.config, console_stream=stream)
        logging.getLogger("nebula_forward.tests").info("hidden")
        logging.getLogger("nebula_forward.tests").warning("shown")

        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    def test_asyncssh_level(self) -> None:
        """测试asyncssh日志级别"""
        self.config.file_enabled = False
        self.config.asyncssh_level = "error"

        setup_logging(self.config, console_stream=io.StringIO())

        assert logging.getLogger("asyncssh").level == logging.ERROR

    def test_file_sink_writes(self, tmp_path: Path) -> None:
        """测试文件日志写入"""
        self.config.console_enabled = False
        self.config.log_directory = str(tmp_path / "logs")

        setup_logging(self.config)
        logging.getLogger("nebula_forward.tests").error("written to file")
        loguru_logger.complete()

        content = (tmp_path / "logs" / "nebula-forward.log").read_text()
        assert "written to file" in content


class TestInterceptHandler:
    """测试拦截处理器"""

    def test_unknown_level_falls_back_to_number(self) -> None:
        """测试自定义级别"""
        stream = io.StringIO()
        loguru_logger.remove()
        loguru_logger.add(stream, format="{level} {message}", level=0)

        record = logging.LogRecord("custom", 25, __file__, 1, "custom level", None, None)
        record.levelname = "NOT_A_LOGURU_LEVEL"
        InterceptHandler().emit(record)

        assert "custom level" in stream.getvalue()
