"""日志系统单元测试。"""

import json

import pytest

from utils import logger_system
from utils.logger_system import (
    LoggerSystem,
    ensure,
    level_value,
    log_exception,
    log_json,
    log_msg,
)


@pytest.fixture(autouse=True)
def clean_logger():
    """每个测试前后移除全局日志实例。"""
    logger_system.reset_logger()
    yield
    logger_system.reset_logger()


class TestLoggerSystem:
    """LoggerSystem 类测试。"""

    def test_text_log_file(self, tmp_path):
        """测试文本日志写入 system.log。"""
        logger = LoggerSystem(tmp_path, console_output=False)
        logger.text_log("INFO", "hello")

        content = (tmp_path / "system.log").read_text(encoding="utf-8")
        assert "[INFO] hello" in content

    def test_level_threshold(self, tmp_path):
        """测试低于阈值的消息被丢弃。"""
        logger = LoggerSystem(tmp_path, level="WARNING", console_output=False)
        logger.text_log("INFO", "quiet")
        logger.text_log("ERROR", "loud")

        content = (tmp_path / "system.log").read_text(encoding="utf-8")
        assert "quiet" not in content
        assert "loud" in content

    def test_console_output(self, capsys):
        """测试终端输出。"""
        logger = LoggerSystem(console_output=True, file_output=False)
        logger.text_log("INFO", "to console")
        assert "[INFO] to console" in capsys.readouterr().out

    def test_json_log_file(self, tmp_path):
        """测试事件写入 events.json 并在重建时加载。"""
        logger = LoggerSystem(tmp_path, console_output=False)
        logger.json_log({"event": "evaluate", "mode": "run"})

        events = json.loads((tmp_path / "events.json").read_text(encoding="utf-8"))
        assert events == [{"event": "evaluate", "mode": "run"}]

        reloaded = LoggerSystem(tmp_path, console_output=False)
        assert reloaded.json_data == events

    def test_corrupt_events_reset(self, tmp_path):
        """测试损坏的 events.json 被重置。"""
        (tmp_path / "events.json").write_text("{broken", encoding="utf-8")
        logger = LoggerSystem(tmp_path, console_output=False)
        assert logger.json_data == []

    def test_memory_only(self, tmp_path):
        """测试关闭文件输出时只保留内存事件。"""
        logger = LoggerSystem(tmp_path, console_output=False, file_output=False)
        logger.json_log({"event": "evaluate"})

        assert logger.json_data == [{"event": "evaluate"}]
        assert not (tmp_path / "events.json").exists()


class TestGlobalLogger:
    """全局日志函数测试。"""

    def test_fallback_prints_warnings_only(self, capsys):
        """测试未初始化时只打印 WARNING 及以上。"""
        log_msg("DEBUG", "hidden")
        log_msg("INFO", "hidden too")
        log_msg("WARNING", "shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "[WARNING] shown" in out

    def test_log_json_without_logger(self):
        """测试未初始化时事件被丢弃。"""
        log_json({"event": "ignored"})
        assert logger_system.logger is None

    def test_init_logger(self, tmp_path):
        """测试初始化全局日志实例。"""
        logger = logger_system.init_logger(tmp_path, console_output=False)
        log_msg("INFO", "routed")
        log_json({"event": "evaluate"})

        assert "routed" in (tmp_path / "system.log").read_text(encoding="utf-8")
        assert logger.json_data == [{"event": "evaluate"}]

    def test_level_value(self):
        """测试级别数值转换。"""
        assert level_value("debug") == 10
        assert level_value("ERROR") == 40
        assert level_value("unknown") == level_value("INFO")


class TestHelpers:
    """辅助函数测试。"""

    def test_ensure(self):
        """测试 ensure 断言失败时抛出 AssertionError。"""
        ensure(True, "never raised")
        with pytest.raises(AssertionError, match="must hold"):
            ensure(False, "must hold")

    def test_log_exception(self, tmp_path):
        """测试记录异常及上下文。"""
        logger_system.init_logger(tmp_path, console_output=False)
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            log_exception(e, "渲染图像时")

        content = (tmp_path / "system.log").read_text(encoding="utf-8")
        assert "[ERROR] 渲染图像时: boom" in content
