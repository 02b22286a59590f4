"""日志系统模块。

提供文本日志和 JSON 事件日志的双通道输出功能。

- 文本日志：system.log + 终端输出（可按配置关闭任一通道）
- 事件日志：events.json，记录每次 run_code / call_code 的执行摘要
- 级别阈值：低于阈值的消息直接丢弃
"""

import json
import datetime
from typing import Dict, Any, List
from pathlib import Path


# 日志级别（数值越大越严重）
LEVELS: Dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}

# 未初始化 logger 时的回退阈值（只打印警告及以上，避免污染宿主输出）
FALLBACK_LEVEL = "WARNING"


def level_value(level: str) -> int:
    """将日志级别名称转换为数值。

    Args:
        level: 日志级别名称（大小写不敏感）

    Returns:
        级别数值，未知级别按 INFO 处理
    """
    return LEVELS.get(level.upper(), LEVELS["INFO"])


class LoggerSystem:
    """日志系统类。

    提供文本日志（system.log）和 JSON 事件日志（events.json）的双通道输出。
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        level: str = "INFO",
        console_output: bool = True,
        file_output: bool = True,
    ):
        """初始化日志系统。

        Args:
            log_dir: 日志目录路径（file_output=False 时可为 None）
            level: 最低记录级别
            console_output: 是否打印到终端
            file_output: 是否写入日志文件
        """
        self.level = level.upper()
        self.console_output = console_output
        self.file_output = file_output and log_dir is not None

        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.text_log_path: Path | None = None
        self.json_log_path: Path | None = None

        # 事件列表（内存中始终保留，便于宿主和测试读取）
        self.json_data: List[Dict[str, Any]] = []

        if self.file_output:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.text_log_path = self.log_dir / "system.log"
            self.json_log_path = self.log_dir / "events.json"

            if self.json_log_path.exists():
                try:
                    content = self.json_log_path.read_text(encoding="utf-8")
                    if content:
                        self.json_data = json.loads(content)
                except json.JSONDecodeError:
                    self.json_data = []  # 损坏时重置

    def enabled(self, level: str) -> bool:
        """判断某级别的消息是否需要记录。"""
        return level_value(level) >= level_value(self.level)

    def text_log(self, level: str, message: str) -> None:
        """记录文本日志到 system.log 并打印到终端。

        Args:
            level: 日志级别（DEBUG, INFO, WARNING, ERROR）
            message: 日志消息
        """
        if not self.enabled(level):
            return

        timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] [{level}] {message}\n"

        if self.file_output:
            with open(self.text_log_path, "a", encoding="utf-8") as f:
                f.write(log_entry)

        if self.console_output:
            print(log_entry.strip())

    def json_log(self, data: Dict[str, Any]) -> None:
        """记录一条事件到 events.json。

        Args:
            data: 待记录的字典数据
        """
        self.json_data.append(data)

        if self.file_output:
            with open(self.json_log_path, "w", encoding="utf-8") as f:
                json.dump(self.json_data, f, indent=4, ensure_ascii=False)


# ============================================================
# 全局日志实例
# ============================================================

logger: LoggerSystem | None = None


def init_logger(
    log_dir: str | Path | None = None,
    level: str = "INFO",
    console_output: bool = True,
    file_output: bool = True,
) -> LoggerSystem:
    """初始化全局日志系统。

    Args:
        log_dir: 日志目录路径
        level: 最低记录级别
        console_output: 是否打印到终端
        file_output: 是否写入日志文件

    Returns:
        初始化的 LoggerSystem 实例
    """
    global logger
    logger = LoggerSystem(
        log_dir,
        level=level,
        console_output=console_output,
        file_output=file_output,
    )
    return logger


def reset_logger() -> None:
    """移除全局日志实例（回到回退模式）。"""
    global logger
    logger = None


# ============================================================
# 便捷日志函数
# ============================================================


def log_msg(level: str, message: str) -> None:
    """记录文本日志。

    Args:
        level: 日志级别（DEBUG, INFO, WARNING, ERROR）
        message: 日志消息

    注意:
        如果 logger 未初始化，WARNING 及以上回退到 print，其余丢弃
    """
    if logger:
        logger.text_log(level, message)
    elif level_value(level) >= level_value(FALLBACK_LEVEL):
        print(f"[{level}] {message}")


def log_json(data: Dict[str, Any]) -> None:
    """记录 JSON 事件。

    Args:
        data: 待记录的字典数据

    注意:
        如果 logger 未初始化，事件被丢弃（执行摘要不属于宿主输出）
    """
    if logger:
        logger.json_log(data)


def ensure(condition: bool, error_msg: str) -> None:
    """断言工具，失败时记录错误并抛出异常。

    Args:
        condition: 断言条件
        error_msg: 错误消息

    Raises:
        AssertionError: 条件为 False 时抛出

    示例:
        >>> ensure(scope.frozen, "library scope 必须只读")
    """
    if not condition:
        log_msg("ERROR", error_msg)
        raise AssertionError(error_msg)


def log_exception(exc: BaseException, context: str = "") -> None:
    """记录异常信息和堆栈跟踪。

    Args:
        exc: 异常对象
        context: 上下文描述（可选）

    示例:
        >>> try:
        ...     figure.savefig(buf)
        ... except Exception as e:
        ...     log_exception(e, "渲染图像时")
    """
    import traceback

    error_msg = f"{context}: {exc}" if context else str(exc)
    traceback_str = "".join(traceback.format_tb(exc.__traceback__))
    full_msg = f"{error_msg}\n{traceback_str}" if traceback_str else error_msg

    log_msg("ERROR", full_msg)
