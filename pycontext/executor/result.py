"""
执行结果数据类模块。

定义 run_code / call_code 的返回结构 EvaluationResult 及其错误条目。
序列化时 None 字段被整体省略（"缺省"而不是 null 或空列表）。
"""

from dataclasses import dataclass, field
from typing import List, Optional

from dataclasses_json import DataClassJsonMixin, config

from pycontext.codec import Value


def _absent(value) -> bool:
    return value is None


@dataclass
class ErrorEntry(DataClassJsonMixin):
    """一条用户代码错误。

    Attributes:
        line: 1 起始的行号（打包失败为 0）
        column: 列号（不追踪，固定为 0）
        message: 错误信息（"异常类型: 消息"）
    """

    line: int
    column: int = 0
    message: str = ""


@dataclass
class EvaluationResult(DataClassJsonMixin):
    """代码执行结果容器。

    Attributes:
        errors: 错误列表，无错误时为 None
        output: 最后一个可见值的 Value，无输出时为 None
    """

    errors: Optional[List[ErrorEntry]] = field(
        default=None, metadata=config(exclude=_absent)
    )
    output: Optional[Value] = field(default=None, metadata=config(exclude=_absent))

    @property
    def success(self) -> bool:
        """是否没有任何错误。"""
        return not self.errors

    @property
    def messages(self) -> List[str]:
        """所有错误信息（便于日志和断言）。"""
        return [error.message for error in self.errors or []]
