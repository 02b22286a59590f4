"""pycontext 模块入口。

Python 执行上下文：在沙箱命名空间中运行代码片段，
通过语言无关的 Value 线路格式与宿主及其他语言的上下文交换数据。
"""

from .codec import Value, type_of, pack, unpack
from .executor import ErrorEntry, EvaluationResult
from .python_context import PythonContext, create_context

__version__ = "0.1.0"

__all__ = [
    "Value",
    "type_of",
    "pack",
    "unpack",
    "ErrorEntry",
    "EvaluationResult",
    "PythonContext",
    "create_context",
]
