"""
Value 数据类模块。

定义上下文之间交换数据的线路格式 {type, format, content}，
以及类型标签与编码格式的固定对应表。
"""

from dataclasses import dataclass
from typing import Dict, Literal

from dataclasses_json import DataClassJsonMixin


# 类型标签（封闭集合，unk 为兜底类型）
TypeTag = Literal[
    "null", "bool", "int", "flt", "str", "arr", "obj", "tab", "html", "png", "plot", "unk"
]

TYPES = (
    "null", "bool", "int", "flt", "str", "arr", "obj", "tab", "html", "png", "plot", "unk"
)

# (type -> format) 固定查表，不允许自由组合
FORMATS: Dict[str, str] = {
    "null": "text",
    "bool": "text",
    "int": "text",
    "flt": "text",
    "str": "text",
    "unk": "text",
    "arr": "json",
    "obj": "json",
    "tab": "csv",
    "plot": "dataUri",
    "png": "dataUri",
    "html": "html",
}

# 可由 {"type": ..., "content": ...} 映射直接声明的标记/图像类型
MARKUP_TYPES = ("html", "png", "plot")

# Value 必填字段
FIELDS = ("type", "format", "content")


@dataclass
class Value(DataClassJsonMixin):
    """线路格式中的一个值。

    Attributes:
        type: 类型标签（见 TYPES）
        format: content 的编码格式（text/json/csv/dataUri/html）
        content: 编码后的字符串内容，给定 (type, format) 即可自解释
    """

    type: str
    format: str
    content: str

    @classmethod
    def of(cls, type: str, content: str) -> "Value":
        """按固定查表构造 Value。

        Args:
            type: 类型标签
            content: 编码后的内容

        Returns:
            format 由 FORMATS 决定的 Value
        """
        return cls(type=type, format=FORMATS[type], content=content)

    def __str__(self) -> str:
        preview = self.content if len(self.content) <= 40 else self.content[:37] + "..."
        return f"Value(type={self.type}, format={self.format}, content={preview!r})"
