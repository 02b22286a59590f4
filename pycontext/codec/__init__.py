"""
值编解码模块。

提供线路格式 Value 以及 type_of/pack/unpack 三个编解码函数。
"""

from .value import Value, TYPES, FORMATS, MARKUP_TYPES
from .errors import (
    CodecError,
    PackError,
    UnpackError,
    MalformedPackage,
    MissingField,
    UnknownType,
    InvalidContent,
)
from .codec import type_of, pack, unpack, format_float

__all__ = [
    "Value",
    "TYPES",
    "FORMATS",
    "MARKUP_TYPES",
    "CodecError",
    "PackError",
    "UnpackError",
    "MalformedPackage",
    "MissingField",
    "UnknownType",
    "InvalidContent",
    "type_of",
    "pack",
    "unpack",
    "format_float",
]
