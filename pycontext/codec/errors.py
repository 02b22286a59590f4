"""
编解码错误模块。

pack 失败由 Evaluator 捕获并转为错误条目；
unpack 失败属于调用方的协议错误，直接抛给调用方。
"""


class CodecError(Exception):
    """编解码错误基类。"""


class PackError(CodecError):
    """值无法编码（如图像渲染失败、JSON 不可序列化）。"""


class UnpackError(CodecError, ValueError):
    """输入的 Value 不满足协议。"""


class MalformedPackage(UnpackError):
    """输入不是映射（解析 JSON 后仍不是）。"""


class MissingField(UnpackError):
    """映射缺少 type/format/content 中的某个字段。"""


class UnknownType(UnpackError):
    """type 标签无法识别。"""


class InvalidContent(UnpackError):
    """content 与声明的 type 不匹配（如 int 的 content 不是整数）。"""
