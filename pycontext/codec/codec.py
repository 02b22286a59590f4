"""
值编解码模块。

在 Python 原生值与线路格式 Value 之间转换：
- type_of: 按有序规则表对原生值分类
- pack: 原生值 -> Value（text/json/csv/dataUri 编码）
- unpack: Value（映射或 JSON 字符串）-> 原生值
"""

import base64
import io
import json
import math
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Callable, Dict, List, Tuple

import numpy as np
import pandas as pd

from utils.logger_system import log_msg
from .errors import (
    CodecError,
    InvalidContent,
    MalformedPackage,
    MissingField,
    PackError,
    UnknownType,
)
from .value import FIELDS, FORMATS, MARKUP_TYPES, Value


# 浮点数默认有效位数（与宿主平台默认字符串化一致）
DEFAULT_DIGITS = 15
# 图像默认分辨率
DEFAULT_PLOT_DPI = 100


# ============================================================
# 类型分类规则
# ============================================================


def _is_null(value: Any) -> bool:
    return value is None or value is pd.NA or value is pd.NaT


def _is_bool(value: Any) -> bool:
    return isinstance(value, (bool, np.bool_))


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer))


def _is_flt(value: Any) -> bool:
    return isinstance(value, (float, np.floating))


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_tab(value: Any) -> bool:
    if isinstance(value, pd.DataFrame):
        return True
    return isinstance(value, np.ndarray) and value.ndim == 2


def _is_arr(value: Any) -> bool:
    if isinstance(value, (list, tuple, pd.Series)):
        return True
    return isinstance(value, np.ndarray) and value.ndim == 1


def _is_markup(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("type"), str)
        and value["type"] in MARKUP_TYPES
    )


def _is_obj(value: Any) -> bool:
    return isinstance(value, dict)


def _is_plot(value: Any) -> bool:
    # matplotlib Figure、seaborn FacetGrid 等都提供 savefig
    if isinstance(value, type):
        return False
    return callable(getattr(value, "savefig", None))


# 有序规则表：顺序即优先级（null 先于 bool 先于数值……）
RULES: List[Tuple[Callable[[Any], bool], str]] = [
    (_is_null, "null"),
    (_is_bool, "bool"),
    (_is_int, "int"),
    (_is_flt, "flt"),
    (_is_str, "str"),
    (_is_tab, "tab"),
    (_is_arr, "arr"),
    (_is_markup, "markup"),
    (_is_obj, "obj"),
    (_is_plot, "plot"),
]


def _unwrap(value: Any) -> Any:
    """0 维 numpy 数组按其标量分类和编码。"""
    if isinstance(value, np.ndarray) and value.ndim == 0:
        return value.item()
    return value


def type_of(value: Any) -> str:
    """返回原生值对应的类型标签。

    Args:
        value: 任意 Python 值

    Returns:
        TYPES 中的一个标签；无法分类的值（函数、模块等）返回 "unk"
    """
    value = _unwrap(value)
    for predicate, tag in RULES:
        if predicate(value):
            return value["type"] if tag == "markup" else tag
    return "unk"


# ============================================================
# 编码
# ============================================================


def format_float(value: float, digits: int = DEFAULT_DIGITS) -> str:
    """按宿主平台默认方式格式化浮点数。

    保留 digits 位有效数字，在定点和科学计数法中取较短者（等长取定点），
    例如 3.14 -> "3.14"，1e10 -> "1e+10"，1e-10 -> "1e-10"。

    Args:
        value: 浮点数
        digits: 有效位数

    Returns:
        格式化后的字符串
    """
    value = float(value)
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value == 0:
        return "0"

    fixed = format(Decimal(f"{value:.{digits}g}"), "f")

    mantissa, exponent = f"{value:.{digits - 1}e}".split("e")
    if "." in mantissa:
        mantissa = mantissa.rstrip("0").rstrip(".")
    scientific = f"{mantissa}e{exponent}"

    return fixed if len(fixed) <= len(scientific) else scientific


def _json_default(obj: Any) -> Any:
    """json.dumps 的兜底转换（numpy/pandas 对象 -> 纯 JSON 值）。"""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, (np.ndarray, pd.Series)):
        return obj.tolist()
    if isinstance(obj, pd.Timestamp):
        return obj.isoformat()
    if obj is pd.NA or obj is pd.NaT:
        return None
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _finite(value: Any) -> Any:
    """将 NaN/Inf 替换为 None（JSON 中为 null），递归处理容器。"""
    if isinstance(value, (float, np.floating)):
        return value if math.isfinite(value) else None
    if isinstance(value, (np.ndarray, pd.Series)):
        return _finite(value.tolist())
    if isinstance(value, dict):
        return {key: _finite(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite(item) for item in value]
    return value


def _to_json(value: Any) -> str:
    return json.dumps(
        _finite(value),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_json_default,
    )


def _to_csv(value: Any) -> str:
    if isinstance(value, pd.DataFrame):
        frame = value
    else:
        # 矩阵列名 V1..Vn
        frame = pd.DataFrame(
            value, columns=[f"V{i + 1}" for i in range(value.shape[1])]
        )
    if len(frame.columns) == 0:
        return ""
    csv = frame.to_csv(index=False, lineterminator="\n")
    return csv[:-1] if csv.endswith("\n") else csv


def _to_data_uri(figure: Any, dpi: int) -> str:
    buffer = io.BytesIO()
    figure.savefig(buffer, format="png", dpi=dpi)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def pack(
    value: Any, digits: int = DEFAULT_DIGITS, plot_dpi: int = DEFAULT_PLOT_DPI
) -> Value:
    """将原生值编码为 Value。

    Args:
        value: 任意 Python 值
        digits: 浮点数有效位数
        plot_dpi: 图像渲染分辨率

    Returns:
        编码后的 Value

    Raises:
        PackError: 值无法编码（JSON 不可序列化、图像渲染失败等）
    """
    value = _unwrap(value)
    tag = type_of(value)

    try:
        if tag == "null":
            content = "null"
        elif tag == "bool":
            content = "true" if value else "false"
        elif tag == "int":
            content = str(int(value))
        elif tag == "flt":
            content = format_float(value, digits)
        elif tag == "str":
            content = value
        elif tag in ("arr", "obj"):
            content = _to_json(value)
        elif tag == "tab":
            content = _to_csv(value)
        elif tag in MARKUP_TYPES and isinstance(value, dict):
            content = value["content"]
            if not isinstance(content, str):
                raise TypeError(
                    f"`content` should be a string, got {type(content).__name__}"
                )
        elif tag == "plot":
            content = _to_data_uri(value, plot_dpi)
        else:
            content = repr(value)
    except CodecError:
        raise
    except Exception as e:
        error_msg = f"Unable to pack value of type `{tag}`: {type(e).__name__}: {e}"
        log_msg("WARNING", error_msg)
        raise PackError(error_msg) from e

    return Value.of(tag, content)


# ============================================================
# 解码
# ============================================================


def _from_bool(content: str, format: str) -> bool:
    lowered = content.strip().lower()
    if lowered not in ("true", "false"):
        raise ValueError(f"expected `true` or `false`, got {content!r}")
    return lowered == "true"


def _from_json_list(content: str, format: str) -> list:
    decoded = json.loads(content)
    if not isinstance(decoded, list):
        raise ValueError("expected a JSON array")
    return decoded


def _from_json_dict(content: str, format: str) -> dict:
    decoded = json.loads(content)
    if not isinstance(decoded, dict):
        raise ValueError("expected a JSON object")
    return decoded


def _from_csv(content: str, format: str) -> pd.DataFrame:
    if not content.strip():
        return pd.DataFrame()
    return pd.read_csv(io.StringIO(content))


DECODERS: Dict[str, Callable[[str, str], Any]] = {
    "null": lambda content, format: None,
    "bool": _from_bool,
    "int": lambda content, format: int(content),
    "flt": lambda content, format: float(content),
    "str": lambda content, format: content,
    "arr": _from_json_list,
    "obj": _from_json_dict,
    "tab": _from_csv,
    "unk": lambda content, format: content,
}
def _from_markup(tag: str) -> Callable[[str, str], dict]:
    def decode(content: str, format: str) -> dict:
        if format != FORMATS[tag]:
            raise ValueError(f"expected format `{FORMATS[tag]}`, got `{format}`")
        if not isinstance(content, str):
            raise ValueError(f"expected string content, got {type(content).__name__}")
        return {"type": tag, "format": format, "content": content}

    return decode


for _tag in MARKUP_TYPES:
    DECODERS[_tag] = _from_markup(_tag)


def unpack(package: Any) -> Any:
    """将 Value 解码为原生值。

    Args:
        package: Value 实例、{type, format, content} 映射或其 JSON 字符串

    Returns:
        原生 Python 值（null 一律返回 None）

    Raises:
        MalformedPackage: 输入不是映射
        MissingField: 缺少 type/format/content 字段
        UnknownType: type 标签无法识别
        InvalidContent: content 与 type 不匹配
    """
    if isinstance(package, Value):
        package = package.to_dict()

    if isinstance(package, (str, bytes)):
        try:
            package = json.loads(package)
        except json.JSONDecodeError as e:
            error_msg = f"Package should be a mapping or its JSON string: {e}"
            log_msg("WARNING", error_msg)
            raise MalformedPackage(error_msg) from e

    if not isinstance(package, Mapping):
        error_msg = f"Package should be a mapping, got {type(package).__name__}"
        log_msg("WARNING", error_msg)
        raise MalformedPackage(error_msg)

    missing = [name for name in FIELDS if name not in package]
    if missing:
        error_msg = (
            "Package should have fields `type`, `format`, `content`; "
            f"missing {', '.join(f'`{name}`' for name in missing)}"
        )
        log_msg("WARNING", error_msg)
        raise MissingField(error_msg)

    tag = package["type"]
    decoder = DECODERS.get(tag) if isinstance(tag, str) else None
    if decoder is None:
        error_msg = f"Unable to unpack type `{tag}`"
        log_msg("WARNING", error_msg)
        raise UnknownType(error_msg)

    if tag == "null":
        return None

    try:
        return decoder(package["content"], package["format"])
    except Exception as e:
        error_msg = f"Invalid content for type `{tag}`: {e}"
        log_msg("WARNING", error_msg)
        raise InvalidContent(error_msg) from e
