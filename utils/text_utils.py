"""文本处理工具模块。

提供错误信息截断等文本处理功能。
"""


def trim_long_string(string: str, threshold: int = 5100, k: int = 2500) -> str:
    """截断过长的字符串，保留首尾 k 个字符。

    Args:
        string: 输入字符串
        threshold: 超过此长度才截断（<= 0 表示不截断）
        k: 保留首尾各 k 个字符

    Returns:
        截断后的字符串
    """
    if threshold > 0 and len(string) > threshold:
        k = min(k, threshold // 2)
        first_k = string[:k]
        last_k = string[-k:] if k else ""
        truncated_len = len(string) - 2 * k
        return f"{first_k}\n ... [{truncated_len} chars truncated] ... \n{last_k}"
    return string
