"""
代码依赖扫描模块。

词法层面列出代码片段引用的名称（不做数据流分析）：
同一片段中稍后绑定的名称仍会被列出，通过反射等间接方式的依赖不会被发现。
"""

import ast
import builtins
from typing import List

# 内置名称集合（不作为依赖上报）
BUILTIN_NAMES = frozenset(dir(builtins))


def code_dependencies(code: str) -> List[str]:
    """返回代码中引用的非内置名称。

    Args:
        code: Python 源码

    Returns:
        按源码位置排序、去重后的名称列表

    Raises:
        SyntaxError: 代码无法解析

    示例:
        >>> code_dependencies("f(x) + 1")
        ['f', 'x']
    """
    tree = ast.parse(code)
    found = sorted(
        (node.lineno, node.col_offset, node.id)
        for node in ast.walk(tree)
        if isinstance(node, ast.Name)
    )

    names: List[str] = []
    seen = set()
    for _, _, name in found:
        if name in BUILTIN_NAMES or name in seen:
            continue
        seen.add(name)
        names.append(name)
    return names
