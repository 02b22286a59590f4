"""
代码执行器模块。

提供作用域链、语句级求值器和依赖扫描功能。
"""

from .result import ErrorEntry, EvaluationResult
from .scope import Scope, ScopeChain, ScopeError, build_scope_chain, load_library
from .evaluator import Evaluator, RETURN_NAME
from .dependencies import code_dependencies

__all__ = [
    "ErrorEntry",
    "EvaluationResult",
    "Scope",
    "ScopeChain",
    "ScopeError",
    "build_scope_chain",
    "load_library",
    "Evaluator",
    "RETURN_NAME",
    "code_dependencies",
]
