"""
作用域链模块。

构建执行上下文使用的作用域链：

    builtin / ambient  <-  library  <-  session  <-  call
                                    <-  function <-  call (isolated)

- library: 只读，由白名单中各模块的公开名称展平而成
- session: 可写，随上下文存活，run_code 的赋值持久化于此
- function: 永远为空、只读，isolated 调用的父作用域
- call: 每次 call_code 新建，调用结束即丢弃
"""

import builtins
import importlib
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from utils.logger_system import log_msg


class ScopeError(Exception):
    """作用域构建或写入失败。"""


class Scope:
    """作用域链中的一个节点。

    查找沿 parent 链向上进行；写入只作用于本节点。
    """

    def __init__(
        self,
        name: str,
        bindings: Optional[Dict[str, Any]] = None,
        parent: Optional["Scope"] = None,
        frozen: bool = False,
    ):
        """初始化作用域。

        Args:
            name: 作用域名称（用于日志和错误信息）
            bindings: 名称表，None 时新建空字典（传入的字典按引用持有）
            parent: 父作用域
            frozen: 是否只读
        """
        self.name = name
        self.bindings: Dict[str, Any] = {} if bindings is None else bindings
        self.parent = parent
        self.frozen = frozen

    def __getitem__(self, key: str) -> Any:
        scope: Optional[Scope] = self
        while scope is not None:
            if key in scope.bindings:
                return scope.bindings[key]
            scope = scope.parent
        raise KeyError(key)

    def __contains__(self, key: str) -> bool:
        try:
            self[key]
        except KeyError:
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def bind(self, key: str, value: Any) -> None:
        """在本作用域绑定名称。

        Raises:
            ScopeError: 作用域只读
        """
        if self.frozen:
            error_msg = f"Scope `{self.name}` is read-only, cannot bind `{key}`"
            log_msg("ERROR", error_msg)
            raise ScopeError(error_msg)
        self.bindings[key] = value

    def chain(self) -> List["Scope"]:
        """返回从本节点到根节点的作用域列表。"""
        scopes = []
        scope: Optional[Scope] = self
        while scope is not None:
            scopes.append(scope)
            scope = scope.parent
        return scopes

    def flatten(self, stop: Optional["Scope"] = None) -> Dict[str, Any]:
        """将作用域链合并为一个字典（子作用域覆盖父作用域）。

        Args:
            stop: 合并到该祖先为止（不含该祖先），None 表示合并到根

        Returns:
            合并后的新字典
        """
        scopes = []
        for scope in self.chain():
            if scope is stop:
                break
            scopes.append(scope)

        merged: Dict[str, Any] = {}
        for scope in reversed(scopes):
            merged.update(scope.bindings)
        return merged

    def names(self) -> List[str]:
        """本作用域中的名称（不含双下划线名称）。"""
        return [name for name in self.bindings if not name.startswith("__")]

    def __repr__(self) -> str:
        path = " <- ".join(scope.name for scope in reversed(self.chain()))
        return f"Scope({path}, {len(self.bindings)} names)"


# ============================================================
# 库加载
# ============================================================


def _import(name: str) -> Any:
    if name.split(".")[0] == "matplotlib":
        # 无界面环境，图像只需渲染为位图
        import matplotlib

        matplotlib.use("Agg")

    try:
        return importlib.import_module(name)
    except ImportError as e:
        error_msg = f"Unable to load library `{name}`: {e}"
        log_msg("ERROR", error_msg)
        raise ScopeError(error_msg) from e


def load_library(name: str) -> Dict[str, Any]:
    """导入模块并返回其公开名称表。

    Args:
        name: 模块名（可为点分路径，如 "matplotlib.pyplot"）

    Returns:
        {名称: 对象}，优先使用 __all__，否则取所有非下划线名称

    Raises:
        ScopeError: 模块不存在或导入失败
    """
    module = _import(name)
    public = getattr(module, "__all__", None)
    if public is None:
        public = [attr for attr in dir(module) if not attr.startswith("_")]

    table: Dict[str, Any] = {}
    for attr in public:
        try:
            table[attr] = getattr(module, attr)
        except AttributeError:
            continue
    return table


# ============================================================
# 作用域链
# ============================================================


_MISSING = object()


@dataclass
class ScopeChain:
    """执行上下文拥有的作用域链。

    Attributes:
        library: 库作用域（只读）
        session: 会话作用域（run_code 使用）
        function: 空函数作用域（isolated call_code 的父作用域）
        local: session 是否为独立命名空间
        closed: library 的父作用域是否只含内置名称
    """

    library: Scope
    session: Scope
    function: Scope
    local: bool = True
    closed: bool = False

    def builtins_namespace(self) -> Dict[str, Any]:
        """将 library 及其父作用域展平为执行时的 __builtins__ 字典。"""
        return self.library.flatten()

    def new_call_scope(self, isolated: bool = False) -> Scope:
        """新建一次调用的作用域。

        Args:
            isolated: True 时父作用域为空函数作用域，看不到 session 中的名称

        Returns:
            新的 call 作用域
        """
        parent = self.function if isolated else self.session
        return Scope("call", parent=parent)

    def call_namespace(self, call: Scope) -> Dict[str, Any]:
        """将 call 作用域物化为执行用的 globals 字典。

        call 及其到 library 之前的祖先按优先级合并为新字典，
        执行中的写入只落在该字典上，调用结束后随之丢弃。
        """
        namespace = call.flatten(stop=self.library)
        namespace["__builtins__"] = self.builtins_namespace()
        return namespace

    @contextmanager
    def session_namespace(self) -> Iterator[Dict[str, Any]]:
        """在 session 字典上安装 __builtins__ 并返回该字典。

        local=False 时 session 即宿主的 __main__ 命名空间，
        执行结束后恢复其原有 __builtins__。
        """
        namespace = self.session.bindings
        previous = namespace.get("__builtins__", _MISSING)
        namespace["__builtins__"] = self.builtins_namespace()
        try:
            yield namespace
        finally:
            if not self.local:
                if previous is _MISSING:
                    namespace.pop("__builtins__", None)
                else:
                    namespace["__builtins__"] = previous


def _ambient_bindings() -> Dict[str, Any]:
    import __main__

    return vars(__main__)


def build_scope_chain(
    local: bool = True,
    closed: bool = False,
    libraries: Sequence[str] = (),
    aliases: Optional[Dict[str, str]] = None,
) -> ScopeChain:
    """构建作用域链。

    Args:
        local: True 时 session 为新建的独立字典；False 时为宿主 __main__ 命名空间
        closed: True 时 library 的父作用域只含 Python 内置名称；
            False 时为宿主 __main__ 命名空间（再上一层为内置名称），
            宿主运行时导入的模块也可见
        libraries: 需要展平的模块名白名单（按顺序，后者覆盖前者的同名项）
        aliases: {别名: 模块名}，以模块对象绑定到 library 作用域

    Returns:
        ScopeChain 对象

    Raises:
        ScopeError: 白名单中的模块无法导入
    """
    builtin_scope = Scope("builtin", dict(builtins.__dict__), frozen=True)
    if closed:
        base = builtin_scope
    else:
        base = Scope("ambient", _ambient_bindings(), parent=builtin_scope, frozen=True)

    table: Dict[str, Any] = {}
    for name in libraries:
        table.update(load_library(name))
    for alias, name in (aliases or {}).items():
        table[alias] = _import(name)

    library = Scope("library", table, parent=base, frozen=True)

    if local:
        session = Scope("session", {"__name__": "__context__"}, parent=library)
    else:
        session = Scope("session", _ambient_bindings(), parent=library)

    function = Scope("function", parent=library, frozen=True)

    log_msg(
        "DEBUG",
        f"作用域链构建完成: library={len(table)} 个名称, "
        f"libraries={list(libraries)}, local={local}, closed={closed}",
    )

    return ScopeChain(
        library=library,
        session=session,
        function=function,
        local=local,
        closed=closed,
    )
