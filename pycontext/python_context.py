"""
Python 执行上下文模块。

实现宿主使用的 Context API：run_code / call_code / code_dependencies。
上下文之间只交换 Value（见 pycontext.codec），从不交换原生对象。

示例:
    >>> context = PythonContext()
    >>> context.run_code("my_var = 42")                    # 在 session 中赋值
    >>> context.run_code("my_var").output.content           # '42'
    >>> context.call_code("my_var", isolated=True).errors   # isolated 调用看不到 session
    >>> context.call_code("x * y", {"x": pack(6), "y": pack(7)}).output.content  # '42'
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pycontext.codec import unpack
from pycontext.executor import (
    Evaluator,
    EvaluationResult,
    ScopeChain,
    build_scope_chain,
    code_dependencies,
)
from utils.logger_system import log_msg


class PythonContext:
    """Python 执行上下文。

    持有一条作用域链（library <- session / function <- call），
    session 中的状态在多次 run_code 之间持久化；每次 call_code 使用新建的 call 作用域。

    非线程安全：调用方需串行调用同一上下文。不同上下文互相独立，
    但执行期间会重定向进程级 stdout。
    """

    # 宿主清单中的上下文描述
    spec: Dict[str, Any] = {
        "name": "PythonContext",
        "base": "Context",
        "aliases": ["py", "python"],
    }

    # 公开名称展平到 library 作用域的模块
    LIBRARIES: List[str] = ["math", "statistics"]

    # 以模块对象绑定到 library 作用域的别名
    ALIASES: Dict[str, str] = {"np": "numpy", "pd": "pandas"}

    def __init__(
        self,
        working_dir: Optional[str | Path] = None,
        local: bool = True,
        closed: bool = False,
        libraries: Optional[Sequence[str]] = None,
        aliases: Optional[Dict[str, str]] = None,
        evaluator: Optional[Evaluator] = None,
    ):
        """创建上下文。

        closed 默认为 False，这样宿主（或 local=False 时的用户代码）导入的模块
        在后续 run_code / call_code 中可见。

        Args:
            working_dir: 工作目录，非 None 时切换进程当前目录
            local: True 时不能写入宿主 __main__ 命名空间
            closed: True 时不能读取宿主 __main__ 命名空间
            libraries: 展平模块白名单，None 使用 LIBRARIES
            aliases: 模块别名，None 使用 ALIASES
            evaluator: 自定义求值器，None 使用默认配置

        Raises:
            FileNotFoundError: 工作目录不存在
            ScopeError: 白名单中的模块无法导入
        """
        self.working_dir: Optional[Path] = None
        if working_dir is not None:
            path = Path(working_dir).resolve()
            if not path.is_dir():
                error_msg = f"工作目录不存在: {path}"
                log_msg("ERROR", error_msg)
                raise FileNotFoundError(error_msg)
            os.chdir(path)
            self.working_dir = path

        self.scopes: ScopeChain = build_scope_chain(
            local=local,
            closed=closed,
            libraries=self.LIBRARIES if libraries is None else list(libraries),
            aliases=self.ALIASES if aliases is None else dict(aliases),
        )
        self.evaluator = evaluator or Evaluator()

        log_msg(
            "INFO",
            f"PythonContext 初始化: working_dir={self.working_dir}, "
            f"local={local}, closed={closed}",
        )

    @property
    def local(self) -> bool:
        return self.scopes.local

    @property
    def closed(self) -> bool:
        return self.scopes.closed

    def run_code(
        self, code: str, options: Optional[Mapping[str, Any]] = None
    ) -> EvaluationResult:
        """在上下文的 session 作用域中执行代码。

        Args:
            code: Python 源码
            options: 执行选项（保留参数，当前未使用）

        Returns:
            EvaluationResult（赋值在后续 run_code 中可见）
        """
        with self.scopes.session_namespace() as namespace:
            return self.evaluator.run(code, namespace)

    def call_code(
        self,
        code: str,
        inputs: Optional[Mapping[str, Any]] = None,
        isolated: bool = False,
    ) -> EvaluationResult:
        """在新建的 call 作用域中以函数调用语义执行代码。

        Args:
            code: Python 源码（可使用 `return` 提前返回）
            inputs: {参数名: Value}，解包后绑定到 call 作用域
            isolated: True 时看不到 session 中的名称

        Returns:
            EvaluationResult

        Raises:
            UnpackError: inputs 中的 Value 不合法（协议错误，直接抛给调用方）
        """
        call = self.scopes.new_call_scope(isolated)
        for name, package in (inputs or {}).items():
            call.bind(name, unpack(package))

        namespace = self.scopes.call_namespace(call)
        try:
            return self.evaluator.call(code, namespace)
        finally:
            # call 作用域随调用结束丢弃
            namespace.clear()
            call.bindings.clear()

    def code_dependencies(self, code: str) -> List[str]:
        """返回代码引用的非内置名称（词法扫描）。"""
        return code_dependencies(code)

    # 宿主协议中的方法名
    runCode = run_code
    callCode = call_code
    codeDependencies = code_dependencies

    def __repr__(self) -> str:
        return (
            f"PythonContext(local={self.local}, closed={self.closed}, "
            f"working_dir={self.working_dir})"
        )


def create_context(cfg) -> PythonContext:
    """按配置创建上下文。

    Args:
        cfg: utils.config.Config 对象

    Returns:
        PythonContext 实例
    """
    evaluator = Evaluator(
        capture_stdout=cfg.evaluation.capture_stdout,
        capture_plots=cfg.evaluation.capture_plots,
        digits=cfg.codec.digits,
        plot_dpi=cfg.codec.plot_dpi,
        max_message_length=cfg.evaluation.max_message_length,
    )
    return PythonContext(
        working_dir=cfg.context.working_dir,
        local=cfg.context.local,
        closed=cfg.context.closed,
        libraries=cfg.libraries.flatten,
        aliases=cfg.libraries.aliases,
        evaluator=evaluator,
    )
