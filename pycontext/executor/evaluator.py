"""
代码求值模块。

逐条执行顶层语句并汇总结果：
- 每条语句产生带标签的结果（value / error / return）
- 只保留最后一个可见值，最终打包为 Value
- 错误按源码行号归因（列号不追踪）
- call 模式下遇到第一个错误或 early return 即停止
"""

import ast
import contextlib
import io
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Literal, Optional

from pycontext.codec import PackError, pack
from utils.logger_system import log_json, log_msg
from utils.text_utils import trim_long_string
from .result import ErrorEntry, EvaluationResult


# 源码在 traceback 中显示的文件名
FILENAME = "<context>"
# call_code 作用域中保留给 early return 的名称
RETURN_NAME = "__return__"

OutcomeKind = Literal["value", "error", "return"]


class ReturnSignal(BaseException):
    """early return 控制流信号。

    继承 BaseException，用户代码中的 `except Exception` 不会吞掉它。
    只在语句边界被转换为 return 结果，从不作为错误上报。
    """


class EarlyReturn:
    """安装在 call 作用域中的 early return 函数。

    调用时记录返回值、设置 returned 标志并抛出 ReturnSignal。
    """

    def __init__(self):
        self.returned = False
        self.value: Any = None

    def __call__(self, value: Any = None) -> None:
        self.value = value
        self.returned = True
        raise ReturnSignal()


class ReturnRewriter(ast.NodeTransformer):
    """将代码片段层级的 return 语句改写为 __return__(...) 调用。

    不进入函数、类定义内部，其中的 return 保持原义。
    """

    def _skip(self, node: ast.AST) -> ast.AST:
        return node

    visit_FunctionDef = _skip
    visit_AsyncFunctionDef = _skip
    visit_ClassDef = _skip
    visit_Lambda = _skip

    def visit_Return(self, node: ast.Return) -> ast.AST:
        args = [node.value] if node.value is not None else []
        call = ast.Call(
            func=ast.Name(id=RETURN_NAME, ctx=ast.Load()), args=args, keywords=[]
        )
        return ast.copy_location(ast.Expr(value=call), node)


@dataclass
class Outcome:
    """单条语句的执行结果。

    Attributes:
        kind: value（产生可见值）/ error（抛出错误）/ return（early return）
        value: 可见值（kind == "value"）
        error: 错误条目（kind == "error"）
    """

    kind: OutcomeKind
    value: Any = None
    error: Optional[ErrorEntry] = None


class PlotCapture:
    """捕获语句执行期间新建或修改过的 matplotlib 图像。

    只在用户代码已导入 matplotlib.pyplot 时生效，本模块不主动导入。
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.baseline = set(self._numbers())
        # 执行前已存在的图像不视为本次输出
        for figure in self._figures():
            figure.stale = False

    def _pyplot(self):
        if not self.enabled:
            return None
        return sys.modules.get("matplotlib.pyplot")

    def _numbers(self) -> List[int]:
        pyplot = self._pyplot()
        return list(pyplot.get_fignums()) if pyplot else []

    def _figures(self) -> List[Any]:
        pyplot = self._pyplot()
        numbers = self._numbers()
        if not numbers:
            return []
        current = pyplot.gcf()
        figures = [pyplot.figure(number) for number in numbers]
        pyplot.figure(current.number)
        return figures

    def changed(self) -> List[Any]:
        """返回自上次检查以来新建或被修改的图像，并将其标记为已捕获。"""
        figures = [
            figure
            for figure in self._figures()
            if figure.stale or figure.number not in self.baseline
        ]
        for figure in figures:
            figure.stale = False
            self.baseline.add(figure.number)
        return figures

    def close(self, initial: set) -> None:
        """关闭本次执行期间打开的图像。"""
        pyplot = self._pyplot()
        if pyplot is None:
            return
        for number in self._numbers():
            if number not in initial:
                pyplot.close(number)


def group_units(body: List[ast.stmt]) -> List[List[ast.stmt]]:
    """将顶层语句分组为执行单元。

    起始行与上一条语句结束行相同的语句（如 `a = 1; b = 2`）并入同一单元。
    """
    units: List[List[ast.stmt]] = []
    for stmt in body:
        if units and stmt.lineno == units[-1][-1].end_lineno:
            units[-1].append(stmt)
        else:
            units.append([stmt])
    return units


def format_error(exc: BaseException) -> str:
    """错误信息格式: "异常类型: 消息"。"""
    message = str(exc)
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


class Evaluator:
    """语句级求值器。

    非线程安全（执行期间会重定向进程级 stdout）。
    """

    def __init__(
        self,
        capture_stdout: bool = True,
        capture_plots: bool = True,
        digits: int = 15,
        plot_dpi: int = 100,
        max_message_length: int = 5100,
    ):
        """初始化求值器。

        Args:
            capture_stdout: 语句写入 stdout 的文本是否作为可见值
            capture_plots: 语句新建/修改的 matplotlib 图像是否作为可见值
            digits: 浮点数打包的有效位数
            plot_dpi: 图像打包分辨率
            max_message_length: 错误信息最大长度（超出截断，<= 0 不截断）
        """
        self.capture_stdout = capture_stdout
        self.capture_plots = capture_plots
        self.digits = digits
        self.plot_dpi = plot_dpi
        self.max_message_length = max_message_length

    def run(self, code: str, namespace: Dict[str, Any]) -> EvaluationResult:
        """在 namespace 中执行代码，遇到错误继续执行后续单元。

        Args:
            code: Python 源码
            namespace: 执行用 globals（赋值直接写入）

        Returns:
            EvaluationResult
        """
        return self._evaluate(code, namespace, mode="run")

    def call(self, code: str, namespace: Dict[str, Any]) -> EvaluationResult:
        """以函数调用语义执行代码。

        在 namespace 中安装 __return__，支持 `return` 提前结束；
        遇到第一个错误即停止。

        Args:
            code: Python 源码
            namespace: 本次调用的 globals（调用结束后由调用方丢弃）

        Returns:
            EvaluationResult，有返回值时 output 为返回值的打包结果
        """
        hook = EarlyReturn()
        namespace[RETURN_NAME] = hook
        return self._evaluate(code, namespace, mode="call", hook=hook)

    # ============================================================
    # 内部实现
    # ============================================================

    def _error(self, line: int, exc: BaseException) -> ErrorEntry:
        message = trim_long_string(format_error(exc), threshold=self.max_message_length)
        return ErrorEntry(line=line, column=0, message=message)

    def _evaluate(
        self,
        code: str,
        namespace: Dict[str, Any],
        mode: str,
        hook: Optional[EarlyReturn] = None,
    ) -> EvaluationResult:
        start_time = time.time()

        try:
            tree = ast.parse(code, filename=FILENAME, mode="exec")
        except SyntaxError as e:
            log_msg("DEBUG", f"[{mode}] 语法错误: line={e.lineno}, {e.msg}")
            error = self._error(e.lineno or 0, e)
            self._log_event(mode, 0, [error], None, False, start_time)
            return EvaluationResult(errors=[error])

        if hook is not None:
            tree = ast.fix_missing_locations(ReturnRewriter().visit(tree))

        units = group_units(tree.body)
        plots = PlotCapture(self.capture_plots)
        initial_figures = set(plots.baseline)

        errors: List[ErrorEntry] = []
        candidate: Any = None
        has_value = False
        stop_on_error = mode == "call"

        line = 0
        previous_end = 0
        stopped = False
        for unit in units:
            # 行号计数：单元源码片段中的换行数，至少为 1
            line += max(1, unit[-1].end_lineno - previous_end)
            previous_end = unit[-1].end_lineno

            for stmt in unit:
                for outcome in self._execute(stmt, namespace, line, plots):
                    if outcome.kind == "value":
                        candidate, has_value = outcome.value, True
                    elif outcome.kind == "error":
                        errors.append(outcome.error)
                        stopped = stopped or stop_on_error
                    else:
                        stopped = True
                # 用户代码吞掉 ReturnSignal 时仍在语句边界停止
                if hook is not None and hook.returned:
                    stopped = True
                if stopped:
                    break
            if stopped:
                break

        if hook is not None and hook.returned:
            candidate, has_value = hook.value, True

        output = None
        if has_value:
            try:
                output = pack(candidate, digits=self.digits, plot_dpi=self.plot_dpi)
            except PackError as e:
                errors.append(ErrorEntry(line=0, column=0, message=str(e)))

        plots.close(initial_figures)

        returned = hook is not None and hook.returned
        self._log_event(mode, len(units), errors, output, returned, start_time)
        return EvaluationResult(errors=errors or None, output=output)

    def _execute(
        self, stmt: ast.stmt, namespace: Dict[str, Any], line: int, plots: PlotCapture
    ) -> Iterator[Outcome]:
        """执行单条语句，按发生顺序产出结果。"""
        stdout = io.StringIO()
        redirect = (
            contextlib.redirect_stdout(stdout)
            if self.capture_stdout
            else contextlib.nullcontext()
        )

        value: Any = None
        failure: Optional[Outcome] = None
        try:
            with redirect:
                if isinstance(stmt, ast.Expr):
                    compiled = compile(ast.Expression(body=stmt.value), FILENAME, "eval")
                    value = eval(compiled, namespace)
                else:
                    module = ast.Module(body=[stmt], type_ignores=[])
                    exec(compile(module, FILENAME, "exec"), namespace)
        except ReturnSignal:
            failure = Outcome("return")
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            log_msg("DEBUG", f"用户代码错误 (line={line}): {format_error(e)}")
            failure = Outcome("error", error=self._error(line, e))

        text = stdout.getvalue()
        if text:
            yield Outcome("value", value=text)
        if value is not None:
            yield Outcome("value", value=value)
        for figure in plots.changed():
            yield Outcome("value", value=figure)
        if failure is not None:
            yield failure

    def _log_event(
        self,
        mode: str,
        units: int,
        errors: List[ErrorEntry],
        output: Any,
        returned: bool,
        start_time: float,
    ) -> None:
        log_json(
            {
                "event": "evaluate",
                "mode": mode,
                "units": units,
                "errors": len(errors),
                "output_type": output.type if output is not None else None,
                "returned": returned,
                "elapsed": round(time.time() - start_time, 6),
            }
        )
