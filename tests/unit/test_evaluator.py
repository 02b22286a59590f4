"""
pycontext/executor/evaluator.py 的单元测试。
"""

import ast

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pytest

from pycontext.codec import Value
from pycontext.executor import Evaluator, RETURN_NAME
from pycontext.executor.evaluator import (
    EarlyReturn,
    ReturnRewriter,
    ReturnSignal,
    format_error,
    group_units,
)
from utils import logger_system


@pytest.fixture
def evaluator():
    """创建默认配置的求值器。"""
    return Evaluator()


@pytest.fixture
def namespace():
    """空的执行命名空间。"""
    return {}


class TestGroupUnits:
    """测试语句分组。"""

    def test_one_statement_per_line(self):
        """测试每行一条语句时各自成组。"""
        tree = ast.parse("a = 1\nb = 2\nc = 3")
        assert [len(unit) for unit in group_units(tree.body)] == [1, 1, 1]

    def test_semicolon_statements_share_unit(self):
        """测试同一行的多条语句合为一组。"""
        tree = ast.parse("a = 1; b = 2\nc = 3")
        assert [len(unit) for unit in group_units(tree.body)] == [2, 1]


class TestReturnRewriter:
    """测试 return 改写。"""

    def _rewrite(self, code):
        tree = ReturnRewriter().visit(ast.parse(code))
        return ast.unparse(ast.fix_missing_locations(tree))

    def test_top_level_return(self):
        """测试顶层 return 改写为 __return__ 调用。"""
        assert self._rewrite("return 1") == f"{RETURN_NAME}(1)"

    def test_bare_return(self):
        """测试无值 return。"""
        assert self._rewrite("return") == f"{RETURN_NAME}()"

    def test_nested_in_block(self):
        """测试 if/for 块中的 return 也被改写。"""
        assert RETURN_NAME in self._rewrite("if x:\n    return 2")

    def test_function_body_untouched(self):
        """测试函数定义内部的 return 保持原义。"""
        code = "def f():\n    return 3"
        assert RETURN_NAME not in self._rewrite(code)


class TestEarlyReturn:
    """测试 early return 钩子。"""

    def test_records_value_and_raises(self):
        """测试调用时记录返回值并抛出信号。"""
        hook = EarlyReturn()
        with pytest.raises(ReturnSignal):
            hook(5)
        assert hook.returned is True
        assert hook.value == 5

    def test_signal_not_an_exception(self):
        """测试信号不会被 except Exception 捕获。"""
        assert not issubclass(ReturnSignal, Exception)


class TestRun:
    """测试 run 模式。"""

    def test_last_visible_value(self, evaluator, namespace):
        """测试输出为最后一个可见值。"""
        result = evaluator.run("x = 1\nx", namespace)

        assert result.errors is None
        assert result.output == Value("int", "text", "1")

    def test_assignment_has_no_output(self, evaluator, namespace):
        """测试只有赋值时没有输出。"""
        result = evaluator.run("x = 1", namespace)

        assert result.output is None
        assert result.to_dict() == {}
        assert namespace["x"] == 1

    def test_none_is_not_visible(self, evaluator, namespace):
        """测试值为 None 的表达式不覆盖候选输出。"""
        result = evaluator.run("1\nNone", namespace)
        assert result.output.content == "1"

    def test_error_on_second_line(self, evaluator, namespace):
        """测试第二条语句的错误归因到第 2 行。"""
        result = evaluator.run("x = 1\ny = undefined_name", namespace)

        assert len(result.errors) == 1
        assert result.errors[0].line == 2
        assert result.errors[0].column == 0
        assert result.errors[0].message.startswith("NameError:")

    def test_continues_after_error(self, evaluator, namespace):
        """测试 run 模式遇到错误后继续执行。"""
        result = evaluator.run("a = 1\n1 / 0\nb = 2\nb", namespace)

        assert result.messages == ["ZeroDivisionError: division by zero"]
        assert namespace["b"] == 2
        assert result.output.content == "2"

    def test_multiline_statement_lines(self, evaluator, namespace):
        """测试多行语句之后的行号。"""
        result = evaluator.run("x = [\n    1,\n    2,\n]\ny = missing", namespace)
        assert result.errors[0].line == 5

    def test_blank_lines_and_comments(self, evaluator, namespace):
        """测试空行和注释计入行号。"""
        result = evaluator.run("# comment\n\nmissing", namespace)
        assert result.errors[0].line == 3

    def test_semicolon_line(self, evaluator, namespace):
        """测试同一行多条语句的错误归因。"""
        result = evaluator.run("a = 1\nb = 2; c = missing", namespace)
        assert result.errors[0].line == 2

    def test_syntax_error(self, evaluator, namespace):
        """测试语法错误报告为单个错误。"""
        result = evaluator.run("x = 1\ny = (", namespace)

        assert len(result.errors) == 1
        assert result.errors[0].message.startswith("SyntaxError")
        assert "x" not in namespace

    def test_return_outside_call(self, evaluator, namespace):
        """测试 run 模式中的 return 是语法错误。"""
        result = evaluator.run("return 1", namespace)
        assert result.errors[0].message.startswith("SyntaxError")

    def test_stdout_is_visible(self, evaluator, namespace):
        """测试 stdout 文本作为可见值。"""
        result = evaluator.run("print('hello')", namespace)
        assert result.output == Value("str", "text", "hello\n")

    def test_value_after_stdout(self, evaluator, namespace):
        """测试同一语句的返回值在 stdout 文本之后。"""
        result = evaluator.run("print('a') or 5", namespace)
        assert result.output.content == "5"

    def test_stdout_capture_disabled(self, namespace, capsys):
        """测试关闭 stdout 捕获。"""
        result = Evaluator(capture_stdout=False).run("print('hello')", namespace)

        assert result.output is None
        assert "hello" in capsys.readouterr().out

    def test_pack_error_becomes_entry(self, evaluator, namespace):
        """测试打包失败转为第 0 行错误且输出为空。"""
        result = evaluator.run("[object()]", namespace)

        assert result.output is None
        assert result.errors[0].line == 0
        assert result.errors[0].message.startswith("Unable to pack")

    def test_long_message_truncated(self, namespace):
        """测试过长错误信息被截断。"""
        result = Evaluator(max_message_length=50).run(
            "raise ValueError('x' * 200)", namespace
        )
        message = result.errors[0].message

        assert "chars truncated" in message
        assert len(message) < 200

    def test_system_exit_is_reported(self, evaluator, namespace):
        """测试 SystemExit 作为错误上报。"""
        result = evaluator.run("raise SystemExit(3)", namespace)
        assert result.messages == ["SystemExit: 3"]

    def test_base_exception_is_reported(self, evaluator, namespace):
        """测试其他 BaseException 同样作为错误上报，后续语句继续执行。"""
        result = evaluator.run("x = 1\nraise BaseException('boom')\nx", namespace)

        assert result.messages == ["BaseException: boom"]
        assert result.errors[0].line == 2
        assert result.output.content == "1"

    def test_cancelled_error_is_reported(self, evaluator, namespace):
        """测试 asyncio.CancelledError 不会逃出求值器。"""
        result = evaluator.call("import asyncio\nraise asyncio.CancelledError()", namespace)
        assert result.messages == ["CancelledError"]

    def test_keyboard_interrupt_propagates(self, evaluator, namespace):
        """测试 KeyboardInterrupt 不被吞掉。"""
        with pytest.raises(KeyboardInterrupt):
            evaluator.run("raise KeyboardInterrupt", namespace)

    def test_namespace_persists(self, evaluator, namespace):
        """测试多次执行共享命名空间。"""
        evaluator.run("def double(v):\n    return v * 2", namespace)
        result = evaluator.run("double(21)", namespace)
        assert result.output.content == "42"


class TestCall:
    """测试 call 模式。"""

    def test_early_return(self, evaluator, namespace):
        """测试 return 提前结束并作为输出。"""
        result = evaluator.call("x = 1\nreturn x\nx = 2\n'late'", namespace)

        assert result.errors is None
        assert result.output == Value("int", "text", "1")
        assert namespace["x"] == 1

    def test_return_in_block(self, evaluator, namespace):
        """测试条件块中的 return。"""
        result = evaluator.call("if True:\n    return 'early'\n'late'", namespace)
        assert result.output.content == "early"

    def test_return_overrides_visible_value(self, evaluator, namespace):
        """测试返回值覆盖此前的可见值。"""
        result = evaluator.call("1\nprint('noise')\nreturn 'value'", namespace)
        assert result.output.content == "value"

    def test_return_through_try(self, evaluator, namespace):
        """测试 except Exception 不会拦截 return。"""
        code = "try:\n    return 3\nexcept Exception:\n    pass\n4"
        result = evaluator.call(code, namespace)

        assert result.errors is None
        assert result.output.content == "3"

    def test_return_swallowed_still_stops(self, evaluator, namespace):
        """测试 except BaseException 吞掉 return 后仍在语句边界停止。"""
        code = (
            "try:\n    return 1\nexcept BaseException:\n    pass\n"
            "raise ValueError('after')"
        )
        result = evaluator.call(code, namespace)

        assert result.errors is None
        assert result.output.content == "1"

    def test_bare_return_is_null(self, evaluator, namespace):
        """测试无值 return 输出 null。"""
        result = evaluator.call("return\n1", namespace)
        assert result.output == Value("null", "text", "null")

    def test_function_return_untouched(self, evaluator, namespace):
        """测试函数体内的 return 不触发 early return。"""
        result = evaluator.call("def f():\n    return 5\nf()\n6", namespace)
        assert result.output.content == "6"

    def test_stops_at_first_error(self, evaluator, namespace):
        """测试 call 模式遇到第一个错误即停止。"""
        result = evaluator.call("x = 1\nmissing\nx = 2\n1 / 0", namespace)

        assert len(result.errors) == 1
        assert result.errors[0].line == 2
        assert namespace["x"] == 1

    def test_no_return_uses_last_value(self, evaluator, namespace):
        """测试没有 return 时使用最后一个可见值。"""
        result = evaluator.call("x = 20\nx + 22", namespace)
        assert result.output.content == "42"


class TestPlotCapture:
    """测试图像捕获。"""

    def test_new_figure_is_output(self, evaluator, namespace):
        """测试新建图像作为输出并在执行后关闭。"""
        namespace["plt"] = plt
        before = plt.get_fignums()
        result = evaluator.run("_ = plt.plot([1, 2, 3])", namespace)

        assert result.output.type == "plot"
        assert result.output.content.startswith("data:image/png;base64,")
        assert plt.get_fignums() == before

    def test_capture_disabled(self, namespace):
        """测试关闭图像捕获。"""
        namespace["plt"] = plt
        result = Evaluator(capture_plots=False).run("_ = plt.plot([1, 2])", namespace)

        assert result.output is None
        assert len(plt.get_fignums()) >= 1
        plt.close("all")


class TestEventLog:
    """测试执行事件记录。"""

    def test_event_per_evaluation(self, evaluator, namespace, tmp_path):
        """测试每次执行记录一条 evaluate 事件。"""
        logger = logger_system.init_logger(
            tmp_path, console_output=False, file_output=False
        )
        try:
            evaluator.run("1", namespace)
            evaluator.call("return 2", namespace)
        finally:
            logger_system.reset_logger()

        assert [event["mode"] for event in logger.json_data] == ["run", "call"]
        assert logger.json_data[0]["output_type"] == "int"
        assert logger.json_data[1]["returned"] is True


def test_format_error():
    """测试错误信息格式。"""
    assert format_error(ValueError("bad")) == "ValueError: bad"
    assert format_error(KeyError()) == "KeyError"
