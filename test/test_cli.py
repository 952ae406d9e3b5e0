"""
Command line REPL and demo runner.
"""

from conftest import FakeBackend, FakeTransport
from kpc_assistant.cli import DEMO_QUESTIONS, repl, run_demo
from kpc_assistant.core.session import AssistantSession


def scripted(lines):
    items = iter(lines)

    def input_fn(prompt=""):
        try:
            return next(items)
        except StopIteration:
            raise EOFError

    return input_fn


def make_session(settings):
    transport = FakeTransport({"get_kpc_component": "Button: type, size", "get_kpc_stats": "共 80 个组件"})
    return AssistantSession(settings, transport=transport, backend=FakeBackend(available=False))


class TestRepl:
    """
    Tests for the interactive loop.
    """

    def test_commands_and_questions(self, settings, capsys):
        """
        Test help, buffered answers, stream mode and exit.
        """
        session = make_session(settings)
        repl(session, input_fn=scripted(["help", "", "Button组件有哪些属性？", "stream", "总共多少个组件", "exit", "never"]))
        out = capsys.readouterr().out
        assert "KPC AI助手使用帮助" in out
        assert "Button: type, size" in out
        assert "🔧 正在查询get_stats" in out
        assert "共 80 个组件" in out
        assert out.rstrip().endswith("再见！")

    def test_eof_ends_loop(self, settings, capsys):
        """
        Test that end of input leaves the loop quietly.
        """
        repl(make_session(settings), input_fn=scripted([]))
        assert "您可以问我" in capsys.readouterr().out


class TestDemo:
    """
    Tests for the demo question run.
    """

    def test_runs_every_question(self, settings, capsys):
        """
        Test that each demo question is asked and answered.
        """
        run_demo(make_session(settings))
        out = capsys.readouterr().out
        for question in DEMO_QUESTIONS:
            assert question in out
        assert "演示完成" in out
