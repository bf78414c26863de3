"""Terminal display tests.

Renders controller state into a recording Console and checks the text,
so no terminal is needed.
"""

from rich.console import Console

from core.controller import RunController
from display.live import RunView, format_args, format_duration, format_tool_name
from stubs import Script, ScriptedAgent, ScriptStep


def _render_text(controller: RunController) -> str:
    console = Console(record=True, width=100, color_system=None)
    console.print(RunView(console).render(controller))
    return console.export_text()


class TestFormatters:
    def test_tool_name(self):
        assert format_tool_name("web_search") == "Web Search"
        assert format_tool_name("browser") == "Browser"

    def test_args_single_query(self):
        assert format_args({"query": "nvda margins"}) == '"nvda margins"'
        assert format_args({"query": "x" * 70}) == '"' + "x" * 60 + '..."'

    def test_args_pairs(self):
        assert format_args({"ticker": "AAPL", "period": "annual"}) == "ticker=AAPL, period=annual"
        assert format_args({"url": "y" * 50}) == "url=" + "y" * 40 + "..."
        assert format_args({}) == ""

    def test_duration(self):
        assert format_duration(850) == "850ms"
        assert format_duration(1300) == "1.3s"
        assert format_duration(0) == ""
        assert format_duration(None) == ""


class TestRunView:
    def test_empty_history_renders_nothing(self):
        controller = RunController(ScriptedAgent(Script(steps=[])))

        assert _render_text(controller).strip() == ""

    async def test_completed_run(self):
        script = Script(
            steps=[
                ScriptStep("tool-call", {"toolCallId": "a", "toolName": "web_search", "args": {"query": "nvda"}}),
                ScriptStep("tool-result", {"toolCallId": "a", "toolName": "web_search", "result": "ok"}),
            ],
            text="Margins expanded.",
            usage={"inputTokens": 1000, "outputTokens": 234},
        )
        controller = RunController(ScriptedAgent(script))
        await controller.submit("How are [bold]margins?")

        text = _render_text(controller)

        assert "How are [bold]margins?" in text
        assert "Web Search" in text
        assert '"nvda"' in text
        assert "Margins expanded." in text
        assert "1,234 tokens" in text

    async def test_failed_run_shows_error(self):
        controller = RunController(ScriptedAgent(Script(steps=[], fail_with=RuntimeError("quota exceeded"))))
        await controller.submit("q")

        assert "Error: quota exceeded" in _render_text(controller)

    async def test_refresh_without_live_is_a_no_op(self):
        view = RunView(Console(record=True))
        controller = RunController(ScriptedAgent(Script(steps=[], text="done")), on_change=view.refresh)

        assert await controller.submit("q") == "done"
