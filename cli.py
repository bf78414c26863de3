"""Alpha Sentry — terminal research assistant.

Reads questions at a prompt, runs each through the agent, and renders the
run live: thinking steps, tool calls with progress and timing, and the
answer as it streams. Ctrl-C during a run cancels it; the conversation
(and the agent's memory of it) carries on at the next prompt.

Commands:
    /new   start a new conversation
    /exit  quit

Usage:
    uv run python cli.py

Without OPENROUTER_API_KEY the scripted demo agent answers every question.
"""

import asyncio
import logging
import logging.handlers
import pathlib
import signal

from dotenv import load_dotenv
from rich.console import Console

load_dotenv()

from core.audit import JsonlAuditSink
from core.backends import build_backend
from core.config import Settings
from core.controller import RunController
from display.live import RunView

console = Console()

LOG_FILE = pathlib.Path(__file__).parent / "alpha_sentry.log"
LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Send logs to the rotating file only, so nothing paints over the live view."""
    handler = logging.handlers.RotatingFileHandler(
        LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.addHandler(handler)


async def _run_query(controller: RunController, view: RunView, query: str) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.cancel)
        handles_sigint = True
    except (NotImplementedError, RuntimeError):
        handles_sigint = False

    try:
        with view.make_live() as live:
            view.attach(live)
            view.refresh(controller)
            await controller.submit(query)
            view.refresh(controller)
    finally:
        view.detach()
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)


async def _run() -> None:
    settings = Settings.from_env()
    view = RunView(console)
    controller = RunController(
        build_backend(settings),
        audit=JsonlAuditSink.from_settings(settings),
        max_steps=settings.cli_max_steps,
        internal_tools=settings.internal_tools,
        on_change=view.refresh,
    )

    console.rule("[bold]Alpha Sentry[/bold]")
    console.print(f"  model    [cyan]{settings.model_string}[/cyan]")
    console.print(f"  audit    [cyan]{settings.audit_file if settings.audit_enabled else 'disabled'}[/cyan]")
    console.print("  [dim]/new starts a new conversation · /exit quits · Ctrl-C cancels a run[/dim]")
    console.print()

    while True:
        try:
            query = (await asyncio.to_thread(console.input, "[bold cyan]❯[/bold cyan] ")).strip()
        except EOFError:
            return

        if not query:
            continue
        if query in ("/exit", "/quit"):
            return
        if query == "/new":
            controller.new_session()
            console.print("[dim]Started a new conversation.[/dim]\n")
            continue

        await _run_query(controller, view, query)
        console.print()


def main() -> None:
    _configure_logging()
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
    console.print("[dim]bye[/dim]")


if __name__ == "__main__":
    main()
