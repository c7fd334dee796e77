from __future__ import annotations
import asyncio
import mimetypes
import signal
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from .bootstrap import build_app, new_orchestrator, shutdown
from .core.errors import ChorusError, InvalidInput
from .core.models import DocumentFile, Message
from .core.orchestrator import ChatOrchestrator
from .logging_config import configure_logging

app = typer.Typer(add_completion=False, help="Multi-provider streaming chat.")
sessions_app = typer.Typer(help="Manage saved chat sessions.")
app.add_typer(sessions_app, name="sessions")

console = Console()

DEFAULT_CONFIG = Path("config/default.yaml")

HELP_TEXT = """Commands:
  /help               show this help
  /provider [id]      show or switch provider (resets the model)
  /model [id]         show or switch model
  /models             refresh and list models for the current provider
  /web on|off         toggle web search for the next turns
  /doc <path> [hint]  analyze a document or image for the next turns
  /clear-analysis     forget the document/image analysis
  /new                start a new chat
  /id                 show the session id
  /exit, /quit        leave"""


def _context(config: Path) -> Dict[str, Any]:
    ctx = build_app(config)
    log_cfg = ctx["cfg"].get("logging") or {}
    configure_logging(log_cfg.get("level"), log_cfg.get("file"))
    return ctx


# ----- chat REPL -----

async def _run_turn(orch: ChatOrchestrator, text: str) -> None:
    target: Dict[str, Any] = {"id": None, "printed": 0}

    def on_update(msg: Message) -> None:
        if msg.role != "assistant" or msg.local_only:
            return
        if target["id"] is None:
            target["id"] = msg.id
        if msg.id != target["id"]:
            return
        console.print(msg.content[target["printed"]:], end="", markup=False, highlight=False)
        target["printed"] = len(msg.content)

    loop = asyncio.get_running_loop()
    previous = signal.getsignal(signal.SIGINT)
    try:
        loop.add_signal_handler(signal.SIGINT, orch.stop_generation)
        trap = True
    except (NotImplementedError, RuntimeError, ValueError):
        trap = False

    orch.add_listener(on_update)
    try:
        await orch.send_user_message(text)
    finally:
        orch.remove_listener(on_update)
        if trap:
            loop.remove_signal_handler(signal.SIGINT)
            if previous is not None:
                signal.signal(signal.SIGINT, previous)
    if target["printed"]:
        console.print()


async def _read_document(orch: ChatOrchestrator, arg: str) -> None:
    path_str, _, hint = arg.partition(" ")
    path = Path(path_str).expanduser()
    if not path.is_file():
        console.print(f"[red]No such file:[/red] {path}")
        return
    content_type = mimetypes.guess_type(path.name)[0] or "text/plain"
    file = DocumentFile(name=path.name, content_type=content_type, data=path.read_bytes())
    with console.status(f"Processing {path.name}..."):
        result = await orch.process_document(file, hint.strip() or None)
    if result is not None:
        console.print(f"[green]{path.name}[/green]: {result.metadata.get('word_count', 0)} words via "
                      f"{result.metadata.get('processing_method')}")


async def _handle_command(orch: ChatOrchestrator, line: str) -> bool:
    """Returns False when the REPL should stop."""
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()

    if cmd in ("/exit", "/quit"):
        return False
    if cmd == "/help":
        console.print(HELP_TEXT, markup=False)
    elif cmd == "/id":
        console.print(orch.session_id or "(draft, not saved yet)")
    elif cmd == "/provider":
        if arg:
            sel = orch.select_provider(arg)
            console.print(f"Provider: {sel.provider_id}  Model: {sel.model_id}")
        else:
            ids = ", ".join(p.id for p in orch.registry.providers())
            console.print(f"Provider: {orch.selection.provider_id}  (available: {ids})")
    elif cmd == "/model":
        if arg:
            sel = orch.select_model(arg)
        else:
            sel = orch.selection
        console.print(f"Model: {sel.model_id}")
    elif cmd == "/models":
        models = await orch.refresh_models()
        for m in models:
            mark = "*" if m.id == orch.selection.model_id else " "
            console.print(f"{mark} {m.id}  [dim]{m.display_name}[/dim]")
    elif cmd == "/web":
        if arg not in ("on", "off"):
            console.print("Usage: /web on|off")
        else:
            orch.set_web_search(arg == "on")
            console.print(f"Web search {arg}")
    elif cmd == "/doc":
        if not arg:
            console.print("Usage: /doc <path> [hint]")
        else:
            await _read_document(orch, arg)
    elif cmd == "/clear-analysis":
        orch.clear_analysis()
        console.print("Analysis cleared")
    elif cmd == "/new":
        orch.reset()
        console.print("New chat")
    else:
        console.print(f"Unknown command {cmd}. Type /help.")
    return True


async def _repl(ctx: Dict[str, Any], session_id: Optional[str], provider: Optional[str], model: Optional[str]) -> None:
    try:
        orch = new_orchestrator(ctx, session_id=session_id, provider_id=provider)
        orch.add_notify_listener(
            lambda n: console.print(f"[red]{n.title}:[/red] {n.message}" if n.level == "error" else n.message)
        )
        if model:
            orch.select_model(model)
        if session_id:
            await orch.load()
            console.print(f"Resumed [bold]{orch.title}[/bold] ({len(orch.transcript)} messages)")

        sel = orch.selection
        console.print(f"Chorus chat ({sel.provider_id} / {sel.model_id}). Type /help for commands. Ctrl+C to quit.")
        while True:
            try:
                line = (await asyncio.to_thread(input, "chorus> ")).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\nBye.")
                return
            if not line:
                continue
            try:
                if line.startswith("/"):
                    if not await _handle_command(orch, line):
                        console.print("Bye.")
                        return
                else:
                    await _run_turn(orch, line)
            except InvalidInput as e:
                console.print(f"[yellow]{e}[/yellow]")
    finally:
        await shutdown(ctx)


@app.callback(invoke_without_command=True)
def main(
    typer_ctx: typer.Context,
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="YAML config file"),
):
    typer_ctx.obj = {"config": config}
    if typer_ctx.invoked_subcommand is None:
        _chat(config, None, None, None)


@app.command()
def chat(
    typer_ctx: typer.Context,
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Resume a saved session"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p"),
    model: Optional[str] = typer.Option(None, "--model", "-m"),
):
    """Interactive chat."""
    _chat(typer_ctx.obj["config"], session, provider, model)


def _chat(config: Path, session: Optional[str], provider: Optional[str], model: Optional[str]) -> None:
    ctx = _context(config)
    try:
        asyncio.run(_repl(ctx, session, provider, model))
    except ChorusError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def providers(typer_ctx: typer.Context):
    """List configured providers."""
    ctx = _context(typer_ctx.obj["config"])
    registry = ctx["registry"]
    table = Table("id", "name", "default model")
    for p in registry.providers():
        table.add_row(p.id, p.display_name, registry.resolve_default_model(p.id))
    console.print(table)
    asyncio.run(shutdown(ctx))


@app.command()
def models(typer_ctx: typer.Context, provider: str = typer.Argument(..., help="Provider id")):
    """List a provider's models (live, falling back to the built-in list)."""
    ctx = _context(typer_ctx.obj["config"])
    registry = ctx["registry"]

    async def run():
        try:
            return await registry.fetch_models(provider)
        finally:
            await shutdown(ctx)

    try:
        items = asyncio.run(run())
    except InvalidInput as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    table = Table("id", "name", "context")
    for m in items:
        table.add_row(m.id, m.display_name, str(m.context_length))
    console.print(table)


# ----- sessions -----

def _repo_call(typer_ctx: typer.Context, fn):
    ctx = _context(typer_ctx.obj["config"])
    try:
        return asyncio.run(fn(ctx["repository"], ctx["cfg"]))
    except ChorusError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@sessions_app.command("list")
def sessions_list(typer_ctx: typer.Context):
    async def run(repo, cfg):
        return await repo.list_sessions((cfg.get("runtime") or {}).get("user_id"))

    table = Table("id", "title", "pin", "updated")
    for s in _repo_call(typer_ctx, run):
        table.add_row(s.id, s.title, "yes" if s.pinned else "", s.updated_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


@sessions_app.command("rename")
def sessions_rename(typer_ctx: typer.Context, session_id: str, title: str):
    async def run(repo, _cfg):
        await repo.update_session_title(session_id, title)

    _repo_call(typer_ctx, run)
    console.print(f"Renamed {session_id}")


@sessions_app.command("pin")
def sessions_pin(typer_ctx: typer.Context, session_id: str,
                 unpin: bool = typer.Option(False, "--unpin", help="Remove the pin instead")):
    async def run(repo, _cfg):
        await repo.update_session_pinned(session_id, not unpin)

    _repo_call(typer_ctx, run)
    console.print(f"{'Unpinned' if unpin else 'Pinned'} {session_id}")


@sessions_app.command("delete")
def sessions_delete(typer_ctx: typer.Context, session_id: str,
                    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    if not yes:
        typer.confirm(f"Delete session {session_id}?", abort=True)

    async def run(repo, _cfg):
        await repo.delete_session(session_id)

    _repo_call(typer_ctx, run)
    console.print(f"Deleted {session_id}")


# ----- web -----

@app.command()
def serve(
    typer_ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Serve the HTTP API."""
    from .web.app import run

    run(config=typer_ctx.obj["config"], host=host, port=port)
