# tests/unit/test_cli.py

from __future__ import annotations
import sys
from pathlib import Path
from typer.testing import CliRunner

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.cli import app  # type: ignore  # Typer app


def write_cfg(tmp_path: Path) -> Path:
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir(parents=True)
    sessions_dir = tmp_path / "sessions"
    cfg = cfg_dir / "default.yaml"
    cfg.write_text(
        f"""
        model:
          provider: echo
        providers:
          echo:
            token_delay: 0.0
        secrets:
          method: env
          mapping: {{}}
        documents:
          enabled: false
        storage:
          backend: file
          sessions_dir: "{sessions_dir}"
        runtime:
          stream: true
        """,
        encoding="utf-8",
    )
    return cfg


def test_cli_echo_roundtrip(tmp_path: Path):
    cfg = write_cfg(tmp_path)
    runner = CliRunner()
    # Provide a minimal dialogue: one message, then exit
    result = runner.invoke(app, ["--config", str(cfg)], input="hello\n/exit\n", catch_exceptions=False)

    assert result.exit_code == 0
    # Echo provider returns a fixed lorem ipsum
    assert "Lorem ipsum" in result.output
    # The conversation was saved
    sessions_dir = tmp_path / "sessions"
    assert (sessions_dir / "sessions.json").exists()
    assert len(list(sessions_dir.glob("*.jsonl"))) == 1


def test_repl_commands(tmp_path: Path):
    cfg = write_cfg(tmp_path)
    script = "\n".join([
        "/help",
        "/id",
        "/provider",
        "/model nope",
        "/web maybe",
        "/web on",
        "/new",
        "/bogus",
        "/quit",
    ]) + "\n"
    result = CliRunner().invoke(app, ["--config", str(cfg), "chat"], input=script, catch_exceptions=False)

    assert result.exit_code == 0
    out = result.output
    assert "/clear-analysis" in out                    # help text
    assert "draft" in out                              # no session yet
    assert "available:" in out and "echo" in out
    assert "not offered" in out                        # unknown model rejected, REPL continues
    assert "Usage: /web on|off" in out
    assert "Web search on" in out
    assert "Unknown command /bogus" in out
    assert "Bye." in out


def test_providers_and_models_commands(tmp_path: Path):
    cfg = write_cfg(tmp_path)
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(cfg), "providers"], catch_exceptions=False)
    assert result.exit_code == 0
    for pid in ("echo", "groq", "helpingai", "openrouter"):
        assert pid in result.output

    result = runner.invoke(app, ["--config", str(cfg), "models", "echo"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "echo-lorem" in result.output

    result = runner.invoke(app, ["--config", str(cfg), "models", "nope"], catch_exceptions=False)
    assert result.exit_code == 1


def test_sessions_commands(tmp_path: Path):
    cfg = write_cfg(tmp_path)
    runner = CliRunner()
    runner.invoke(app, ["--config", str(cfg)], input="first chat\n/exit\n", catch_exceptions=False)

    sessions_dir = tmp_path / "sessions"
    session_id = next(sessions_dir.glob("*.jsonl")).stem

    result = runner.invoke(app, ["--config", str(cfg), "sessions", "rename", session_id, "Renamed"],
                           catch_exceptions=False)
    assert result.exit_code == 0
    result = runner.invoke(app, ["--config", str(cfg), "sessions", "pin", session_id], catch_exceptions=False)
    assert result.exit_code == 0

    result = runner.invoke(app, ["--config", str(cfg), "sessions", "list"], catch_exceptions=False)
    assert "Renamed" in result.output and "yes" in result.output

    result = runner.invoke(app, ["--config", str(cfg), "sessions", "delete", "--yes", session_id],
                           catch_exceptions=False)
    assert result.exit_code == 0
    assert not (sessions_dir / f"{session_id}.jsonl").exists()

    result = runner.invoke(app, ["--config", str(cfg), "sessions", "delete", "--yes", "not-a-uuid"],
                           catch_exceptions=False)
    assert result.exit_code == 1
