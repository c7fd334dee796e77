# tests/unit/test_bootstrap.py

from __future__ import annotations
import sys
from pathlib import Path

import pytest

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.bootstrap import build_app, new_orchestrator, shutdown  # type: ignore
from chorus.config_loader import ConfigError  # type: ignore
from chorus.core.errors import InvalidInput  # type: ignore
from chorus.providers.echo import EchoAdapter  # type: ignore
from chorus.providers.groq import GroqAdapter  # type: ignore
from chorus.storage.repository import InMemoryChatRepository, JsonlChatRepository  # type: ignore


def write_cfg(tmp_path: Path, provider="echo", backend="file", extra="") -> Path:
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    sessions_dir = tmp_path / "sessions"
    cfg = cfg_dir / "default.yaml"
    cfg.write_text(
        """
        model:
          provider: %s
        providers:
          echo:
            token_delay: 0.0
          groq:
            params:
              temperature: 0.1
        secrets:
          method: env
          mapping: {}
        storage:
          backend: %s
          sessions_dir: "%s"
        runtime:
          stream: true
        %s
        """
        % (provider, backend, str(sessions_dir), extra),
        encoding="utf-8",
    )
    return cfg


def test_build_app_echo(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
    cfg = write_cfg(tmp_path)

    ctx = build_app(cfg, repo_root=tmp_path)

    sessions_dir = tmp_path / "sessions"
    assert ctx["paths"]["sessions_dir"] == sessions_dir
    assert sessions_dir.exists() and sessions_dir.is_dir()
    assert isinstance(ctx["repository"], JsonlChatRepository)
    assert ctx["cfg"]["model"]["provider"] == "echo"
    assert ctx["search"] is None

    registry = ctx["registry"]
    assert {"echo", "groq", "helpingai", "openrouter"} <= {p.id for p in registry.providers()}
    assert isinstance(registry.adapter("echo"), EchoAdapter)
    groq = registry.adapter("groq")
    assert isinstance(groq, GroqAdapter)
    assert groq.api_key == "gsk-test"
    assert groq.params["temperature"] == 0.1 and groq.params["max_tokens"] == 4000


def test_relative_sessions_dir_resolves_against_repo_root(tmp_path: Path):
    cfg = write_cfg(tmp_path, backend="memory")
    text = cfg.read_text(encoding="utf-8").replace(str(tmp_path / "sessions"), "data/sessions")
    cfg.write_text(text, encoding="utf-8")

    ctx = build_app(cfg, repo_root=tmp_path)
    assert ctx["paths"]["sessions_dir"] == (tmp_path / "data" / "sessions").resolve()
    assert isinstance(ctx["repository"], InMemoryChatRepository)


def test_unknown_provider_is_config_error(tmp_path: Path):
    with pytest.raises(ConfigError):
        build_app(write_cfg(tmp_path, provider="mystery"), repo_root=tmp_path)


def test_disabled_provider_and_search_section(tmp_path: Path):
    extra = "search:\n          url: http://search.local/api\n          token: t0k"
    cfg = write_cfg(tmp_path, extra=extra)
    text = cfg.read_text(encoding="utf-8").replace("      groq:\n", "      helpingai:\n            enabled: false\n          groq:\n")
    cfg.write_text(text, encoding="utf-8")

    ctx = build_app(cfg, repo_root=tmp_path)
    assert "helpingai" not in ctx["registry"]
    assert ctx["search"].url == "http://search.local/api"
    assert ctx["registry"].adapter("groq").search is ctx["search"]


@pytest.mark.asyncio
async def test_new_orchestrator_uses_config_defaults(tmp_path: Path):
    ctx = build_app(write_cfg(tmp_path), repo_root=tmp_path)
    orch = new_orchestrator(ctx)
    assert orch.selection.provider_id == "echo"
    assert orch.selection.model_id == "echo-lorem"
    assert orch.stream is True

    reply = await orch.send_user_message("hello")
    assert reply.content.startswith("Lorem ipsum")

    other = new_orchestrator(ctx, provider_id="GROQ")
    assert other.selection.provider_id == "groq"
    with pytest.raises(InvalidInput):
        new_orchestrator(ctx, provider_id="nope")
    await shutdown(ctx)
