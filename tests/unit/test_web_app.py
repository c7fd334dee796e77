# tests/unit/test_web_app.py

from __future__ import annotations
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.web.app import create_app  # type: ignore


@pytest.fixture
def client(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    cfg = tmp_path / "default.yaml"
    cfg.write_text(
        """
        model:
          provider: echo
        providers:
          echo:
            token_delay: 0.0
        storage:
          backend: memory
          sessions_dir: sessions
        runtime:
          stream: true
        """,
        encoding="utf-8",
    )
    return TestClient(create_app(cfg))


def _new_chat(client, **body):
    r = client.post("/api/chats", json=body)
    assert r.status_code == 200, r.text
    return r.json()


def test_providers_and_models(client):
    providers = {p["id"]: p for p in client.get("/api/providers").json()}
    assert providers["echo"]["default_model"] == "echo-lorem"
    assert providers["openrouter"]["default_model"] == "qwen/qwen-vl-plus:free"

    models = client.get("/api/providers/echo/models").json()
    assert [m["id"] for m in models] == ["echo-lorem"]
    assert client.get("/api/providers/nope/models").status_code == 400


def test_send_streams_reply_and_persists(client):
    chat = _new_chat(client)
    assert chat["provider"] == "echo" and chat["state"] == "ready" and chat["session_id"] is None

    r = client.post(f"/api/chats/{chat['key']}/messages", json={"message": "hello there"})
    assert r.status_code == 200
    assert r.text.startswith("Lorem ipsum dolor")

    state = client.get(f"/api/chats/{chat['key']}").json()
    assert state["state"] == "ready"
    assert state["title"] == "hello there"
    assert [m["role"] for m in state["messages"]] == ["user", "assistant"]
    assert state["messages"][1]["content"] == r.text

    sessions = client.get("/api/sessions").json()
    assert [s["id"] for s in sessions] == [state["session_id"]]
    stored = client.get(f"/api/sessions/{state['session_id']}/messages").json()
    assert [m["content"] for m in stored] == ["hello there", r.text]


def test_rejections(client):
    chat = _new_chat(client)
    assert client.post(f"/api/chats/{chat['key']}/messages", json={"message": "  "}).status_code == 400
    assert client.post("/api/chats/unknown/messages", json={"message": "x"}).status_code == 404
    assert client.post("/api/chats", json={"session_id": "bad-id"}).status_code == 400
    missing = "0b5a4b2e-8f8e-4c1e-9c1e-2f9b8f3f0c11"
    assert client.post("/api/chats", json={"session_id": missing}).status_code == 404


def test_selection_and_stop(client):
    chat = _new_chat(client)
    key = chat["key"]
    r = client.put(f"/api/chats/{key}/selection", json={"provider": "groq"})
    assert r.json()["provider"] == "groq"
    assert r.json()["model"] == "llama3-70b-8192"
    assert client.put(f"/api/chats/{key}/selection", json={"model": "echo-lorem"}).status_code == 400

    assert client.post(f"/api/chats/{key}/stop").json() == {"state": "ready"}
    assert client.put(f"/api/chats/{key}/web-search", params={"enabled": True}).json() == {"web_search": True}


def test_session_management(client):
    chat = _new_chat(client)
    client.post(f"/api/chats/{chat['key']}/messages", json={"message": "keep me"})
    sid = client.get(f"/api/chats/{chat['key']}").json()["session_id"]

    r = client.patch(f"/api/sessions/{sid}", json={"title": "Renamed", "pinned": True})
    assert r.json() == {"id": sid, "title": "Renamed", "pinned": True}
    assert client.patch(f"/api/sessions/{sid}", json={"title": " "}).status_code == 400

    # reopen the saved session in a fresh chat
    reopened = _new_chat(client, session_id=sid)
    assert [m["content"] for m in reopened["messages"]][0] == "keep me"

    assert client.delete(f"/api/sessions/{sid}").json() == {"ok": True}
    assert client.get(f"/api/sessions/{sid}/messages").status_code == 404
    assert client.delete("/api/sessions/not-a-uuid").status_code == 400


def test_document_upload(client):
    chat = _new_chat(client)
    key = chat["key"]
    r = client.post(
        f"/api/chats/{key}/documents",
        files={"file": ("notes.txt", b"quarterly numbers went up", "text/plain")},
        data={"hint": "what happened?"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["metadata"]["processing_method"] == "text"
    assert r.json()["metadata"]["word_count"] == 4

    r = client.post(f"/api/chats/{key}/documents", files={"file": ("empty.txt", b"", "text/plain")})
    assert r.status_code == 422

    assert client.delete(f"/api/chats/{key}/analysis").json() == {"ok": True}
