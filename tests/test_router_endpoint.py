from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from free_ai_router.formatter import USAGE_HINT
from free_ai_router.main import app
from tests.client_test_utils import (
    UpstreamRecorder,
    build_test_client,
    install_upstreams,
)

KASTG_CHATGPT_URL = "https://api.kastg.xyz/api/ai/chatgptv2"
KASTG_CLAUDE_URL = "https://api.kastg.xyz/api/ai/claude"
TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def test_preflight_returns_empty_body_with_cors_headers(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.options("/api")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET, POST, OPTIONS"
    assert recorder.requests == []


def test_test_action_reports_status_without_upstream_calls(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.get("/", params={"action": "test"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "online"
    assert payload["models"] == ["chatgpt", "claude", "perplexity", "gemini"]
    assert payload["features"] == ["chat", "image"]
    assert TIMESTAMP_PATTERN.match(payload["timestamp"])
    assert response.headers["access-control-allow-origin"] == "*"
    assert recorder.requests == []


def test_missing_prompt_returns_usage_hint(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"model": "claude"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "Missing prompt"
    assert payload["usage"] == USAGE_HINT
    assert recorder.requests == []


def test_non_text_prompt_is_rejected(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"prompt": ["not", "text"]})

    assert response.status_code == 400
    assert response.json() == {
        "error": "Invalid request",
        "message": "Invalid request fields: prompt",
    }
    assert recorder.requests == []


def test_chat_success_envelope(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder(
        {KASTG_CHATGPT_URL: httpx.Response(200, json={"result": "Hi there"})}
    )
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"prompt": "hello", "model": "GPT"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["model"] == "gpt"
    assert payload["response"] == "Hi there"
    assert TIMESTAMP_PATTERN.match(payload["timestamp"])
    assert recorder.urls == [KASTG_CHATGPT_URL]


def test_unknown_model_uses_default_chain(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder(
        {KASTG_CHATGPT_URL: httpx.Response(200, json={"response": "default reply"})}
    )
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/", json={"prompt": "hello", "model": "llama"})

    assert response.status_code == 200
    assert response.json()["response"] == "default reply"
    assert recorder.urls == [KASTG_CHATGPT_URL]


def test_chat_failure_when_every_upstream_fails(monkeypatch: Any, caplog: Any) -> None:
    caplog.set_level(logging.WARNING, logger="uvicorn.error")
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"prompt": "hello"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "Chat generation failed",
        "message": "All APIs failed",
        "model": "chatgpt",
    }
    assert recorder.urls == [
        KASTG_CHATGPT_URL,
        "https://deepenglish.com/wp-json/ai-chatbot/v1/chat",
    ]
    assert response.headers["access-control-allow-origin"] == "*"
    assert (
        "router_upstreams_exhausted error=Chat generation failed model=chatgpt "
        "attempted=kastg-chatgpt,deepenglish-chat"
    ) in caplog.text


def test_get_request_forwards_json_history(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder(
        {KASTG_CHATGPT_URL: httpx.Response(200, json={"response": "with history"})}
    )
    history = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "ok"}]
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.get(
            "/api", params={"prompt": "and now?", "history": json.dumps(history)}
        )

    assert response.status_code == 200
    sent = json.loads(recorder.requests[0].content)
    assert sent == {"prompt": "and now?", "history": history}


def test_image_action_returns_direct_url(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"action": "image", "prompt": "a red fox"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["model"] == "pollinations"
    assert "a%20red%20fox" in payload["imageUrl"]
    assert "width=1024&height=1024" in payload["imageUrl"]
    assert payload["directUrl"] == payload["imageUrl"]
    assert payload["prompt"] == "a red fox"
    assert recorder.requests == []


def test_image_fallback_failure(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post(
            "/api", json={"action": "image", "prompt": "a red fox", "model": "sd"}
        )

    assert response.status_code == 500
    assert response.json()["error"] == "Image generation failed"
    assert recorder.urls == ["https://api.kastg.xyz/api/ai/stablediffusion"]


def test_claude_shortcut_defaults_prompt(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder(
        {KASTG_CLAUDE_URL: httpx.Response(200, json={"response": "Hello back"})}
    )
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.get("/api/claude")

    assert response.status_code == 200
    assert response.json()["model"] == "claude"
    assert json.loads(recorder.requests[0].content)["prompt"] == "Hello"


def test_default_model_comes_from_settings(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder(
        {"https://api.kastg.xyz/api/ai/perplexity": httpx.Response(200, json={"response": "found"})}
    )
    with build_test_client(monkeypatch, DEFAULT_MODEL="search") as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"prompt": "look this up"})

    assert response.status_code == 200
    assert response.json()["model"] == "perplexity"


def test_health(monkeypatch: Any) -> None:
    with build_test_client(monkeypatch) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_test_action_ignores_prompt_contents(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder()
    with build_test_client(monkeypatch) as client:
        install_upstreams(recorder)
        response = client.post("/api", json={"action": "test", "prompt": {"odd": 1}})

    assert response.status_code == 200
    assert response.json()["status"] == "online"
    assert recorder.requests == []


def test_unexpected_error_returns_message_with_cors(monkeypatch: Any) -> None:
    async def _explode(**_: Any) -> Any:
        raise RuntimeError("boom")

    with build_test_client(monkeypatch) as client:
        install_upstreams(UpstreamRecorder())
        monkeypatch.setattr(app.state.chat_handler, "handle", _explode)
        response = client.post("/api", json={"prompt": "hello"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "message": "boom"}
    assert response.headers["access-control-allow-origin"] == "*"


def test_image_fallback_deadline_comes_from_settings(monkeypatch: Any) -> None:
    recorder = UpstreamRecorder(
        {
            "https://api.kastg.xyz/api/ai/stablediffusion": httpx.Response(
                200, json={"url": "https://img/fox.png"}
            ),
        }
    )
    with build_test_client(monkeypatch, IMAGE_FALLBACK_TIMEOUT_SECONDS="7") as client:
        install_upstreams(recorder)
        response = client.post(
            "/api", json={"action": "image", "prompt": "a red fox", "model": "sd"}
        )

    assert response.status_code == 200
    assert response.json()["model"] == "stable-diffusion"
    assert recorder.requests[0].extensions["timeout"]["read"] == 7.0
