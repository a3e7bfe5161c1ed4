from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import httpx
import pytest
import yaml

from free_ai_router.proxy import UpstreamProxy
from free_ai_router.registry import default_upstream_registry
from free_ai_router.router_cli import _probe_targets, main
from free_ai_router.settings import get_settings
from tests.client_test_utils import UpstreamRecorder
from tests.yaml_test_utils import minimal_registry, write_registry_file


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: Any) -> None:
    monkeypatch.delenv("UPSTREAMS_CONFIG_PATH", raising=False)
    monkeypatch.delenv("DEFAULT_MODEL", raising=False)
    get_settings.cache_clear()


def test_upstreams_list_prints_builtin_registry(capsys: Any) -> None:
    assert main(["upstreams", "list"]) == 0

    payload = yaml.safe_load(capsys.readouterr().out)
    assert payload["default_model"] == "chatgpt"
    assert list(payload["models"]) == ["chatgpt", "claude", "perplexity", "gemini"]


def test_upstreams_list_reads_custom_path(tmp_path: Path, capsys: Any) -> None:
    path = write_registry_file(tmp_path / "upstreams.yaml", minimal_registry())

    assert main(["upstreams", "list", "--path", str(path), "--compact"]) == 0

    payload = yaml.safe_load(capsys.readouterr().out)
    assert payload["default_model"] == "alpha"
    assert payload["models"]["beta"]["fallback_model"] == "alpha"


def test_upstreams_validate(tmp_path: Path, capsys: Any) -> None:
    path = write_registry_file(tmp_path / "upstreams.yaml", minimal_registry())

    assert main(["upstreams", "validate", "--path", str(path)]) == 0
    assert "models=2, targets=3" in capsys.readouterr().out


def test_upstreams_validate_reports_errors(tmp_path: Path, capsys: Any) -> None:
    path = write_registry_file(
        tmp_path / "upstreams.yaml", minimal_registry(default_model="omega")
    )

    with pytest.raises(SystemExit) as exc_info:
        main(["upstreams", "validate", "--path", str(path)])

    assert exc_info.value.code == 2
    assert "Default model 'omega'" in capsys.readouterr().err


def test_probe_reports_each_target() -> None:
    recorder = UpstreamRecorder(
        {
            "https://api.kastg.xyz/api/ai/chatgptv2": httpx.Response(
                200, json={"response": "pong"}
            ),
        }
    )

    async def _invoke() -> list[dict[str, Any]]:
        proxy = UpstreamProxy(timeout_seconds=5, client=recorder.client())
        try:
            return await _probe_targets(
                default_upstream_registry(),
                model="gemini",
                prompt="ping",
                timeout_seconds=5,
                api_key=None,
                proxy=proxy,
            )
        finally:
            await proxy.close()

    report = asyncio.run(_invoke())

    assert report == [
        {"target": "google-gemini", "status": "skipped_missing_credentials"},
        {"target": "kastg-chatgpt", "status": "ok", "chars": 4},
        {"target": "deepenglish-chat", "status": "failed", "chars": 0},
    ]
