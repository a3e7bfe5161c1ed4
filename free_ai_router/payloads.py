from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from free_ai_router.registry import UpstreamTarget


@dataclass(slots=True)
class UpstreamRequestSpec:
    url: str
    payload: dict[str, Any]
    params: dict[str, str] = field(default_factory=dict)


def truncate_history(
    history: list[dict[str, str]], limit: int | None
) -> list[dict[str, str]]:
    if limit is None:
        return list(history)
    if limit <= 0:
        return []
    return list(history[-limit:])


def _as_messages(history: list[dict[str, str]], prompt: str) -> list[dict[str, str]]:
    messages = [{"role": turn["role"], "content": turn["content"]} for turn in history]
    messages.append({"role": "user", "content": prompt})
    return messages


def prepare_upstream_request(
    target: UpstreamTarget,
    *,
    prompt: str,
    history: list[dict[str, str]] | None = None,
    api_key: str | None = None,
) -> UpstreamRequestSpec:
    turns = truncate_history(history or [], target.history_limit)
    shape = target.request_shape

    if shape == "prompt_history":
        return UpstreamRequestSpec(
            url=target.url, payload={"prompt": prompt, "history": turns}
        )

    if shape == "prompt":
        return UpstreamRequestSpec(url=target.url, payload={"prompt": prompt})

    if shape == "messages":
        return UpstreamRequestSpec(
            url=target.url, payload={"messages": _as_messages(turns, prompt)}
        )

    if shape == "chat_completions":
        return UpstreamRequestSpec(
            url=target.url,
            payload={
                "model": target.upstream_model,
                "messages": _as_messages(turns, prompt),
            },
        )

    if shape == "gemini_contents":
        params = {"key": api_key} if api_key else {}
        return UpstreamRequestSpec(
            url=target.url,
            payload={"contents": [{"parts": [{"text": prompt}]}]},
            params=params,
        )

    raise ValueError(f"Unsupported request shape '{shape}' for target '{target.name}'.")
