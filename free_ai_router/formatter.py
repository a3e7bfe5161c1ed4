from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from free_ai_router.errors import RouterError

FEATURES = ["chat", "image"]
USAGE_HINT = {
    "chat": "POST / with {prompt, model: chatgpt|claude|perplexity|gemini}",
    "image": "POST / with {action: image, prompt: your description}",
}


def utc_timestamp(now: datetime | None = None) -> str:
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def chat_envelope(model: str, text: str) -> dict[str, Any]:
    return {
        "success": True,
        "model": model,
        "response": text,
        "timestamp": utc_timestamp(),
    }


def image_envelope(
    model: str, image_url: str, prompt: str, *, direct: bool = False
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": True,
        "model": model,
        "imageUrl": image_url,
    }
    if direct:
        payload["directUrl"] = image_url
    payload["prompt"] = prompt
    payload["timestamp"] = utc_timestamp()
    return payload


def status_envelope(models: list[str]) -> dict[str, Any]:
    return {
        "status": "online",
        "models": list(models),
        "features": list(FEATURES),
        "timestamp": utc_timestamp(),
    }


def error_envelope(exc: RouterError) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": exc.error, "message": exc.message}
    payload.update(exc.details())
    return payload
