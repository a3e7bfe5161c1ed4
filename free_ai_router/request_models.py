from __future__ import annotations

import json
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from free_ai_router.errors import MissingPromptError, ValidationError
from free_ai_router.formatter import USAGE_HINT

Action = Literal["chat", "image", "test"]
ACTIONS: set[str] = {"chat", "image", "test"}


class HistoryTurn(BaseModel):
    role: str
    content: str


class RouterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prompt: str | None = None
    model: str | None = None
    action: Action = "chat"
    history: list[HistoryTurn] = Field(default_factory=list)
    # Accepted for compatibility with existing clients; not forwarded upstream.
    image_url: str | None = Field(default=None, alias="imageUrl")

    @model_validator(mode="before")
    @classmethod
    def _skip_prompt_for_status_check(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        action = value.get("action")
        if isinstance(action, str) and action.strip().lower() == "test":
            return {key: item for key, item in value.items() if key != "prompt"}
        return value

    @field_validator("prompt", mode="before")
    @classmethod
    def _coerce_prompt(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        raise ValueError("prompt must be a string")

    @field_validator("model", mode="before")
    @classmethod
    def _normalize_model(cls, value: Any) -> Any:
        if value is None:
            return None
        normalized = str(value).strip().lower()
        return normalized or None

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> str:
        if not isinstance(value, str):
            return "chat"
        normalized = value.strip().lower()
        return normalized if normalized in ACTIONS else "chat"

    @field_validator("history", mode="before")
    @classmethod
    def _coerce_history(cls, value: Any) -> list[dict[str, str]]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return []
        if not isinstance(value, list):
            return []
        turns: list[dict[str, str]] = []
        for item in value:
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            content = item.get("content")
            if isinstance(role, str) and isinstance(content, str):
                turns.append({"role": role, "content": content})
        return turns

    @field_validator("image_url", mode="before")
    @classmethod
    def _blank_image_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def history_dicts(self) -> list[dict[str, str]]:
        return [turn.model_dump() for turn in self.history]

    def require_prompt(self) -> str:
        if self.prompt is None:
            raise MissingPromptError(usage=dict(USAGE_HINT))
        return self.prompt


def parse_router_request(params: Any) -> RouterRequest:
    if not isinstance(params, dict):
        params = {}
    try:
        return RouterRequest.model_validate(params)
    except pydantic.ValidationError as exc:
        fields = sorted(
            {".".join(str(part) for part in error["loc"]) for error in exc.errors()}
        )
        raise ValidationError(f"Invalid request fields: {', '.join(fields)}") from exc
