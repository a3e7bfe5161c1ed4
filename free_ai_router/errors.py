from __future__ import annotations

from typing import Any

from fastapi import status


class RouterError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.error)
        self.message = message or self.error

    def details(self) -> dict[str, Any]:
        return {}


class ValidationError(RouterError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid request"


class MissingPromptError(ValidationError):
    error = "Missing prompt"

    def __init__(self, usage: dict[str, str]) -> None:
        super().__init__("A prompt is required unless action is 'test'.")
        self.usage = usage

    def details(self) -> dict[str, Any]:
        return {"usage": self.usage}


class UpstreamExhaustedError(RouterError):
    error = "Chat generation failed"

    def __init__(
        self,
        *,
        model: str | None = None,
        attempted_targets: list[str] | None = None,
        error: str | None = None,
        message: str = "All APIs failed",
    ) -> None:
        super().__init__(message)
        if error is not None:
            self.error = error
        self.model = model
        self.attempted_targets = list(attempted_targets or [])

    def details(self) -> dict[str, Any]:
        if self.model is None:
            return {}
        return {"model": self.model}
