from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from free_ai_router.normalizer import FieldAccessor, compile_field_paths
from free_ai_router.registry_defaults import DEFAULT_UPSTREAMS, GENERIC_RESPONSE_FIELDS

RequestShape = Literal[
    "prompt_history",
    "prompt",
    "messages",
    "chat_completions",
    "gemini_contents",
]


class RegistryConfigError(ValueError):
    pass


class UpstreamTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    request_shape: RequestShape = "prompt_history"
    response_fields: tuple[str, ...] = tuple(GENERIC_RESPONSE_FIELDS)
    history_limit: int | None = None
    upstream_model: str | None = None
    requires_api_key: bool = False
    timeout_seconds: float | None = None

    @model_validator(mode="after")
    def _check_shape_requirements(self) -> UpstreamTarget:
        if not self.response_fields:
            raise ValueError(f"Target '{self.name}' must declare response_fields.")
        if self.history_limit is not None and self.history_limit < 0:
            raise ValueError(f"Target '{self.name}' has a negative history_limit.")
        if self.request_shape == "chat_completions" and not self.upstream_model:
            raise ValueError(
                f"Target '{self.name}' uses chat_completions and needs upstream_model."
            )
        return self

    @property
    def accessors(self) -> tuple[FieldAccessor, ...]:
        return compile_field_paths(self.response_fields)


class ModelRoute(BaseModel):
    model_config = ConfigDict(frozen=True)

    aliases: tuple[str, ...] = ()
    targets: tuple[UpstreamTarget, ...] = Field(default_factory=tuple)
    fallback_model: str | None = None


class ImageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    direct_url: str = "https://image.pollinations.ai/prompt/"
    width: int = 1024
    height: int = 1024
    flags: dict[str, str] = Field(
        default_factory=lambda: {"nologo": "true", "enhance": "true"}
    )
    fallback: UpstreamTarget | None = None


class UpstreamRegistry(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_model: str
    models: dict[str, ModelRoute]
    image: ImageConfig = Field(default_factory=ImageConfig)

    @model_validator(mode="before")
    @classmethod
    def _normalize_model_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        normalized = dict(value)
        default_model = normalized.get("default_model")
        if isinstance(default_model, str):
            normalized["default_model"] = default_model.strip().lower()
        models = normalized.get("models")
        if isinstance(models, dict):
            normalized["models"] = {
                str(key).strip().lower(): route for key, route in models.items()
            }
        return normalized

    @model_validator(mode="after")
    def _check_references(self) -> UpstreamRegistry:
        if not self.models:
            raise ValueError("Registry must declare at least one model.")
        seen_aliases: dict[str, str] = {}
        for model_name, route in self.models.items():
            for alias in route.aliases:
                normalized_alias = alias.strip().lower()
                owner = seen_aliases.get(normalized_alias)
                if normalized_alias in self.models or owner is not None:
                    raise ValueError(
                        f"Alias '{alias}' of '{model_name}' collides with "
                        f"'{owner or normalized_alias}'."
                    )
                seen_aliases[normalized_alias] = model_name
            if route.fallback_model and self.resolve_model(route.fallback_model) is None:
                raise ValueError(
                    f"Model '{model_name}' falls back to unknown model "
                    f"'{route.fallback_model}'."
                )
        if self.resolve_model(self.default_model) is None:
            raise ValueError(f"Default model '{self.default_model}' is not declared.")
        return self

    def resolve_model(self, requested: str | None) -> str | None:
        if not requested:
            return None
        normalized = requested.strip().lower()
        if normalized in self.models:
            return normalized
        for model_name, route in self.models.items():
            if normalized in (alias.strip().lower() for alias in route.aliases):
                return model_name
        return None

    def model_names(self) -> list[str]:
        return list(self.models.keys())

    def chain_for(self, requested: str | None) -> list[UpstreamTarget]:
        """Ordered targets for a model, followed by its fallback models' targets.

        Unknown models resolve to the default model. Each target appears once.
        """
        model_name = self.resolve_model(requested) or self.resolve_model(
            self.default_model
        )
        visited: list[str] = []
        targets: list[UpstreamTarget] = []
        while model_name is not None and model_name not in visited:
            visited.append(model_name)
            route = self.models[model_name]
            targets.extend(route.targets)
            model_name = self.resolve_model(route.fallback_model)

        unique: dict[str, UpstreamTarget] = {}
        for target in targets:
            unique.setdefault(target.name, target)
        return list(unique.values())

    def with_default_model(self, model: str) -> UpstreamRegistry:
        resolved = self.resolve_model(model)
        if resolved is None:
            raise RegistryConfigError(
                f"Default model '{model}' is not declared in the upstream registry."
            )
        return self.model_copy(update={"default_model": resolved})


def parse_upstream_registry(raw: dict[str, Any], *, source: str) -> UpstreamRegistry:
    try:
        return UpstreamRegistry.model_validate(raw)
    except ValidationError as exc:
        raise RegistryConfigError(f"Invalid upstream registry in {source}: {exc}") from exc


def load_upstream_registry(config_path: str | Path) -> UpstreamRegistry:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Upstream registry not found at '{config_path}'. "
            "Create it or unset UPSTREAMS_CONFIG_PATH."
        )

    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise RegistryConfigError(f"Expected YAML object in '{config_path}'.")
    return parse_upstream_registry(raw, source=f"'{config_path}'")


def default_upstream_registry() -> UpstreamRegistry:
    return parse_upstream_registry(DEFAULT_UPSTREAMS, source="built-in defaults")


def build_upstream_registry(
    config_path: str | None, default_model: str | None = None
) -> UpstreamRegistry:
    registry = (
        load_upstream_registry(config_path)
        if config_path
        else default_upstream_registry()
    )
    if default_model:
        registry = registry.with_default_model(default_model)
    return registry
