from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import quote, urlencode

from free_ai_router.proxy import UpstreamCall, UpstreamProxy
from free_ai_router.registry import ImageConfig, UpstreamRegistry, UpstreamTarget

logger = logging.getLogger("uvicorn.error")

DIRECT_IMAGE_MODEL = "pollinations"
FALLBACK_IMAGE_MODEL = "stable-diffusion"
FALLBACK_IMAGE_ALIASES = {"stable-diffusion", "stablediffusion", "sd"}
# encodeURIComponent leaves these unescaped in addition to quote()'s defaults.
_URI_COMPONENT_SAFE = "!*'()"


@dataclass(slots=True)
class ChatOutcome:
    model: str
    text: str | None
    served_by: str | None = None
    attempted_targets: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.text is not None


@dataclass(slots=True)
class ImageOutcome:
    model: str
    image_url: str | None
    direct: bool = False
    failure_reason: str | None = None
    attempted_targets: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.image_url is not None


class ChatHandler:
    def __init__(
        self,
        *,
        registry: UpstreamRegistry,
        proxy: UpstreamProxy,
        gemini_api_key: str | None = None,
    ) -> None:
        self._registry = registry
        self._proxy = proxy
        self._api_key = gemini_api_key
        self._has_credentials = bool(gemini_api_key)

    def candidate_targets(
        self, model: str, request_id: str = "-"
    ) -> list[UpstreamTarget]:
        chain = self._registry.chain_for(model)
        if self._has_credentials:
            return chain

        candidates: list[UpstreamTarget] = []
        for target in chain:
            if target.requires_api_key:
                logger.info(
                    "upstream_skipped_missing_credentials request_id=%s model=%s target=%s",
                    request_id,
                    model,
                    target.name,
                )
                continue
            candidates.append(target)
        return candidates

    async def handle(
        self,
        *,
        prompt: str,
        model: str,
        history: list[dict[str, str]] | None = None,
        request_id: str = "-",
    ) -> ChatOutcome:
        targets = self.candidate_targets(model, request_id=request_id)
        outcome = await self._proxy.forward_with_fallback(
            targets,
            UpstreamCall(prompt=prompt, history=list(history or []), request_id=request_id),
            api_key=self._api_key,
        )
        return ChatOutcome(
            model=model,
            text=outcome.value,
            served_by=outcome.served_by,
            attempted_targets=outcome.attempted_targets,
        )


class ImageHandler:
    def __init__(
        self,
        *,
        config: ImageConfig,
        proxy: UpstreamProxy,
        fallback_timeout_seconds: float = 60.0,
    ) -> None:
        self._config = config
        self._proxy = proxy
        self._fallback_timeout_seconds = fallback_timeout_seconds

    def build_direct_url(self, prompt: str) -> str:
        encoded_prompt = quote(prompt, safe=_URI_COMPONENT_SAFE)
        query = urlencode(
            {
                "width": self._config.width,
                "height": self._config.height,
                **self._config.flags,
            }
        )
        return f"{self._config.direct_url}{encoded_prompt}?{query}"

    async def handle(
        self,
        *,
        prompt: str,
        model: str | None = None,
        request_id: str = "-",
    ) -> ImageOutcome:
        reason = "Alternate image upstream requested"
        if (model or "").strip().lower() not in FALLBACK_IMAGE_ALIASES:
            try:
                image_url = self.build_direct_url(prompt)
            except (UnicodeEncodeError, ValueError) as exc:
                reason = str(exc)
                logger.warning(
                    "image_direct_url_failed request_id=%s error_type=%s",
                    request_id,
                    exc.__class__.__name__,
                )
            else:
                logger.info(
                    "image_direct_url request_id=%s prompt_chars=%d",
                    request_id,
                    len(prompt),
                )
                return ImageOutcome(
                    model=DIRECT_IMAGE_MODEL, image_url=image_url, direct=True
                )

        return await self._generate_with_fallback(
            prompt=prompt, reason=reason, request_id=request_id
        )

    async def _generate_with_fallback(
        self, *, prompt: str, reason: str, request_id: str
    ) -> ImageOutcome:
        target = self._config.fallback
        if target is None:
            return ImageOutcome(
                model=FALLBACK_IMAGE_MODEL,
                image_url=None,
                failure_reason=f"{reason}; no fallback image upstream configured",
            )

        strategy = self._proxy.strategy_for(
            target, timeout_seconds=self._fallback_timeout_seconds
        )
        image_url = await strategy.attempt(
            UpstreamCall(prompt=prompt, request_id=request_id)
        )
        if image_url is None:
            return ImageOutcome(
                model=FALLBACK_IMAGE_MODEL,
                image_url=None,
                failure_reason=reason,
                attempted_targets=[target.name],
            )
        return ImageOutcome(
            model=FALLBACK_IMAGE_MODEL,
            image_url=image_url,
            attempted_targets=[target.name],
        )
