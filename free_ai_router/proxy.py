from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from free_ai_router.normalizer import extract_first
from free_ai_router.payloads import prepare_upstream_request
from free_ai_router.registry import UpstreamTarget

logger = logging.getLogger("uvicorn.error")


def _request_error_details(exc: httpx.RequestError) -> dict[str, Any]:
    error_message = str(exc).strip() or repr(exc)
    details: dict[str, Any] = {
        "error": error_message,
        "error_type": exc.__class__.__name__.strip() or "RequestError",
        "is_timeout": isinstance(exc, httpx.TimeoutException),
    }
    try:
        request = exc.request
    except RuntimeError:
        request = None
    if isinstance(request, httpx.Request):
        details["request_url"] = str(request.url.copy_with(query=None))
    return details


@dataclass(slots=True)
class UpstreamCall:
    prompt: str
    history: list[dict[str, str]] = field(default_factory=list)
    request_id: str = "-"


@dataclass(slots=True)
class FallbackOutcome:
    value: str | None
    served_by: str | None
    attempted_targets: list[str]

    @property
    def succeeded(self) -> bool:
        return self.value is not None


class UpstreamStrategy:
    """One upstream target: shapes the payload, calls it, normalizes the reply.

    ``attempt`` returns ``None`` for every kind of upstream failure so the
    caller can move on to the next candidate.
    """

    def __init__(
        self,
        *,
        target: UpstreamTarget,
        client: httpx.AsyncClient,
        timeout_seconds: float,
        connect_timeout_seconds: float | None = None,
        api_key: str | None = None,
    ) -> None:
        self.target = target
        self._client = client
        self._timeout_seconds = max(0.001, float(timeout_seconds))
        self._connect_timeout_seconds = min(
            self._timeout_seconds,
            float(connect_timeout_seconds or self._timeout_seconds),
        )
        self._api_key = api_key

    @property
    def name(self) -> str:
        return self.target.name

    async def attempt(self, call: UpstreamCall) -> str | None:
        spec = prepare_upstream_request(
            self.target,
            prompt=call.prompt,
            history=call.history,
            api_key=self._api_key,
        )
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout_seconds):
                upstream = await self._client.post(
                    spec.url,
                    content=json.dumps(spec.payload),
                    params=spec.params or None,
                    headers={"Content-Type": "application/json"},
                    timeout=httpx.Timeout(
                        self._timeout_seconds, connect=self._connect_timeout_seconds
                    ),
                )
        except TimeoutError:
            logger.warning(
                "upstream_deadline_exceeded request_id=%s target=%s deadline_s=%.2f",
                call.request_id,
                self.name,
                self._timeout_seconds,
            )
            return None
        except httpx.RequestError as exc:
            details = _request_error_details(exc)
            logger.warning(
                (
                    "upstream_request_error request_id=%s target=%s error_type=%s "
                    "is_timeout=%s url=%s error=%s"
                ),
                call.request_id,
                self.name,
                details["error_type"],
                details["is_timeout"],
                details.get("request_url", self.target.url),
                details["error"],
            )
            return None

        latency_ms = (time.perf_counter() - started) * 1000.0
        if not upstream.is_success:
            logger.info(
                "upstream_retry request_id=%s target=%s status=%d latency_ms=%.2f",
                call.request_id,
                self.name,
                upstream.status_code,
                latency_ms,
            )
            return None

        try:
            payload = upstream.json()
        except ValueError:
            logger.info(
                "upstream_invalid_json request_id=%s target=%s status=%d",
                call.request_id,
                self.name,
                upstream.status_code,
            )
            return None

        value = extract_first(payload, self.target.accessors)
        if value is None:
            logger.info(
                "upstream_unusable_payload request_id=%s target=%s fields=%s",
                call.request_id,
                self.name,
                ",".join(self.target.response_fields),
            )
            return None

        logger.info(
            "upstream_success request_id=%s target=%s latency_ms=%.2f chars=%d",
            call.request_id,
            self.name,
            latency_ms,
            len(value),
        )
        return value


class FallbackInvoker:
    def __init__(self, strategies: Sequence[UpstreamStrategy]) -> None:
        self._strategies = list(strategies)

    async def run(self, call: UpstreamCall) -> FallbackOutcome:
        attempted: list[str] = []
        total = len(self._strategies)
        for index, strategy in enumerate(self._strategies):
            attempted.append(strategy.name)
            logger.info(
                "upstream_attempt request_id=%s target=%s attempt=%d/%d",
                call.request_id,
                strategy.name,
                index + 1,
                total,
            )
            value = await strategy.attempt(call)
            if value is not None:
                return FallbackOutcome(
                    value=value,
                    served_by=strategy.name,
                    attempted_targets=attempted,
                )

        logger.warning(
            "upstream_exhausted request_id=%s attempted=%s",
            call.request_id,
            ",".join(attempted) or "-",
        )
        return FallbackOutcome(value=None, served_by=None, attempted_targets=attempted)


class UpstreamProxy:
    def __init__(
        self,
        *,
        timeout_seconds: float,
        connect_timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_seconds = max(0.1, float(timeout_seconds))
        self.connect_timeout_seconds = (
            max(0.1, float(connect_timeout_seconds))
            if connect_timeout_seconds is not None
            else max(0.1, min(5.0, self.timeout_seconds))
        )
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=None,
                connect=self.connect_timeout_seconds,
                read=self.timeout_seconds,
                write=self.timeout_seconds,
                pool=self.connect_timeout_seconds,
            ),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self.client.aclose()

    def strategy_for(
        self,
        target: UpstreamTarget,
        *,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
    ) -> UpstreamStrategy:
        return UpstreamStrategy(
            target=target,
            client=self.client,
            timeout_seconds=target.timeout_seconds
            or timeout_seconds
            or self.timeout_seconds,
            connect_timeout_seconds=self.connect_timeout_seconds,
            api_key=api_key,
        )

    async def forward_with_fallback(
        self,
        targets: Sequence[UpstreamTarget],
        call: UpstreamCall,
        *,
        api_key: str | None = None,
    ) -> FallbackOutcome:
        invoker = FallbackInvoker(
            [
                self.strategy_for(
                    target, api_key=api_key if target.requires_api_key else None
                )
                for target in targets
            ]
        )
        return await invoker.run(call)
