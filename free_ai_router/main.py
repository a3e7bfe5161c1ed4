from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from free_ai_router.errors import RouterError, UpstreamExhaustedError
from free_ai_router.formatter import (
    chat_envelope,
    error_envelope,
    image_envelope,
    status_envelope,
)
from free_ai_router.handlers import ChatHandler, ImageHandler
from free_ai_router.proxy import UpstreamProxy
from free_ai_router.registry import UpstreamRegistry, build_upstream_registry
from free_ai_router.request_models import RouterRequest, parse_router_request
from free_ai_router.settings import get_settings

app = FastAPI(
    title="Free AI Router",
    description="Single endpoint in front of free-tier chat and image upstreams.",
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")

ROUTER_METHODS = ["GET", "POST", "OPTIONS"]
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
CLAUDE_SHORTCUT_MODEL = "claude"
CLAUDE_SHORTCUT_DEFAULT_PROMPT = "Hello"


@app.middleware("http")
async def cors_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    response = await call_next(request)
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    registry = build_upstream_registry(
        settings.upstreams_config_path, default_model=settings.default_model
    )
    proxy = UpstreamProxy(
        timeout_seconds=settings.upstream_timeout_seconds,
        connect_timeout_seconds=settings.upstream_connect_timeout_seconds,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.upstream_proxy = proxy
    app.state.chat_handler = ChatHandler(
        registry=registry,
        proxy=proxy,
        gemini_api_key=settings.gemini_api_key,
    )
    app.state.image_handler = ImageHandler(
        config=registry.image,
        proxy=proxy,
        fallback_timeout_seconds=settings.image_fallback_timeout_seconds,
    )
    logger.info(
        (
            "startup complete upstreams_config_path=%s models=%d default_model=%s "
            "gemini_credentials=%s timeout_s=%.1f"
        ),
        settings.upstreams_config_path or "<built-in>",
        len(registry.models),
        registry.default_model,
        settings.has_gemini_credentials,
        settings.upstream_timeout_seconds,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    proxy: UpstreamProxy | None = getattr(app.state, "upstream_proxy", None)
    if proxy is not None:
        await proxy.close()
    logger.info("shutdown complete")


async def _read_params(request: Request) -> dict[str, Any]:
    if request.method == "GET":
        return dict(request.query_params)
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def _dispatch(router_request: RouterRequest, request_id: str) -> JSONResponse:
    registry: UpstreamRegistry = app.state.registry

    if router_request.action == "test":
        return JSONResponse(status_code=200, content=status_envelope(registry.model_names()))

    prompt = router_request.require_prompt()

    if router_request.action == "image":
        image_handler: ImageHandler = app.state.image_handler
        image = await image_handler.handle(
            prompt=prompt, model=router_request.model, request_id=request_id
        )
        if not image.succeeded or image.image_url is None:
            raise UpstreamExhaustedError(
                error="Image generation failed",
                message=image.failure_reason or "All APIs failed",
                attempted_targets=image.attempted_targets,
            )
        return JSONResponse(
            status_code=200,
            content=image_envelope(
                image.model, image.image_url, prompt, direct=image.direct
            ),
        )

    model = router_request.model or registry.default_model
    chat_handler: ChatHandler = app.state.chat_handler
    chat = await chat_handler.handle(
        prompt=prompt,
        model=model,
        history=router_request.history_dicts(),
        request_id=request_id,
    )
    if not chat.succeeded or chat.text is None:
        raise UpstreamExhaustedError(
            model=chat.model, attempted_targets=chat.attempted_targets
        )
    return JSONResponse(status_code=200, content=chat_envelope(chat.model, chat.text))


async def _handle(
    request: Request,
    *,
    overrides: dict[str, Any] | None = None,
    defaults: dict[str, Any] | None = None,
) -> Response:
    if request.method == "OPTIONS":
        return Response(status_code=200)

    request_id = uuid4().hex[:12]
    try:
        params = await _read_params(request)
        for name, value in (defaults or {}).items():
            if not params.get(name):
                params[name] = value
        if overrides:
            params = {**params, **overrides}
        router_request = parse_router_request(params)
        logger.info(
            "router_request request_id=%s method=%s action=%s model=%s prompt_chars=%d history=%d",
            request_id,
            request.method,
            router_request.action,
            router_request.model or "-",
            len(router_request.prompt or ""),
            len(router_request.history),
        )
        return await _dispatch(router_request, request_id)
    except RouterError:
        raise
    except Exception as exc:
        logger.exception("router_unhandled_error request_id=%s", request_id)
        raise RouterError(str(exc) or exc.__class__.__name__) from exc


@app.api_route("/", methods=ROUTER_METHODS)
@app.api_route("/api", methods=ROUTER_METHODS)
async def route_request(request: Request) -> Response:
    return await _handle(request)


@app.api_route("/claude", methods=ROUTER_METHODS)
@app.api_route("/api/claude", methods=ROUTER_METHODS)
async def claude_shortcut(request: Request) -> Response:
    return await _handle(
        request,
        overrides={"model": CLAUDE_SHORTCUT_MODEL, "action": "chat"},
        defaults={"prompt": CLAUDE_SHORTCUT_DEFAULT_PROMPT},
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.exception_handler(RouterError)
async def router_error_handler(_: Request, exc: RouterError) -> JSONResponse:
    if isinstance(exc, UpstreamExhaustedError):
        logger.warning(
            "router_upstreams_exhausted error=%s model=%s attempted=%s",
            exc.error,
            exc.model or "-",
            ",".join(exc.attempted_targets) or "-",
        )
    return JSONResponse(status_code=exc.status_code, content=error_envelope(exc))


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    import uvicorn

    uvicorn.run("free_ai_router.main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    run()
