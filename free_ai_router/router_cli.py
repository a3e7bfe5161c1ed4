from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Callable, cast

import yaml

from free_ai_router.proxy import UpstreamCall, UpstreamProxy
from free_ai_router.registry import (
    UpstreamRegistry,
    build_upstream_registry,
    load_upstream_registry,
)
from free_ai_router.settings import get_settings

DEFAULT_PROBE_PROMPT = "Reply with the single word: pong"


def _print_yaml(payload: Any) -> None:
    sys.stdout.write(yaml.safe_dump(payload, sort_keys=False).rstrip() + "\n")


def _registry_from_args(args: argparse.Namespace) -> UpstreamRegistry:
    settings = get_settings()
    return build_upstream_registry(
        args.path or settings.upstreams_config_path,
        default_model=settings.default_model,
    )


def cmd_serve(args: argparse.Namespace) -> int:
    from free_ai_router.main import run

    run(host=args.host, port=args.port)
    return 0


def cmd_upstreams_list(args: argparse.Namespace) -> int:
    registry = _registry_from_args(args)
    _print_yaml(registry.model_dump(mode="json", exclude_defaults=args.compact))
    return 0


def cmd_upstreams_validate(args: argparse.Namespace) -> int:
    registry = load_upstream_registry(args.path)
    targets = sum(len(route.targets) for route in registry.models.values())
    print(
        f"Upstream registry is valid: {args.path} "
        f"(models={len(registry.models)}, targets={targets})"
    )
    return 0


async def _probe_targets(
    registry: UpstreamRegistry,
    *,
    model: str,
    prompt: str,
    timeout_seconds: float,
    api_key: str | None,
    proxy: UpstreamProxy | None = None,
) -> list[dict[str, Any]]:
    owns_proxy = proxy is None
    proxy = proxy or UpstreamProxy(timeout_seconds=timeout_seconds)
    report: list[dict[str, Any]] = []
    try:
        for target in registry.chain_for(model):
            if target.requires_api_key and not api_key:
                report.append({"target": target.name, "status": "skipped_missing_credentials"})
                continue
            strategy = proxy.strategy_for(
                target, api_key=api_key if target.requires_api_key else None
            )
            value = await strategy.attempt(
                UpstreamCall(prompt=prompt, request_id="probe")
            )
            report.append(
                {
                    "target": target.name,
                    "status": "ok" if value is not None else "failed",
                    "chars": len(value or ""),
                }
            )
    finally:
        if owns_proxy:
            await proxy.close()
    return report


def cmd_upstreams_probe(args: argparse.Namespace) -> int:
    settings = get_settings()
    registry = _registry_from_args(args)
    report = asyncio.run(
        _probe_targets(
            registry,
            model=args.model or registry.default_model,
            prompt=args.prompt,
            timeout_seconds=args.timeout_seconds or settings.upstream_timeout_seconds,
            api_key=settings.gemini_api_key,
        )
    )
    _print_yaml({"model": args.model or registry.default_model, "targets": report})
    return 0 if any(item["status"] == "ok" for item in report) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="free-ai-router",
        description="Serve and inspect the free-ai-router upstream registry.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_cmd = subparsers.add_parser("serve", help="Run the HTTP router.")
    serve_cmd.add_argument("--host", default="0.0.0.0")
    serve_cmd.add_argument("--port", type=int, default=8000)
    serve_cmd.set_defaults(handler=cmd_serve)

    upstreams_cmd = subparsers.add_parser(
        "upstreams", help="Inspect the upstream registry."
    )
    upstreams_subparsers = upstreams_cmd.add_subparsers(
        dest="upstreams_command", required=True
    )

    list_cmd = upstreams_subparsers.add_parser(
        "list", help="Print the effective registry as YAML."
    )
    list_cmd.add_argument("--path", default=None)
    list_cmd.add_argument("--compact", action="store_true")
    list_cmd.set_defaults(handler=cmd_upstreams_list)

    validate_cmd = upstreams_subparsers.add_parser(
        "validate", help="Validate a YAML registry document."
    )
    validate_cmd.add_argument("--path", required=True)
    validate_cmd.set_defaults(handler=cmd_upstreams_validate)

    probe_cmd = upstreams_subparsers.add_parser(
        "probe", help="Send one prompt to each target of a model individually."
    )
    probe_cmd.add_argument("--path", default=None)
    probe_cmd.add_argument("--model", default=None)
    probe_cmd.add_argument("--prompt", default=DEFAULT_PROBE_PROMPT)
    probe_cmd.add_argument("--timeout-seconds", type=float, default=None)
    probe_cmd.set_defaults(handler=cmd_upstreams_probe)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = cast(Callable[[argparse.Namespace], int], args.handler)

    try:
        return handler(args)
    except Exception as exc:
        parser.exit(2, f"error: {exc}\n")


if __name__ == "__main__":
    raise SystemExit(main())
