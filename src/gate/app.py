from __future__ import annotations

import argparse
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, Request

from .access import AccessPolicy
from .auth_paths import AuthFlowPaths, build_auth_paths
from .config import ConfigError, GateConfig, load_config
from .logs import configure_logging, log_json
from .routing import RouteTable

_REDACTED = "***"


@dataclass(frozen=True)
class GatePolicy:
    config: GateConfig
    routes: RouteTable
    access: AccessPolicy
    auth_paths: AuthFlowPaths


def _get_version() -> str:
    try:
        return version("gate")
    except PackageNotFoundError:
        return "unknown"


def build_policy(config: GateConfig) -> GatePolicy:
    return GatePolicy(
        config=config,
        routes=RouteTable.from_config(config),
        access=AccessPolicy.from_config(config),
        auth_paths=build_auth_paths(config.paths),
    )


def create_app(config: GateConfig) -> FastAPI:
    policy = build_policy(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        yield

    app = FastAPI(title="gate", lifespan=lifespan)
    app.state.policy = policy

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        request_id = request.headers.get("x-request-id", "").strip() or uuid.uuid4().hex
        request.state.request_id = request_id
        dispatch = app.state.policy.routes.match(
            request.headers.get("host", ""), request.url.path
        )
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = int((time.monotonic() - start) * 1000)
            log_json(
                logging.ERROR,
                "request.failed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                latency_ms=latency_ms,
            )
            raise
        latency_ms = int((time.monotonic() - start) * 1000)
        response.headers["x-request-id"] = request_id
        log_json(
            logging.INFO,
            "request.completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            route=dispatch.route.path if dispatch else None,
            latency_ms=latency_ms,
        )
        return response

    @app.get("/healthz")
    async def healthz() -> dict[str, bool]:
        return {"ok": True}

    return app


def describe_policy(policy: GatePolicy) -> dict[str, Any]:
    """Operator-facing summary of the loaded policy, with secrets redacted."""
    config = policy.config
    info = config.auth.info
    return {
        "main_version": _get_version(),
        "config_digest": config.config_digest,
        "address": config.addr,
        "ssl": {"cert": config.ssl.cert, "key_set": bool(config.ssl.key)},
        "auth": {
            "service": info.service,
            "client_id": _REDACTED,
            "client_secret": _REDACTED,
            "redirect_url": info.redirect_url,
            "endpoint": info.endpoint,
            "api_endpoint": info.api_endpoint,
            "session_key": _REDACTED,
            "cookie_domain": policy.access.cookie_domain,
        },
        "auth_paths": {
            "login": policy.auth_paths.login,
            "logout": policy.auth_paths.logout,
            "callback": policy.auth_paths.callback,
            "error": policy.auth_paths.error,
        },
        "restrictions": list(policy.access.restrictions),
        "routes": len(policy.routes),
        "htdocs": config.htdocs,
    }


def split_address(addr: str) -> tuple[str, int] | None:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return None
    try:
        port_value = int(port)
    except ValueError:
        return None
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        return None
    return (host or "0.0.0.0", port_value)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    configure_logging()
    try:
        config = load_config(Path(args.config) if args.config else None)
    except ConfigError as exc:
        log_json(
            logging.ERROR,
            "config.invalid",
            error=str(exc),
            field=getattr(exc, "field", None),
        )
        raise SystemExit(2) from exc

    if args.command == "check":
        print(json.dumps(describe_policy(build_policy(config)), indent=2, sort_keys=True))
        return

    bind = split_address(config.addr) or (args.host, args.port)
    ssl_options: dict[str, Any] = {}
    if config.ssl.cert and config.ssl.key:
        ssl_options = {"ssl_certfile": config.ssl.cert, "ssl_keyfile": config.ssl.key}
    log_json(logging.INFO, "gate.starting", host=bind[0], port=bind[1], tls=bool(ssl_options))
    app = create_app(config)
    uvicorn.run(app, host=bind[0], port=bind[1], reload=False, **ssl_options)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gate")
    sub = parser.add_subparsers(dest="command", required=True)
    check = sub.add_parser("check")
    check.add_argument("--config", default=None)
    serve = sub.add_parser("serve")
    serve.add_argument("--config", default=None)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=9999)
    return parser.parse_args(argv)
