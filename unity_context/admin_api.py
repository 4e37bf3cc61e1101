# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

from __future__ import annotations

import contextlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .errors import AccessDenied, NotConfigured, UpstreamFailure
from .models import Message, ProjectContext, UserProfile
from .service import ContextService

logger = logging.getLogger("unity_context_admin")


def _service(request: Request) -> ContextService:
    return request.app.state.service


def _get_admin_cfg(service: ContextService) -> Dict[str, Any]:
    cfg = service.config
    return {
        "enabled": cfg.admin_enabled,
        "host": cfg.admin_host,
        "port": cfg.admin_port,
        "api_key": cfg.admin_api_key,
        "allowed_ips": cfg.admin_allowed_ips,
    }


def _is_allowed_ip(ip: Optional[str], cfg: Dict[str, Any]) -> bool:
    if not ip:
        return False
    allowed = set(cfg["allowed_ips"] or ["127.0.0.1", "::1"])
    return ip in allowed


async def require_admin(request: Request) -> Optional[JSONResponse]:
    """
    Common gate for all admin endpoints.

    - Enforce admin.enabled
    - Enforce local-only IP (admin.allowed_ips)
    - Enforce X-Admin-Key header if admin.api_key is set
    """
    client = request.client
    client_ip = client.host if client else None
    cfg = _get_admin_cfg(_service(request))

    if not cfg["enabled"]:
        logger.warning("Admin API called but admin.enabled=false")
        return JSONResponse({"error": "admin_disabled"}, status_code=503)

    if not _is_allowed_ip(client_ip, cfg):
        logger.warning("Admin access denied from IP %r", client_ip)
        return JSONResponse(
            {"error": "forbidden", "reason": "ip_not_allowed"},
            status_code=403,
        )

    api_key = cfg["api_key"]
    if api_key:
        if request.headers.get("x-admin-key") != api_key:
            logger.warning("Admin access denied due to invalid API key")
            return JSONResponse({"error": "unauthorized"}, status_code=401)

    return None


def _error_response(operation: str, exc: Exception) -> JSONResponse:
    """Map the error taxonomy onto HTTP status codes."""
    if isinstance(exc, AccessDenied):
        status, error = 403, "access_denied"
    elif isinstance(exc, NotConfigured):
        status, error = 503, "not_configured"
    elif isinstance(exc, UpstreamFailure):
        status, error = 502, "upstream_failure"
    else:
        status, error = 500, "internal_error"

    if status == 500:
        logger.exception("%s failed: %s", operation, exc)
    else:
        logger.error("%s failed: %s", operation, exc)
    return JSONResponse({"error": error, "detail": str(exc)}, status_code=status)


def _bad_request(detail: str) -> JSONResponse:
    return JSONResponse({"error": "bad_request", "detail": detail}, status_code=400)


async def _json_body(request: Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


async def admin_status(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    service = _service(request)
    cfg = _get_admin_cfg(service)
    payload: Dict[str, Any] = {
        "admin": {
            "host": cfg["host"],
            "port": cfg["port"],
            "enabled": cfg["enabled"],
        },
        "projects": dict(service.config.projects),
        "index": {
            "backend": service.config.vector_backend,
            "path": str(service.config.index_path),
            "id_scheme": service.config.id_scheme,
            "embeddings_provider": service.config.embeddings_provider,
        },
        "watcher": {
            "sessions": [
                {"id": s.id, "rootPath": s.root_path, "active": s.is_active}
                for s in service.watcher.sessions()
            ],
        },
    }
    return JSONResponse(payload)


async def admin_index(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    body = await _json_body(request)
    if body is None:
        return _bad_request("Request body must be a JSON object")

    service = _service(request)
    action = body.get("action", "index")
    project_path = body.get("projectPath")

    try:
        if action == "stop-watch":
            watcher_id = body.get("watcherId")
            if not watcher_id:
                return _bad_request("Watch ID is required")
            await run_in_threadpool(service.watcher.stop_watching, watcher_id)
            return JSONResponse({"success": True, "message": "Stopped watching project"})

        if not project_path:
            return _bad_request("Project path is required")

        if action == "index":
            force = bool(body.get("force", False))
            result = await run_in_threadpool(
                service.indexer.index_project, project_path, force
            )
            return JSONResponse(
                {
                    "success": True,
                    "message": "Project indexed successfully",
                    "result": {**result.to_dict(), "projectPath": project_path},
                }
            )

        if action == "watch":
            watcher_id = await run_in_threadpool(
                service.watcher.watch_project,
                project_path,
                lambda path: logger.info("File changed: %s", path),
            )
            return JSONResponse(
                {
                    "success": True,
                    "message": "Started watching project",
                    "watcherId": watcher_id,
                    "projectPath": project_path,
                }
            )
    except Exception as exc:
        return _error_response(f"admin_index ({action})", exc)

    return _bad_request(f"Unknown action: {action}")


async def admin_index_stats(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    try:
        stats = await run_in_threadpool(_service(request).indexer.stats)
    except Exception as exc:
        return _error_response("admin_index_stats", exc)
    return JSONResponse(stats)


async def admin_style_analyze(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    body = await _json_body(request)
    if body is None or not body.get("projectPath"):
        return _bad_request("Project path is required")

    try:
        profile = await run_in_threadpool(
            _service(request).style_analyzer.analyze_project, body["projectPath"]
        )
    except Exception as exc:
        return _error_response("admin_style_analyze", exc)
    return JSONResponse(profile.to_dict())


async def admin_context(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    body = await _json_body(request)
    if body is None or not body.get("query"):
        return _bad_request("Query is required")

    history = [
        Message(role=str(m.get("role", "user")), content=str(m.get("content", "")))
        for m in body.get("conversationHistory") or []
        if isinstance(m, dict)
    ]
    project = ProjectContext.from_dict(body["projectContext"]) if body.get("projectContext") else None
    profile = UserProfile.from_dict(body["userProfile"]) if body.get("userProfile") else None
    raw_options = body.get("options") or {}
    if not isinstance(raw_options, dict):
        return _bad_request("options must be an object")
    options: Dict[str, Any] = {
        "include_history": bool(raw_options.get("includeHistory", False)),
    }
    for key, name in (("topK", "top_k"), ("historyLimit", "history_limit")):
        value = raw_options.get(key)
        if value is None:
            options[name] = None
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            return _bad_request(f"options.{key} must be a positive integer")
        options[name] = value

    try:
        context = await run_in_threadpool(
            _service(request).rag.enhance, body["query"], history, project, profile, options
        )
    except Exception as exc:
        return _error_response("admin_context", exc)
    return JSONResponse(context.to_dict())


async def admin_logs_tail(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    n_param = request.query_params.get("n", "200")
    try:
        n = max(1, min(int(n_param), 2000))
    except ValueError:
        n = 200

    log_file = _service(request).config.log_file
    if not log_file:
        return JSONResponse(
            {"error": "not_found", "detail": "no log file configured"},
            status_code=404,
        )

    log_path = Path(log_file).expanduser()
    if not log_path.exists():
        return JSONResponse(
            {"error": "not_found", "detail": f"log file not found: {log_path}"},
            status_code=404,
        )

    try:
        with log_path.open("r", encoding="utf-8", errors="ignore") as f:
            lines = f.readlines()
    except OSError as exc:
        return _error_response("admin_logs_tail", exc)

    return JSONResponse({"path": str(log_path), "lines": lines[-n:]})


async def admin_config_view(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    raw = dict(_service(request).config.config_data)
    # Never echo credentials back
    if isinstance(raw.get("embeddings"), dict) and raw["embeddings"].get("api_key"):
        raw["embeddings"] = {**raw["embeddings"], "api_key": "***"}
    if isinstance(raw.get("admin"), dict) and raw["admin"].get("api_key"):
        raw["admin"] = {**raw["admin"], "api_key": "***"}
    return JSONResponse(raw)


routes = [
    Route("/admin/status", admin_status, methods=["GET"]),
    Route("/admin/index", admin_index, methods=["POST"]),
    Route("/admin/index/stats", admin_index_stats, methods=["GET"]),
    Route("/admin/style/analyze", admin_style_analyze, methods=["POST"]),
    Route("/admin/context", admin_context, methods=["POST"]),
    Route("/admin/logs/tail", admin_logs_tail, methods=["GET"]),
    Route("/admin/config", admin_config_view, methods=["GET"]),
]


def create_app(service: ContextService) -> Starlette:
    """Build the admin application around one ContextService."""
    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        await run_in_threadpool(service.close)

    app = Starlette(debug=False, routes=routes, lifespan=lifespan)
    app.state.service = service

    # CORS for a local dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    return app
