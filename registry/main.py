"""
FastAPI application: node registry API with session auth, login rate
limiting, and security headers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from registry.config import get_settings
from registry.credentials import CredentialStore
from registry.errors import RateLimited, RegistryError
from registry.models import AuthStatus, LoginRequest, NodeRecord
from registry.rate_limit import resolve_client_id
from registry.registry import Registry, build_registry

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


# ---------- Security headers middleware ----------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


# ---------- Registry wiring ----------


_registry: Registry | None = None


def get_registry() -> Registry:
    """Get or create the global registry."""
    global _registry
    if _registry is None:
        _registry = build_registry(settings)
    return _registry


def _client_id(request: Request) -> str:
    return resolve_client_id(request, settings.trust_proxy_headers)


def _session_token(request: Request) -> str | None:
    return request.cookies.get(settings.session_cookie_name)


# ---------- App setup ----------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting node registry...")
    registry_factory = app.dependency_overrides.get(get_registry, get_registry)
    registry = registry_factory()
    logger.info("Serving %d nodes", len(registry.list_nodes()))
    if settings.trust_proxy_headers:
        logger.info("Client identity taken from proxy headers")

    yield

    logger.info("Node registry stopped")


app = FastAPI(
    title="Node Registry",
    description="Registry of network nodes with a single admin credential",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(SecurityHeadersMiddleware)


# ---------- Auth routes ----------


@app.post("/api/login")
async def login(
    request: Request,
    body: LoginRequest | None = None,
    registry: Registry = Depends(get_registry),
):
    """Check the admin password and set the session cookie."""
    token = await registry.login(_client_id(request), body.password if body else None)

    response = JSONResponse({"ok": True})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=registry.gate.max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return response


@app.post("/api/logout")
def logout(request: Request, registry: Registry = Depends(get_registry)):
    """Destroy the session and clear the cookie."""
    registry.logout(_session_token(request))
    response = JSONResponse({"ok": True})
    response.delete_cookie(key=settings.session_cookie_name)
    return response


@app.get("/api/auth-status", response_model=AuthStatus)
def auth_status(request: Request, registry: Registry = Depends(get_registry)):
    return AuthStatus(authenticated=registry.auth_status(_session_token(request)))


# ---------- Node routes ----------


@app.get("/api/nodes", response_model=list[NodeRecord])
def list_nodes(registry: Registry = Depends(get_registry)):
    """Public read of the whole collection."""
    return registry.list_nodes()


@app.post("/api/nodes", status_code=201, response_model=NodeRecord)
def create_node(
    request: Request,
    payload: Any = Body(default=None),
    registry: Registry = Depends(get_registry),
):
    return registry.create_node(_session_token(request), payload, _client_id(request))


@app.put("/api/nodes/{node_id}", response_model=NodeRecord)
def update_node(
    node_id: str,
    request: Request,
    payload: Any = Body(default=None),
    registry: Registry = Depends(get_registry),
):
    return registry.update_node(
        _session_token(request), node_id, payload, _client_id(request)
    )


@app.delete("/api/nodes/{node_id}")
def delete_node(node_id: str, request: Request, registry: Registry = Depends(get_registry)):
    registry.delete_node(_session_token(request), node_id, _client_id(request))
    return {"ok": True}


@app.get("/api/health")
def health(registry: Registry = Depends(get_registry)):
    """Health check endpoint (no auth required)."""
    try:
        count = len(registry.list_nodes())
    except RegistryError:
        return {"status": "degraded", "nodes": None}
    return {"status": "healthy", "nodes": count}


# ---------- Exception handlers ----------


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    """Render registry errors as ``{"error": kind, "message": ...}``."""
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are a 400, not FastAPI's default 422."""
    fields = {
        ".".join(str(p) for p in err.get("loc", ())) or "body": err.get("msg", "invalid")
        for err in exc.errors()
    }
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "Invalid request", "fields": fields},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "internal_error", "message": "Internal server error"},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "http_error", "message": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error"},
    )


def run() -> None:
    """Console entry point: serve on the configured host and port."""
    import uvicorn

    credentials = CredentialStore.from_file(settings.credential_path)
    port = credentials.port or settings.port
    logger.info("Node registry running on %s:%d", settings.host, port)
    uvicorn.run(app, host=settings.host, port=port)


if __name__ == "__main__":
    run()
