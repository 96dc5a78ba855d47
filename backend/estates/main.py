from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from estates.config import allowed_hosts, app_env, enforce_secure_secrets, is_local_dev, is_production, log_level, site_name
from estates.db import init_db
from estates.deps import AdminLoginRequired
from estates.monitoring import RequestTimingMiddleware, monitor
from estates.routers import admin, alerts, api, public
from estates.web import no_cache, render_error, wants_json

logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{site_name()} API", docs_url=None if is_production() else "/docs", redoc_url=None)

# Production hardening: ensure we don't run with dangerous defaults.
enforce_secure_secrets()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts())
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestTimingMiddleware)

_CSP = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval' https://cdn.jsdelivr.net",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://fonts.cdnfonts.com",
        "font-src 'self' https://fonts.gstatic.com https://fonts.cdnfonts.com data:",
        "img-src 'self' data: https:",
        "media-src 'self' https:",
        "connect-src 'self'",
        "frame-ancestors 'none'",
        "object-src 'none'",
        "base-uri 'self'",
    ]
)


@app.middleware("http")
async def _security_headers(request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    resp.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    resp.headers.setdefault("Content-Security-Policy", _CSP)
    if request.url.path.startswith("/admin"):
        no_cache(resp)
    return resp


@app.on_event("startup")
def _startup() -> None:
    logger.info("Starting %s (env=%s)", site_name(), app_env())
    if is_local_dev():
        # Prod schema is managed by Alembic.
        init_db()


# -----------------------
# Errors
# -----------------------
def _json_client(request: Request) -> bool:
    return request.url.path.startswith(("/api/", "/enquiry", "/alerts/")) or wants_json(request)


@app.exception_handler(AdminLoginRequired)
async def _admin_login_required(request: Request, exc: AdminLoginRequired):
    if _json_client(request):
        return JSONResponse({"ok": False, "error": "Authentication required"}, status_code=401)
    return RedirectResponse("/admin/login", status_code=303)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    message = str(exc.detail or "Error")
    if exc.status_code == 404 and not _json_client(request):
        message = "Page not found"
    if exc.status_code >= 500 and is_production():
        message = "Internal server error"
    if _json_client(request):
        resp = JSONResponse({"ok": False, "error": message}, status_code=exc.status_code)
    else:
        resp = render_error(request, exc.status_code, message)
    for key, value in (exc.headers or {}).items():
        resp.headers[key] = value
    return resp


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse({"ok": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())}, status_code=422)


@app.exception_handler(Exception)
async def _server_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if is_production() else (str(exc) or exc.__class__.__name__)
    if _json_client(request):
        return JSONResponse({"ok": False, "error": message}, status_code=500)
    return render_error(request, 500, message)


# -----------------------
# Health
# -----------------------
@app.get("/health")
def health():
    return {"ok": True, "status": monitor.health()["status"]}


app.include_router(api.router)
app.include_router(alerts.router)
app.include_router(admin.router)
# Catch-all style city/type routes live here, so this router goes last.
app.include_router(public.router)
