# services/api/imagecraft/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .exceptions import ImageCraftError, SignInRequiredError
from .logging_mw import RequestLoggingMiddleware, configure_logging

from .routes_compress import router as compress_router
from .routes_tools import router as tools_router
from .routes_images import router as images_router
from .routes_handoff import router as handoff_router

LOG = logging.getLogger("imagecraft")

app = FastAPI(title="ImageCraft Pro API", version="1.0.0")

configure_logging()
app.add_middleware(RequestLoggingMiddleware)

def _error(status: int, message: str, details: str | None = None, **extra) -> JSONResponse:
    body = {"error": message, **extra}
    # diagnostics only ever leave the server in development
    if details and settings.is_development:
        body["details"] = details
    return JSONResponse(status_code=status, content=body)

@app.exception_handler(ImageCraftError)
async def imagecraft_error_handler(request: Request, exc: ImageCraftError):
    if exc.status_code >= 500:
        LOG.error("request failed: %s (%s)", exc.message, exc.details or type(exc).__name__)
    extra = {}
    if isinstance(exc, SignInRequiredError):
        extra["signInUrl"] = exc.sign_in_url
    return _error(exc.status_code, exc.message, exc.details, **extra)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        loc = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        message = f"Invalid request: {loc} {errors[0].get('msg', '')}".strip()
    return _error(400, message, repr(errors))

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    LOG.exception("unhandled error on %s", request.url.path)
    return _error(500, "Internal server error", repr(exc))

app.include_router(compress_router)
app.include_router(tools_router)
app.include_router(images_router)
app.include_router(handoff_router)

@app.get("/health")
def health():
    return {"ok": True}
