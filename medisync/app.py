# --- imports (top of medisync/app.py) ---
import json
import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from medisync import __version__, config
from medisync.limiter import limiter
from medisync.middleware.tracing import TRACE_ID_CTX_VAR, TracingMiddleware
from medisync.models import init_db
from medisync.routes import report_routes
from medisync.utils.exceptions import (
    MedisyncError,
    handle_http_exception,
    handle_medisync_error,
    handle_unhandled_exception,
)


# --- logging setup ---
class JsonFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "function": record.funcName,
            "trace_id": TRACE_ID_CTX_VAR.get() or None,
            "message": record.msg if isinstance(record.msg, dict) else record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> logging.Logger:
    logger = logging.getLogger("medisync")
    logger.setLevel(logging.INFO)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logger


logger = configure_logging()

# --- app setup ---
app = FastAPI(title="MediSync Backend", version=__version__)

app.add_middleware(TracingMiddleware)

# ---- Rate limiting (slowapi) ----
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    retry_after = 60
    reset_time = getattr(exc, "reset_time", None)
    if isinstance(reset_time, (int, float)):
        retry_after = max(1, int(reset_time - time.time()))
    logger.info({
        "function": "rate_limit",
        "path": str(request.url.path),
        "client": get_remote_address(request),
    })
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(retry_after)},
        content={
            "code": "TOO_MANY_REQUESTS",
            "message": "Too many requests. Please wait a bit and try again.",
            "error": "Too many requests. Please wait a bit and try again.",
            "trace_id": getattr(request.state, "trace_id", None) or TRACE_ID_CTX_VAR.get(),
        },
    )


app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_exception_handler(MedisyncError, handle_medisync_error)
app.add_exception_handler(Exception, handle_unhandled_exception)


@app.on_event("startup")
def _init_db():
    init_db()


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(report_routes.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}
