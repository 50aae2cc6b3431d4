"""FastAPI tournament API."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from puckdrop.exceptions import (
    AuthorizationError,
    BracketConsistencyError,
    ConflictError,
    NotFoundError,
    PuckdropError,
    StateError,
    ValidationError,
)
from puckdrop.models import init_db

from web.api.routes import router as api_router
from web.api.admin_routes import router as admin_router
from web.api.announcement_routes import router as announcement_router

logger = logging.getLogger("puckdrop.api")

# Most specific first: NotFoundError is a ValidationError
STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 400,
    AuthorizationError: 403,
    ConflictError: 409,
    StateError: 409,
    BracketConsistencyError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="Puckdrop Tournament API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)
app.include_router(admin_router)
app.include_router(announcement_router)


@app.exception_handler(PuckdropError)
async def puckdrop_error_handler(request: Request, exc: PuckdropError):
    status_code = 500
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            status_code = STATUS_CODES[cls]
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error": exc.kind})


@app.get("/api/health")
async def health():
    return {"status": "ok"}
