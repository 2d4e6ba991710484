"""
main.py
-------
FastAPI application entrypoint.

Registers all routers and configures CORS, logging, request context and
error rendering.

Run with:
    uvicorn questforge.main:app --reload --port 8000

Swagger UI: http://localhost:8000/docs
ReDoc:      http://localhost:8000/redoc
"""
from __future__ import annotations

import logging
import os

import dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from questforge.helpers.logging_setup import configure_logging

dotenv.load_dotenv()
configure_logging()
logger = logging.getLogger(__name__)

from questforge.helpers.middleware import RequestContextMiddleware
from questforge.routers.admin_router import router as admin_router
from questforge.routers.artifacts_router import ARTIFACT_ROUTERS
from questforge.routers.generations_router import router as generations_router
from questforge.routers.jobs_router import router as jobs_router
from questforge.routers.session_router import router as session_router
from questforge.routers.worker_router import router as worker_router
from questforge.services.errors import QuestForgeError

app = FastAPI(
    title="QuestForge API",
    description=(
        "Session-scoped quest content for the QuestForge game: cached "
        "LLM-generated mission orders, congratulations, encouragements and "
        "chapter stories, generated on request or through QStash jobs."
    ),
    version="1.0.0",
)

# ── CORS ─────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestContextMiddleware)


# ── Errors ───────────────────────────────────────────────────────────────────

@app.exception_handler(QuestForgeError)
async def questforge_error_handler(request: Request, exc: QuestForgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.error status=%d %s: %s", exc.status_code, type(exc).__name__, exc.message)
    else:
        logger.warning("request.rejected status=%d %s: %s", exc.status_code, type(exc).__name__, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    message = "; ".join(parts) or "Invalid request"
    logger.warning("request.invalid %s", message)
    return JSONResponse({"error": message}, status_code=400)


# ── Routers ───────────────────────────────────────────────────────────────────
for artifact_router in ARTIFACT_ROUTERS:
    app.include_router(artifact_router)   # GET/POST /quest-mission, /quest-congrats, /quest-encouragement, /chapter-story
app.include_router(jobs_router)           # POST /ai/jobs/enqueue, GET /ai/jobs, POST /ai/jobs/{id}/retry
app.include_router(worker_router)         # POST /ai/worker/run  (QStash callback)
app.include_router(generations_router)    # GET /ai/generations
app.include_router(session_router)        # GET/POST /session/active
app.include_router(admin_router)          # GET /admin/health


@app.get("/", tags=["root"])
def root():
    return {
        "service": "QuestForge API",
        "docs": "/docs",
        "health": "/admin/health",
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
