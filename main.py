import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.logging_config import setup_logging
from config.settings import settings
from routes.auth_routes import router as auth_router
from routes.dashboard_routes import router as dashboard_router
from routes.results_routes import router as results_router
from routes.schedule_routes import router as schedule_router
from routes.session_routes import router as session_router
from routes.trial_routes import router as trial_router
from services.db_service import close_client
from services.errors import (
    CognitiveTrackerError,
    DegradedResultError,
    NotFoundError,
    PersistenceError,
    SessionStateError,
    ValidationError,
)
from services.session_service import SessionRegistry

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    DegradedResultError: 409,
    SessionStateError: 409,
    PersistenceError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.session_registry = SessionRegistry()
    logger.info("Dementia Tracker backend started")
    yield
    app.state.session_registry.close_all()
    close_client()
    logger.info("Dementia Tracker backend stopped")


# -----------------------------
app = FastAPI(
    title="Dementia Tracker Backend",
    description="API for cognitive self-assessment tests and dementia risk tracking",
    version="1.0.0",
    lifespan=lifespan,
)

# --- REGISTER ROUTERS ---
app.include_router(auth_router)
app.include_router(trial_router)
app.include_router(session_router)
app.include_router(results_router)
app.include_router(dashboard_router)
app.include_router(schedule_router)


# --- CORS MIDDLEWARE ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CognitiveTrackerError)
async def handle_tracker_error(request: Request, exc: CognitiveTrackerError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"ok": False, "error": str(exc)})


# -----------------------------
# ROOT ENDPOINTS
@app.get("/")
def read_root():
    return {"message": "Welcome to the Dementia Tracker Backend!", "docs": "/docs"}


@app.get("/api/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
