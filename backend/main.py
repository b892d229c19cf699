"""
School Results Engine
FastAPI backend entry point.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import EngineConfig, load_engine_config
from core.grading_scale import GradingScaleError
from core.parser import load_sample_data
from core.store import MarkStore, Roster
from routes.enrollment import router as enrollment_router
from routes.results import router as results_router

# Load environment
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]
LOAD_SAMPLE_DATA = os.getenv("LOAD_SAMPLE_DATA", "false").strip().lower() in {"1", "true", "yes", "on"}


def create_app(engine: Optional[EngineConfig] = None, load_sample: bool = LOAD_SAMPLE_DATA) -> FastAPI:
    app = FastAPI(
        title="School Results API",
        description=(
            "Exam mark grading, term result aggregation and class ranking "
            "for marklists and report cards."
        ),
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = engine or load_engine_config()
    app.state.store = MarkStore()
    app.state.roster = Roster()
    logger.info(
        "Grading scale '%s', weights %s, %s ranking",
        app.state.engine.scale.name, app.state.engine.weights, app.state.engine.ranking_method,
    )

    if load_sample:
        load_sample_data(app.state.store, app.state.roster)

    @app.exception_handler(GradingScaleError)
    async def grading_scale_error(request: Request, exc: GradingScaleError):
        logger.error("Grading scale integrity fault on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": f"Grading configuration error: {exc}"})

    # Register route modules
    app.include_router(results_router, prefix="/api", tags=["Results"])
    app.include_router(enrollment_router, prefix="/api", tags=["Enrollment"])

    @app.get("/api/health")
    async def health_check():
        return {
            "status": "ok",
            "school_name": SCHOOL_NAME,
            "marks_stored": len(app.state.store),
        }

    @app.get("/api/config")
    async def get_config():
        """Return server configuration to the frontend."""
        return {
            "school_name": SCHOOL_NAME,
            "grading_scale": app.state.engine.scale.name,
            "exam_weights": dict(app.state.engine.weights),
            "ranking_method": app.state.engine.ranking_method,
        }

    return app


app = create_app()
