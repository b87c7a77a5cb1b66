"""
Gradebook — Academic performance evaluation and ranking engine
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment before route modules read their settings
load_dotenv()

from routes.grading import router as grading_router  # noqa: E402
from routes.progress import router as progress_router  # noqa: E402

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
DEFAULT_GRADE_SCALE = os.getenv("DEFAULT_GRADE_SCALE", "kenyan_844")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(
    title="Gradebook API",
    description=(
        "Grades, term summaries, class and stream rankings, and cross-term "
        "trend analysis for school records."
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

# Register route modules
app.include_router(grading_router, prefix="/api/grading", tags=["Grading"])
app.include_router(progress_router, prefix="/api/progress", tags=["Progress"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
        "default_grade_scale": DEFAULT_GRADE_SCALE,
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "default_grade_scale": DEFAULT_GRADE_SCALE,
    }
