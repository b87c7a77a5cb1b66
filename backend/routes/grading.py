"""
Grading routes — scale inspection, validation and grade lookups.
"""

import os

from fastapi import APIRouter, HTTPException

from core.errors import ConfigurationError
from core.grading import (
    STANDARD_SCALES,
    GradeScale,
    get_standard_scale,
    resolve_scale,
    validate_grade_ranges,
    validate_grade_scale,
)
from core.models import ScaleValidation

router = APIRouter()

DEFAULT_GRADE_SCALE = os.getenv("DEFAULT_GRADE_SCALE", "kenyan_844")


def scale_from_payload(payload: dict) -> GradeScale:
    """Resolve payload['scale'] (name or definition) or fall back to the default scale."""
    try:
        return resolve_scale(payload.get("scale"), DEFAULT_GRADE_SCALE)
    except ConfigurationError as exc:
        raise HTTPException(400, {"message": str(exc), "errors": exc.errors})


@router.get("/scales")
async def list_scales():
    """Standard scales shipped with the engine."""
    return [
        {
            "key": key,
            "name": scale.name,
            "grading_system": scale.grading_system,
            "academic_level": scale.academic_level,
            "default": key == DEFAULT_GRADE_SCALE,
        }
        for key, scale in sorted(STANDARD_SCALES.items())
    ]


@router.get("/scales/{name}")
async def get_scale(name: str):
    try:
        scale = get_standard_scale(name)
    except ConfigurationError:
        raise HTTPException(404, f"Grading scale '{name}' not found.")
    return {**scale.model_dump(mode="json"), "thresholds": scale.thresholds()}


@router.post("/validate")
async def validate(payload: dict):
    """
    Validate a scale definition ({"scale": {...}}) or bare ranges
    ({"ranges": [...], "rounding_unit": 1}). Problems come back in the body.
    """
    definition = payload.get("scale")
    if isinstance(definition, dict):
        try:
            scale = GradeScale.model_validate(definition)
        except ValueError as exc:
            return ScaleValidation(is_valid=False, errors=[str(exc)]).model_dump()
        return validate_grade_scale(scale).model_dump()

    ranges = payload.get("ranges")
    if not isinstance(ranges, list):
        raise HTTPException(400, "Provide 'scale' or 'ranges'.")
    try:
        unit = float(payload.get("rounding_unit", 1))
    except (TypeError, ValueError):
        raise HTTPException(400, "'rounding_unit' must be a number.")
    if unit <= 0:
        raise HTTPException(400, "'rounding_unit' must be positive.")
    return validate_grade_ranges(ranges, unit).model_dump()


@router.post("/calculate")
async def calculate(payload: dict):
    """Grade a single percentage."""
    raw = payload.get("percentage")
    if isinstance(raw, bool):
        raise HTTPException(400, "'percentage' must be a number.")
    try:
        percentage = float(raw)
    except (TypeError, ValueError):
        raise HTTPException(400, "'percentage' must be a number.")
    if not 0 <= percentage <= 100:
        raise HTTPException(400, "Percentage must be between 0 and 100.")

    scale = scale_from_payload(payload)
    subject_id = payload.get("subject_id")
    return scale.lookup(percentage, str(subject_id) if subject_id is not None else None).model_dump()


@router.post("/distribution")
async def distribution(payload: dict):
    """Grade distribution and summary statistics for a list of percentages."""
    percentages = payload.get("percentages")
    if not isinstance(percentages, list):
        raise HTTPException(400, "Provide 'percentages' as a list.")
    return scale_from_payload(payload).distribution(percentages)
