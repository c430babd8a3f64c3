"""Auto-Analyze API endpoints — start jobs, poll progress, fetch results, cancel."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from xobcat.engine.manager import AnalysisManager
from xobcat.errors import AnalysisNotFoundError, ConfigValidationError, ResultsNotReadyError
from xobcat.models import AnalysisProgress, AnalysisResults, StartResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analysis/auto")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class CancelResponse(BaseModel):
    cancelled: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_manager(request: Request) -> AnalysisManager:
    return request.app.state.manager


def _not_found(exc: AnalysisNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


# ---------------------------------------------------------------------------
# POST /start: validate config and spawn the job
# ---------------------------------------------------------------------------


@router.post("/start")
async def start_analysis(payload: dict[str, Any], request: Request) -> StartResponse:
    """Start an Auto-Analyze job.

    Guards:
    - 400 with the first failing constraint if the config is invalid
    """
    manager = _get_manager(request)
    try:
        analysis_id = manager.start(payload)
    except ConfigValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return StartResponse(analysis_id=analysis_id)


# ---------------------------------------------------------------------------
# GET /progress/{id}: poll progress
# ---------------------------------------------------------------------------


@router.get("/progress/{analysis_id}")
async def get_progress(analysis_id: str, request: Request) -> AnalysisProgress:
    try:
        return _get_manager(request).progress(analysis_id)
    except AnalysisNotFoundError as exc:
        raise _not_found(exc) from exc


# ---------------------------------------------------------------------------
# GET /results/{id}: labelled sessions, taxonomy, summary
# ---------------------------------------------------------------------------


@router.get("/results/{analysis_id}")
async def get_results(analysis_id: str, request: Request) -> AnalysisResults:
    """Results of a completed job.

    Guards:
    - 404 if the job is unknown
    - 409 while the job is running, or if it ended in error
    """
    try:
        return _get_manager(request).results(analysis_id)
    except AnalysisNotFoundError as exc:
        raise _not_found(exc) from exc
    except ResultsNotReadyError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# DELETE /{id}: cancel
# ---------------------------------------------------------------------------


@router.delete("/{analysis_id}")
async def cancel_analysis(analysis_id: str, request: Request) -> CancelResponse:
    try:
        cancelled = _get_manager(request).cancel(analysis_id)
    except AnalysisNotFoundError as exc:
        raise _not_found(exc) from exc
    return CancelResponse(cancelled=cancelled)
