"""Public website lead intake."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request

from api.deps import get_intake_pipeline, resolve_client_ip
from core.logging_config import get_logger
from domain.intake import IntakePipeline

router = APIRouter()
LOGGER = get_logger(__name__)


@router.post("/lead-intake")
def submit_lead(
    request: Request,
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    pipeline: IntakePipeline = Depends(get_intake_pipeline),
) -> Dict[str, Any]:
    """
    Record a lead from the website form.

    Accepts camelCase or snake_case fields. A filled honeypot returns
    ``{"ok": true}`` without writing anything. Calendar and conversion calls
    run after the response is sent.
    """
    result = pipeline.submit_lead(
        payload,
        client_ip=resolve_client_ip(request),
        referrer=request.headers.get("referer"),
    )
    for task in result.post_commit_tasks:
        background_tasks.add_task(task)
    return result.to_dict()
