"""Internal device event endpoints, fed by the device message pipeline."""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Depends

from buttonhub.api.deps import get_compensator, get_registry, get_request_id, require_internal_token
from buttonhub.api.responses import success_body
from buttonhub.services.compensator import CleanupCompensator
from buttonhub.services.registry import SqlOwnershipRegistry
from buttonhub.services.reset_cleanup import process_reset_cleanup

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal/events",
    tags=["internal"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/reset-cleanup")
def reset_cleanup(
    # raw message: the bare command, a JSON string, or a {topic, payload} wrapper
    event: Any = Body(default=None),
    request_id: str = Depends(get_request_id),
    registry: SqlOwnershipRegistry = Depends(get_registry),
    compensator: CleanupCompensator = Depends(get_compensator),
):
    """Handle a receiver's ``reset_cleanup`` command."""
    result = process_reset_cleanup(event, registry, compensator)
    return success_body(asdict(result), request_id)
