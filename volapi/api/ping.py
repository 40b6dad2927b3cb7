import logging
import os

from fastapi import APIRouter, Depends, Request

from volapi.api.common import get_context, request_params, validate_params
from volapi.context import VolapiContext
from volapi.services.record_store import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ping"])


@router.get("/ping")
def ping(request: Request, ctx: VolapiContext = Depends(get_context)):
    validate_params(request_params(request), valid=())

    healthy = True
    status = "OK"
    try:
        ctx.store.ping()
    except StoreError as exc:
        logger.warning("Record store ping failed: %s", exc)
        healthy = False
        status = "Record store unavailable"

    return {"pid": os.getpid(), "status": status, "healthy": healthy}
