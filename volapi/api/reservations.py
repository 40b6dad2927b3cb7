"""
Volume Reservations API

Endpoints:
- POST   /volumereservations: reserve a volume for a VM being provisioned
- GET    /volumereservations: list reservations
- DELETE /volumereservations/{uuid}: remove a reservation
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict

from volapi.api.common import get_context, render, request_params, validate_params
from volapi.context import VolapiContext
from volapi.validation import parse_reservation_predicate, validate_uuid, validate_volume_name

router = APIRouter(tags=["volumereservations"])

RESERVATION_PARAMS = ("volume_name", "owner_uuid", "vm_uuid", "job_uuid")


class CreateReservationRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    volume_name: Optional[str] = None
    owner_uuid: Optional[str] = None
    vm_uuid: Optional[str] = None
    job_uuid: Optional[str] = None


def _reservation_validators():
    return {
        "volume_name": lambda value: validate_volume_name(value, "volume_name"),
        "owner_uuid": lambda value: validate_uuid(value, "owner_uuid"),
        "vm_uuid": lambda value: validate_uuid(value, "vm_uuid"),
        "job_uuid": lambda value: validate_uuid(value, "job_uuid"),
    }


def _predicate_validator(text: Any) -> Optional[str]:
    _, errs = parse_reservation_predicate(text)
    return "; ".join(errs) if errs else None


@router.post("/volumereservations", status_code=201)
def create_reservation(
    request: Request,
    body: Optional[CreateReservationRequest] = None,
    ctx: VolapiContext = Depends(get_context),
):
    params = request_params(request, body)
    validate_params(
        params,
        valid=RESERVATION_PARAMS,
        mandatory=RESERVATION_PARAMS,
        validators=_reservation_validators(),
    )

    reservation = ctx.reservations.create_reservation(
        volume_name=params["volume_name"],
        owner_uuid=params["owner_uuid"],
        vm_uuid=params["vm_uuid"],
        job_uuid=params["job_uuid"],
    )
    return render(reservation)


@router.get("/volumereservations")
def list_reservations(request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)
    validators = _reservation_validators()
    validators["predicate"] = _predicate_validator
    validate_params(params, valid=RESERVATION_PARAMS + ("predicate",), validators=validators)

    predicate = None
    if "predicate" in params:
        predicate, _ = parse_reservation_predicate(params["predicate"])

    reservations = ctx.reservations.list_reservations(
        predicate=predicate,
        **{name: params[name] for name in RESERVATION_PARAMS if name in params},
    )
    return [render(reservation) for reservation in reservations]


@router.delete("/volumereservations/{uuid}", status_code=204)
def delete_reservation(uuid: str, request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)
    validate_params(
        {**params, "uuid": uuid},
        valid=("uuid", "owner_uuid"),
        mandatory=("uuid", "owner_uuid"),
        validators={
            "uuid": lambda value: validate_uuid(value, "uuid"),
            "owner_uuid": lambda value: validate_uuid(value, "owner_uuid"),
        },
    )
    ctx.reservations.remove_reservation(uuid, params["owner_uuid"])
    return Response(status_code=204)
