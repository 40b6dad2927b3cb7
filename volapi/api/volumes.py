"""
Volumes API

Endpoints:
- POST   /volumes: create a volume and its storage VM
- GET    /volumes: list volumes, by field or predicate
- GET    /volumes/{uuid}: get one volume
- POST   /volumes/{uuid}: rename a volume
- GET    /volumes/{uuid}/references: VMs referencing a volume
- DELETE /volumes/{name_or_uuid}: delete a volume
- GET    /volumesizes: sizes volumes can be created with
"""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict

from volapi.api.common import get_context, render, request_params, validate_params
from volapi.context import VolapiContext
from volapi.models import VolumeType
from volapi.validation import (
    parse_volume_predicate,
    valid_uuid,
    validate_uuid,
    validate_volume_name,
    validate_volume_name_search_param,
    validate_volume_networks,
    validate_volume_size_param,
    validate_volume_size_search_param,
    validate_volume_state,
    validate_volume_type,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["volumes"])


class CreateVolumeRequest(BaseModel):
    """Unknown fields are kept so that they can be reported as invalid"""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    owner_uuid: Optional[str] = None
    size: Any = None
    type: Optional[str] = None
    networks: Optional[List[Any]] = None
    state: Optional[str] = None


class UpdateVolumeRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    owner_uuid: Optional[str] = None
    name: Optional[str] = None


def _uuid_validator(param_name: str):
    return lambda value: validate_uuid(value, param_name)


def _networks_validator(networks: Any) -> Optional[str]:
    errs = validate_volume_networks(networks)
    return "; ".join(errs) if errs else None


def _create_name_validator(name: Any) -> Optional[str]:
    # Empty name: one is generated
    if name == "":
        return None
    return validate_volume_name(name)


def _predicate_validator(text: Any) -> Optional[str]:
    _, errs = parse_volume_predicate(text)
    return "; ".join(errs) if errs else None


@router.post("/volumes", status_code=201)
def create_volume(
    request: Request,
    body: CreateVolumeRequest,
    ctx: VolapiContext = Depends(get_context),
):
    params = request_params(request, body)
    validate_params(
        params,
        valid=("name", "owner_uuid", "size", "type", "networks", "state"),
        mandatory=("owner_uuid",),
        validators={
            "owner_uuid": _uuid_validator("owner_uuid"),
            "name": _create_name_validator,
            "size": validate_volume_size_param,
            "type": validate_volume_type,
            "networks": _networks_validator,
            "state": validate_volume_state,
        },
    )

    volume = ctx.volumes.create_volume(
        owner_uuid=params["owner_uuid"],
        name=params.get("name"),
        size=params.get("size"),
        type=params.get("type", VolumeType.TRITONNFS.value),
        networks=params.get("networks"),
        state=params.get("state"),
        request_id=request.headers.get("x-request-id"),
    )
    return render(volume)


@router.get("/volumes")
def list_volumes(request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)
    validate_params(
        params,
        valid=("name", "owner_uuid", "state", "size", "type", "uuid", "vm_uuid", "predicate"),
        validators={
            "name": validate_volume_name_search_param,
            "owner_uuid": _uuid_validator("owner_uuid"),
            "state": validate_volume_state,
            "size": validate_volume_size_search_param,
            "type": validate_volume_type,
            "uuid": _uuid_validator("uuid"),
            "vm_uuid": _uuid_validator("vm_uuid"),
            "predicate": _predicate_validator,
        },
    )

    predicate = None
    if "predicate" in params:
        predicate, _ = parse_volume_predicate(params["predicate"])

    volumes = ctx.volumes.list_volumes(
        name=params.get("name"),
        owner_uuid=params.get("owner_uuid"),
        state=params.get("state"),
        size=params.get("size"),
        type=params.get("type"),
        uuid=params.get("uuid"),
        vm_uuid=params.get("vm_uuid"),
        predicate=predicate,
    )
    return [render(volume) for volume in volumes]


@router.get("/volumes/{uuid}")
def get_volume(uuid: str, request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)
    validate_params(
        {**params, "uuid": uuid},
        valid=("uuid", "owner_uuid"),
        validators={"uuid": _uuid_validator("uuid"), "owner_uuid": _uuid_validator("owner_uuid")},
    )
    return render(ctx.volumes.get_volume(uuid, owner_uuid=params.get("owner_uuid")))


@router.post("/volumes/{uuid}")
def update_volume(
    uuid: str,
    request: Request,
    body: Optional[UpdateVolumeRequest] = None,
    ctx: VolapiContext = Depends(get_context),
):
    params = request_params(request, body)
    validate_params(
        {**params, "uuid": uuid},
        valid=("uuid", "owner_uuid", "name"),
        validators={
            "uuid": _uuid_validator("uuid"),
            "owner_uuid": _uuid_validator("owner_uuid"),
            "name": validate_volume_name,
        },
    )
    volume = ctx.volumes.update_volume(uuid, owner_uuid=params.get("owner_uuid"), name=params.get("name"))
    return render(volume)


@router.get("/volumes/{uuid}/references")
def get_volume_references(uuid: str, request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)
    validate_params(
        {**params, "uuid": uuid},
        valid=("uuid", "owner_uuid"),
        validators={"uuid": _uuid_validator("uuid"), "owner_uuid": _uuid_validator("owner_uuid")},
    )
    return ctx.volumes.get_volume_references(uuid, owner_uuid=params.get("owner_uuid"))


@router.delete("/volumes/{name_or_uuid}", status_code=204)
def delete_volume(name_or_uuid: str, request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)

    if valid_uuid(name_or_uuid):
        validate_params(
            params,
            valid=("owner_uuid",),
            validators={"owner_uuid": _uuid_validator("owner_uuid")},
        )
        ctx.volumes.delete_volume(volume_uuid=name_or_uuid, owner_uuid=params.get("owner_uuid"))
    else:
        # Names are only unique per owner
        validate_params(
            {**params, "name": name_or_uuid},
            valid=("name", "owner_uuid"),
            mandatory=("owner_uuid",),
            validators={"name": validate_volume_name, "owner_uuid": _uuid_validator("owner_uuid")},
        )
        ctx.volumes.delete_volume(name=name_or_uuid, owner_uuid=params["owner_uuid"])

    return Response(status_code=204)


@router.get("/volumesizes")
def list_volume_sizes(request: Request, ctx: VolapiContext = Depends(get_context)):
    params = request_params(request)
    validate_params(params, valid=("type",), validators={"type": validate_volume_type})
    return ctx.volumes.list_volume_sizes(params.get("type", VolumeType.TRITONNFS.value))
