"""
Helpers shared by the API routers: context access, parameter handling and
response rendering.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import Request
from pydantic import BaseModel

from volapi.context import VolapiContext
from volapi.errors import ValidationError
from volapi.validation import check_invalid_params, check_mandatory_params


def get_context(request: Request) -> VolapiContext:
    return request.app.state.context


def body_params(body: Optional[BaseModel]) -> Dict[str, Any]:
    """Parameters the client actually sent in a JSON body, unknown ones included."""
    if body is None:
        return {}
    sent = set(body.model_fields_set) | set(body.model_extra or {})
    return {name: value for name, value in body.model_dump().items() if name in sent and value is not None}


def request_params(request: Request, body: Optional[BaseModel] = None) -> Dict[str, Any]:
    """Query string parameters, overridden by the JSON body ones."""
    params: Dict[str, Any] = dict(request.query_params)
    params.update(body_params(body))
    return params


def validate_params(
    params: Dict[str, Any],
    valid: Iterable[str],
    mandatory: Iterable[str] = (),
    validators: Optional[Dict[str, Callable[[Any], Optional[str]]]] = None,
) -> None:
    """
    Check params, collecting every problem before failing.

    Raises:
        ValidationError: a mandatory parameter is missing, a parameter is
            unknown, or a validator rejected a value
    """
    errs: List[str] = []
    errs.extend(check_mandatory_params(params, mandatory))
    errs.extend(check_invalid_params(params, valid))

    for name, validator in (validators or {}).items():
        if name in params:
            err = validator(params[name])
            if err:
                errs.append(err)

    if errs:
        raise ValidationError(errs)


def format_timestamp(epoch_ms: Optional[int]) -> Optional[str]:
    """Epoch milliseconds as ISO-8601, e.g. 2024-01-02T03:04:05.678Z"""
    if epoch_ms is None:
        return None
    moment = datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def render(value: Dict[str, Any]) -> Dict[str, Any]:
    rendered = dict(value)
    if "create_timestamp" in rendered:
        rendered["create_timestamp"] = format_timestamp(rendered["create_timestamp"])
    return rendered
