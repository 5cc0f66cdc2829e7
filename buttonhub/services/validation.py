"""Registration request validation.

Field rules live on ``DeviceRegistrationRequest``; this module turns
pydantic errors into ``FieldError`` lists so every problem is reported
together, whether the body was validated by the API edge or here.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from buttonhub.schemas.registration import DeviceRegistrationRequest
from buttonhub.services.errors import FieldError, RegistrationValidationError


def parse_timestamp(value: str) -> datetime:
    """ISO-8601, ``Z`` suffix accepted; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def field_errors(errors: Iterable[Mapping[str, Any]]) -> list[FieldError]:
    """Map pydantic error dicts to field errors.

    A leading ``body`` location (added by FastAPI) is dropped; errors about
    the body as a whole are reported on the ``body`` field.
    """
    result: list[FieldError] = []
    for err in errors:
        if err.get("type") == "json_invalid":
            result.append(FieldError("body", "Request body must be valid JSON"))
            continue
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] == "body":
            loc = loc[1:]
        result.append(FieldError(loc[0] if loc else "body", err.get("msg", "Invalid value")))
    return result


def validate_registration(payload: Any) -> DeviceRegistrationRequest:
    if isinstance(payload, DeviceRegistrationRequest):
        return payload
    if not isinstance(payload, Mapping):
        raise RegistrationValidationError([FieldError("body", "Request body must be a JSON object")])
    try:
        return DeviceRegistrationRequest.model_validate(dict(payload))
    except ValidationError as e:
        raise RegistrationValidationError(field_errors(e.errors())) from e
