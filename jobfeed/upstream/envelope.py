"""
Envelope parsing for upstream responses.

Every response body is exactly one of:

- success: ``{"data": [...]}`` or ``{"data": {...}}``; a ``code`` key, when
  present, must be 200
- error: ``{"code": <int != 200>, "message": <str>}``

Anything else fails closed with ValidationError.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from jobfeed.errors import UpstreamError, ValidationError


class SuccessEnvelope(BaseModel):
    """``{"data": ...}`` with an optional ``code: 200``."""
    model_config = ConfigDict(extra="allow")

    data: Union[List[Any], Dict[str, Any]]
    code: Optional[int] = None

    @field_validator("code")
    @classmethod
    def _code_is_ok(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value != 200:
            raise ValueError(f"success envelope with code {value}")
        return value


class ErrorEnvelope(BaseModel):
    """``{"code": <non-200>, "message": "..."}``."""
    model_config = ConfigDict(extra="allow")

    code: int
    message: str

    @field_validator("code")
    @classmethod
    def _code_is_error(cls, value: int) -> int:
        if value == 200:
            raise ValueError("error envelope with code 200")
        return value


Envelope = Union[SuccessEnvelope, ErrorEnvelope]


def parse_envelope(body: Any) -> Envelope:
    """
    Classify a decoded JSON body as a success or error envelope.

    An error envelope is tried first, so a body carrying both ``data`` and a
    non-200 ``code`` is an error.

    Raises:
        ValidationError: If the body is neither shape
    """
    if not isinstance(body, dict):
        raise ValidationError(f"Invalid API response structure: expected object, got {type(body).__name__}")

    try:
        return ErrorEnvelope.model_validate(body)
    except PydanticValidationError:
        pass

    try:
        return SuccessEnvelope.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid API response structure: {e.error_count()} problem(s), keys={sorted(body)}") from e


def unwrap(body: Any, expect: Literal["list", "object"]) -> Union[List[Any], Dict[str, Any]]:
    """
    Parse ``body`` and return its ``data`` payload.

    Args:
        body: Decoded JSON response
        expect: Required shape of ``data``

    Raises:
        UpstreamError: For an error envelope
        ValidationError: For anything malformed, or ``data`` of the wrong shape
    """
    envelope = parse_envelope(body)
    if isinstance(envelope, ErrorEnvelope):
        raise UpstreamError(envelope.code, envelope.message)

    data = envelope.data
    if expect == "list" and not isinstance(data, list):
        raise ValidationError("Invalid API response structure: expected a list in 'data'")
    if expect == "object" and not isinstance(data, dict):
        raise ValidationError("Invalid API response structure: expected an object in 'data'")
    return data
