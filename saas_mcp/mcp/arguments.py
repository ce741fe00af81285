"""
Lenient, typed decoding of tool arguments.

Tool arguments are untyped at the wire boundary. Each tool declares a
ToolArguments subclass whose fields mirror its input schema; decoding checks
every field in strict mode and, when a value has the wrong type, falls back to
the field's declared default instead of rejecting the call. Unknown keys are
ignored. A missing field that the backend actually needs surfaces later as a
backend error, which the dispatcher reports as an error result.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator


class ToolArguments(BaseModel):
    """Base class for per-tool argument models."""

    model_config = ConfigDict(
        strict=True,
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_type_mismatch(cls, value: Any, handler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields[info.field_name]
            return field.get_default(call_default_factory=True)

    @classmethod
    def decode(cls, raw: Any) -> "ToolArguments":
        """Build the model from a raw arguments mapping; anything else counts as empty."""
        if not isinstance(raw, Mapping):
            raw = {}
        return cls.model_validate(dict(raw))
