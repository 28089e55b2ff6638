"""
Record validation against a resource's field declarations.

Checks run field by field in declaration order; the first failure aborts
with a ``RecordValidationError`` naming the field. Values that pass are
returned normalized (e.g. dates as ISO 8601 strings) ready to be written.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from resource_engine.runtime.errors import RecordValidationError
from resource_engine.specs.field_types import get_mapping
from resource_engine.specs.resource import SYSTEM_COLUMNS, FieldSpec, ValidationRules


def reason_from(error: ValueError) -> str:
    """Turn a type check message into a reason (\"Must be ...\" -> \"must be ...\")."""
    text = str(error)
    return text[:1].lower() + text[1:]


def _format_bound(value: int | float) -> str:
    return str(int(value)) if isinstance(value, float) and value.is_integer() else str(value)


def check_rules(
    value: Any, rules: ValidationRules, normalize: Callable[[Any], Any] | None = None
) -> str | None:
    """
    Check a type-valid value against its rules.

    ``normalize`` is applied to enum entries before comparison so equivalent
    spellings of a date or timestamp match.

    Returns:
        The failure reason, or None if every rule passes
    """
    if rules.min is not None and value < rules.min:
        return f"must be at least {_format_bound(rules.min)}"
    if rules.max is not None and value > rules.max:
        return f"must be at most {_format_bound(rules.max)}"
    if rules.min_length is not None and len(value) < rules.min_length:
        return f"must be at least {rules.min_length} characters"
    if rules.max_length is not None and len(value) > rules.max_length:
        return f"must be at most {rules.max_length} characters"
    if rules.pattern is not None and re.fullmatch(rules.pattern, value) is None:
        return "format is invalid"
    if rules.enum is not None and value not in [
        normalize(allowed) if normalize else allowed for allowed in rules.enum
    ]:
        return f"must be one of: {', '.join(str(allowed) for allowed in rules.enum)}"
    return None


class RecordValidator:
    """
    Validates record payloads for one resource.

    Example:
        validator = RecordValidator(definition.fields)
        values = validator.validate({"title": "Dune", "pages": 412})
    """

    def __init__(self, fields: list[FieldSpec]):
        self.fields = list(fields)
        self._by_name = {spec.name: spec for spec in self.fields}

    def validate(self, payload: Any, is_update: bool = False) -> dict[str, Any]:
        """
        Validate a payload.

        Args:
            payload: Mapping of field name to value
            is_update: Skip the missing-required check (partial update)

        Returns:
            Normalized values for the keys present in the payload

        Raises:
            RecordValidationError: On the first failing field
        """
        if not isinstance(payload, Mapping):
            raise RecordValidationError("payload", "must be an object")

        for key in payload:
            if key in SYSTEM_COLUMNS:
                raise RecordValidationError(key, "is managed by the server")
            if key not in self._by_name:
                raise RecordValidationError(key, "is not declared on this resource")

        normalized: dict[str, Any] = {}
        for spec in self.fields:
            present = spec.name in payload
            value = payload.get(spec.name)

            if value is None:
                if spec.required and (present or not is_update):
                    raise RecordValidationError(spec.name, "is required")
                if present:
                    normalized[spec.name] = None
                continue

            normalized[spec.name] = self._check_value(spec, value)

        return normalized

    def _check_value(self, spec: FieldSpec, value: Any) -> Any:
        mapping = get_mapping(spec.type)
        try:
            checked = mapping.check(value)
        except ValueError as e:
            raise RecordValidationError(spec.name, reason_from(e)) from None

        if spec.validation_rules is not None:
            reason = check_rules(checked, spec.validation_rules, mapping.check)
            if reason is not None:
                raise RecordValidationError(spec.name, reason)
        return checked


def validate_record(
    payload: Any, fields: list[FieldSpec], is_update: bool = False
) -> dict[str, Any]:
    """Validate a payload against field declarations (see ``RecordValidator``)."""
    return RecordValidator(fields).validate(payload, is_update=is_update)
