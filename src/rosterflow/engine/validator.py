"""Validate update requests against the source schema registry."""

from __future__ import annotations

from typing import Callable, List

from rosterflow.config.schemas import FieldSpec, SourceSchema, get_schema
from rosterflow.models import UpdateRequest, UpdateSource, ValidationIssue, ValidationResult


SchemaLookup = Callable[[UpdateSource], SourceSchema]


def _check_value(spec: FieldSpec, value, errors: List[ValidationIssue], warnings: List[ValidationIssue]) -> None:
    if not spec.accepts_type(value):
        errors.append(
            ValidationIssue(
                field=spec.name,
                reason="TypeMismatch",
                message=f"expected {spec.type}, got {type(value).__name__}",
            )
        )
        return
    if spec.choices and value not in spec.choices:
        errors.append(
            ValidationIssue(
                field=spec.name,
                reason="TypeMismatch",
                message=f"expected one of {', '.join(spec.choices)}",
            )
        )
        return
    if spec.type in ("int", "float"):
        if spec.minimum is not None and value < spec.minimum:
            warnings.append(
                ValidationIssue(
                    field=spec.name,
                    reason="OutOfRange",
                    message=f"{value} is below the expected minimum {spec.minimum:g}",
                )
            )
        elif spec.maximum is not None and value > spec.maximum:
            warnings.append(
                ValidationIssue(
                    field=spec.name,
                    reason="OutOfRange",
                    message=f"{value} is above the expected maximum {spec.maximum:g}",
                )
            )


def validate_request(request: UpdateRequest, lookup: SchemaLookup = get_schema) -> ValidationResult:
    """Check ``request.changes`` against the declared schema of its source.

    Errors (``MissingField``, ``TypeMismatch``, ``UnknownField``) block the update;
    ``OutOfRange`` is reported as a warning only. Issues are emitted for the
    changed fields in sorted order, followed by absent required fields in
    declaration order, so the result is identical for identical requests.
    """

    schema = lookup(request.source)
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    for name in sorted(request.changes):
        value = request.changes[name]
        spec = schema.fields.get(name)
        if spec is None:
            errors.append(
                ValidationIssue(
                    field=name,
                    reason="UnknownField",
                    message=f"{name} is not a field of {schema.source.value}",
                )
            )
            continue
        if value is None:
            if spec.required:
                errors.append(ValidationIssue(field=name, reason="MissingField", message=f"{name} is required"))
            continue
        _check_value(spec, value, errors, warnings)

    for name in schema.required_fields():
        if name not in request.changes:
            errors.append(ValidationIssue(field=name, reason="MissingField", message=f"{name} is required"))

    return ValidationResult(errors=errors, warnings=warnings)
