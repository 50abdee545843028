"""
Workflow document attached to a report.

Stored as a JSON object on the report. Recognized keys are typed and
validated; anything else goes to an extension bag and is carried through
untouched. Keys that were never set are absent from the stored document.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any

from app.roadstatus.errors import ValidationError
from app.roadstatus.utils import parse_json_object

PROGRESS_PERCENT = "progressPercent"
ESTIMATED_COST_LKR = "estimatedCostLkr"
NOTES = "notes"

RECOGNIZED_KEYS = (PROGRESS_PERCENT, ESTIMATED_COST_LKR, NOTES)
MAX_NOTES_LENGTH = 2000


def _as_number(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"workflowData.{key} must be a number", field=key)
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"workflowData.{key} must be a number", field=key) from None
    if not number.is_finite():
        raise ValidationError(f"workflowData.{key} must be a finite number", field=key)
    return number


def _validate_progress(value: Any) -> int | None:
    if value is None:
        return None
    number = _as_number(PROGRESS_PERCENT, value)
    if number != number.to_integral_value() or not (0 <= number <= 100):
        raise ValidationError("workflowData.progressPercent must be a whole number between 0 and 100", field=PROGRESS_PERCENT)
    return int(number)


def _validate_cost(value: Any) -> float | None:
    if value is None:
        return None
    number = _as_number(ESTIMATED_COST_LKR, value)
    if number < 0:
        raise ValidationError("workflowData.estimatedCostLkr cannot be negative", field=ESTIMATED_COST_LKR)
    return int(number) if number == number.to_integral_value() else float(number)


def _validate_notes(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("workflowData.notes must be a string", field=NOTES)
    if len(value) > MAX_NOTES_LENGTH:
        raise ValidationError(f"workflowData.notes is limited to {MAX_NOTES_LENGTH} characters", field=NOTES)
    return value


_VALIDATORS = {
    PROGRESS_PERCENT: _validate_progress,
    ESTIMATED_COST_LKR: _validate_cost,
    NOTES: _validate_notes,
}


@dataclass(frozen=True)
class WorkflowData:
    progress_percent: int | None = None
    estimated_cost_lkr: float | None = None
    notes: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any] | None) -> "WorkflowData":
        """Read a stored document. Stored values were validated on write."""
        doc = dict(doc or {})
        return cls(
            progress_percent=doc.pop(PROGRESS_PERCENT, None),
            estimated_cost_lkr=doc.pop(ESTIMATED_COST_LKR, None),
            notes=doc.pop(NOTES, None),
            extra={k: v for k, v in doc.items() if v is not None},
        )

    def to_document(self) -> dict[str, Any] | None:
        doc: dict[str, Any] = {}
        if self.progress_percent is not None:
            doc[PROGRESS_PERCENT] = self.progress_percent
        if self.estimated_cost_lkr is not None:
            doc[ESTIMATED_COST_LKR] = self.estimated_cost_lkr
        if self.notes is not None:
            doc[NOTES] = self.notes
        for k, v in self.extra.items():
            if v is not None:
                doc[k] = v
        return doc or None

    def merge(self, update: Mapping[str, Any]) -> "WorkflowData":
        """
        Shallow merge of a validated update (see ``parse_workflow_update``).
        Keys not in ``update`` keep their value; a None value clears the key.
        """
        changes: dict[str, Any] = {}
        extra = dict(self.extra)
        for key, value in update.items():
            if key == PROGRESS_PERCENT:
                changes["progress_percent"] = value
            elif key == ESTIMATED_COST_LKR:
                changes["estimated_cost_lkr"] = value
            elif key == NOTES:
                changes["notes"] = value
            elif value is None:
                extra.pop(key, None)
            else:
                extra[key] = value
        return replace(self, extra=extra, **changes)


def parse_workflow_update(raw: Any) -> dict[str, Any]:
    """
    Validate a ``workflowData`` payload (object or JSON string) into a dict of
    key -> cleaned value. Raises ValidationError before anything is persisted.
    """
    doc, err = parse_json_object(raw, label="workflowData")
    if err:
        raise ValidationError(err, field="workflowData")
    cleaned: dict[str, Any] = {}
    for key, value in (doc or {}).items():
        if not isinstance(key, str) or not key.strip() or "." in key:
            raise ValidationError(f"Invalid workflowData key: {key!r}", field="workflowData")
        validator = _VALIDATORS.get(key)
        cleaned[key] = validator(value) if validator else value
    return cleaned
