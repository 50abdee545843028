"""
Field diffing for audit entries.

Values are reduced to a canonical string before comparison so representation
noise (1 vs 1.0 vs "1", an enum vs its value, dict key order) never produces
an audit entry, while real changes always do.
"""
from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from app.roadstatus.audit import FieldChange

KIND_BOOL = "bool"
KIND_NUMBER = "number"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _number_text(value: float | int | Decimal) -> str:
    if isinstance(value, Decimal):
        if not value.is_finite():
            return str(value)
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def canonical(value: Any, kind: str | None = None) -> str | None:
    """
    Canonical string form of a field value, or None for null.

    ``kind`` lets a field declare how loosely-typed input should be read:
    KIND_BOOL folds 1/"1"/"true" together, KIND_NUMBER parses numeric strings.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value

    if kind == KIND_BOOL:
        text = str(value).strip().lower() if not isinstance(value, bool) else ("true" if value else "false")
        if text in _TRUE:
            return "true"
        if text in _FALSE:
            return "false"
        return text

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return _number_text(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)

    text = str(value)
    if kind == KIND_NUMBER:
        try:
            return _number_text(Decimal(text.strip()))
        except InvalidOperation:
            return text
    return text


def diff(
    old_snapshot: Mapping[str, Any],
    partial_update: Mapping[str, Any],
    kinds: Mapping[str, str] | None = None,
) -> list[FieldChange]:
    """
    Changed fields among the keys present in ``partial_update``.

    A key absent from the update is untouched; a key present with None is an
    explicit clear and is compared like any other value. Missing keys in the
    old snapshot read as None.
    """
    kinds = kinds or {}
    changes: list[FieldChange] = []
    for key, new_value in partial_update.items():
        kind = kinds.get(key)
        old_text = canonical(old_snapshot.get(key), kind)
        new_text = canonical(new_value, kind)
        if old_text != new_text:
            changes.append(FieldChange(field=key, old_value=old_text, new_value=new_text))
    return changes


def flatten_document(doc: Mapping[str, Any] | None, prefix: str) -> dict[str, Any]:
    """{"progressPercent": 50} -> {"workflow.progressPercent": 50} for prefix "workflow"."""
    return {f"{prefix}.{k}": v for k, v in (doc or {}).items()}
