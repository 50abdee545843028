"""
Post-commit status change hooks.

Hooks run after the transition and its audit entries are committed. A hook
that raises is logged and skipped; it never undoes the transition.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from flask import Flask, current_app, has_app_context

logger = logging.getLogger(__name__)

_EXTENSION_KEY = "report_status_hooks"


@dataclass(frozen=True)
class StatusChange:
    report_id: int
    report_number: str
    from_status: str
    to_status: str
    performed_by: int | None
    performer_role: str | None
    reason: str | None = None


StatusHook = Callable[[StatusChange], None]


def register_status_hook(app: Flask, hook: StatusHook) -> None:
    app.extensions.setdefault(_EXTENSION_KEY, []).append(hook)


def _log_status_change(change: StatusChange) -> None:
    logger.info(
        "Report %s status %s -> %s (by user=%s role=%s)",
        change.report_number,
        change.from_status,
        change.to_status,
        change.performed_by,
        change.performer_role,
    )


def init_notifications(app: Flask) -> None:
    app.extensions.setdefault(_EXTENSION_KEY, [])
    register_status_hook(app, _log_status_change)


def dispatch_status_change(change: StatusChange) -> int:
    """Run every registered hook; returns how many failed."""
    if not has_app_context():
        return 0
    failures = 0
    for hook in list(current_app.extensions.get(_EXTENSION_KEY, [])):
        try:
            hook(change)
        except Exception:
            failures += 1
            logger.exception(
                "Status hook %s failed for report %s (%s -> %s)",
                getattr(hook, "__name__", repr(hook)),
                change.report_number,
                change.from_status,
                change.to_status,
            )
    return failures
