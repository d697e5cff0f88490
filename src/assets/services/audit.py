"""Audit trail writers.

Two append-only logs exist: ``AssetLogEntry`` for anything that happened
to one asset and ``SystemLogEntry`` for global administrative actions.

Single writes are best-effort: each one runs in its own savepoint, and a
database failure is logged and swallowed so the operation that triggered
it still completes. Bulk operations instead build unsaved entries with
``build_asset_entry`` and insert them inside their own transaction, so
the entries succeed or fail together with the batch.
"""

import logging

from django.db import DatabaseError
from django.db import transaction as db_transaction

from ..models import AssetLogEntry, SystemLogEntry

logger = logging.getLogger(__name__)


def build_asset_entry(asset_id, actor, action: str, details: str = ""):
    """Return an unsaved AssetLogEntry for use with bulk_create."""
    return AssetLogEntry(
        asset_id=asset_id,
        user=actor,
        action=action,
        details=details,
    )


def record_asset_event(asset_id, actor, action: str, details: str = ""):
    """Append one entry to an asset's history.

    Returns the entry, or None if the write failed.
    """
    try:
        with db_transaction.atomic():
            return AssetLogEntry.objects.create(
                asset_id=asset_id,
                user=actor,
                action=action,
                details=details,
            )
    except DatabaseError:
        logger.exception(
            "Failed to write asset log entry (asset=%s, action=%s)",
            asset_id,
            action,
        )
        return None


def record_system_event(
    actor, action_type: str, details: str, ip_address: str | None = None
):
    """Append one entry to the global system log.

    Returns the entry, or None if the write failed.
    """
    try:
        with db_transaction.atomic():
            return SystemLogEntry.objects.create(
                user=actor,
                action_type=action_type,
                details=details,
                ip_address=ip_address or "UNKNOWN",
            )
    except DatabaseError:
        logger.exception(
            "Failed to write system log entry (type=%s)", action_type
        )
        return None


def describe_changes(before: dict, after: dict, labels: dict) -> list[str]:
    """Describe how two records differ, one line per changed field.

    ``before`` and ``after`` map field names to display values and
    ``labels`` maps the same names to human-readable field names, in the
    order lines should appear. A label may also be a callable taking
    ``(old, new)`` and returning the full line, for fields whose message
    does not fit the default "X changed from 'a' to 'b'." wording.
    """
    lines = []
    for field, label in labels.items():
        old = before.get(field)
        new = after.get(field)
        if old == new:
            continue
        if callable(label):
            lines.append(label(old, new))
        else:
            lines.append(
                f"{label} changed from '{_display(old)}' "
                f"to '{_display(new)}'."
            )
    return lines


def _display(value):
    if value is None or value == "":
        return "None"
    return value
