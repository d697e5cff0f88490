"""Asset lifecycle operations.

Single-asset create/update/delete, check-out/check-in and bulk actions.
Every operation validates the status/assignment coupling before it
writes, records one audit entry per affected asset, and only removes
image files once the database write that dereferenced them is done.
"""

import logging
from datetime import date

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError
from django.db import transaction as db_transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from ..exceptions import ConflictError, NotFoundError, PersistenceError
from ..models import Asset, AssetLogEntry, Category, Supplier
from .audit import (
    build_asset_entry,
    describe_changes,
    record_asset_event,
)
from .images import delete_image_files, process_and_save_image
from .state import status_label, validate_assignment, validate_checkout

logger = logging.getLogger(__name__)

User = get_user_model()

UNASSIGNED = "Unassigned"

BULK_ACTIONS = {
    "delete": None,
    "set_retired": "retired",
    "set_repair": "in_repair",
}

# Fields of the Update audit message, in display order
CHANGE_LABELS = {
    "asset_tag": lambda old, new: f"Asset Tag changed to '{new}'.",
    "image": lambda old, new: "Image updated.",
    "category": "Category",
    "supplier": "Supplier",
    "model": "Model",
    "serial_number": "Serial Number",
    "purchase_date": "Purchase Date",
    "warranty_expiry": "Warranty Expiry",
    "assigned_to": lambda old, new: (
        f"Assignment changed from '{old}' to '{new}'."
    ),
    "status": "Status",
}


def _get_asset(asset_id) -> Asset:
    try:
        return Asset.objects.select_related(
            "category", "supplier", "assigned_to"
        ).get(pk=asset_id)
    except (Asset.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Asset not found.")


def _resolve(model, value, label: str):
    """Turn an id (or instance) from a payload into a row, or None."""
    if value in (None, ""):
        return None
    pk = getattr(value, "pk", value)
    try:
        return model.objects.get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise ValidationError(f"Selected {label} does not exist.")


def parse_date_field(value, label: str):
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        parsed = parse_date(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{label} is not a valid date.")
    return parsed


def _optional_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def clean_asset_fields(fields: dict, prior: Asset | None = None) -> dict:
    """Normalise an asset payload into model field values.

    On update, keys missing from ``fields`` keep the prior row's values.
    Empty strings become None for optional fields. Raises
    ValidationError for missing required fields and unknown references.
    """
    if prior is not None:
        values = {
            "asset_tag": prior.asset_tag,
            "category": prior.category,
            "supplier": prior.supplier,
            "model": prior.model,
            "serial_number": prior.serial_number,
            "purchase_date": prior.purchase_date,
            "warranty_expiry": prior.warranty_expiry,
            "assigned_to": prior.assigned_to,
            "status": prior.status,
        }
    else:
        values = {"status": "in_stock"}

    if "asset_tag" in fields:
        values["asset_tag"] = str(fields["asset_tag"] or "").strip()
    if "model" in fields:
        values["model"] = str(fields["model"] or "").strip()
    for field, model, label in (
        ("category", Category, "category"),
        ("supplier", Supplier, "supplier"),
        ("assigned_to", User, "user"),
    ):
        if field in fields:
            values[field] = _resolve(model, fields[field], label)
    if "serial_number" in fields:
        values["serial_number"] = _optional_text(fields["serial_number"])
    if "purchase_date" in fields:
        values["purchase_date"] = parse_date_field(
            fields["purchase_date"], "Purchase date"
        )
    if "warranty_expiry" in fields:
        values["warranty_expiry"] = parse_date_field(
            fields["warranty_expiry"], "Warranty expiry"
        )
    if fields.get("status"):
        values["status"] = fields["status"]

    values.setdefault("category", None)
    values.setdefault("supplier", None)
    values.setdefault("assigned_to", None)
    values.setdefault("serial_number", None)
    values.setdefault("purchase_date", None)
    values.setdefault("warranty_expiry", None)

    if not values.get("asset_tag"):
        raise ValidationError("Asset tag is required.")
    if not values.get("model"):
        raise ValidationError("Model is required.")

    assigned = values["assigned_to"]
    validate_assignment(values["status"], assigned.pk if assigned else None)
    return values


def _snapshot(asset: Asset) -> dict:
    """Display values of an asset, as compared by the Update message."""
    return {
        "asset_tag": asset.asset_tag,
        "image": asset.image_filename or None,
        "category": asset.category.name if asset.category else None,
        "supplier": asset.supplier.name if asset.supplier else None,
        "model": asset.model,
        "serial_number": asset.serial_number or None,
        "purchase_date": (
            asset.purchase_date.isoformat() if asset.purchase_date else None
        ),
        "warranty_expiry": (
            asset.warranty_expiry.isoformat()
            if asset.warranty_expiry
            else None
        ),
        "assigned_to": (
            asset.assigned_to.audit_label if asset.assigned_to else UNASSIGNED
        ),
        "status": status_label(asset.status),
    }


def _raise_write_error(exc, asset_tag: str, exclude_pk=None):
    """Map a failed asset write to ConflictError or PersistenceError.

    Must be called from inside the ``except`` block handling ``exc``.
    """
    if isinstance(exc, IntegrityError):
        duplicate = (
            Asset.objects.filter(asset_tag=asset_tag)
            .exclude(pk=exclude_pk)
            .exists()
        )
        if duplicate:
            raise ConflictError(
                "An asset with this tag already exists."
            ) from exc
    logger.exception("Database error while saving asset %s", asset_tag)
    raise PersistenceError("The asset could not be saved.") from exc


def create_asset(fields: dict, actor, image=None) -> Asset:
    """Create an asset, optionally with an uploaded image.

    The image is processed before the insert; if the insert fails the
    new image files are removed again.
    """
    values = clean_asset_fields(fields)
    filename = process_and_save_image(image) if image else ""

    try:
        with db_transaction.atomic():
            asset = Asset.objects.create(image_filename=filename, **values)
    except DatabaseError as exc:
        delete_image_files(filename)
        _raise_write_error(exc, values["asset_tag"])

    record_asset_event(
        asset.pk,
        actor,
        "created",
        f"Asset created with tag '{asset.asset_tag}' and status "
        f"'{status_label(asset.status)}'.",
    )
    logger.info("Asset %s created by %s", asset.asset_tag, actor)
    return asset


def update_asset(asset_id, fields: dict, actor, image=None) -> Asset:
    """Update an asset and record exactly which fields changed.

    A replaced image's old files are deleted only after the update has
    been written, and only if the filename actually changed.
    """
    asset = _get_asset(asset_id)
    values = clean_asset_fields(fields, prior=asset)
    before = _snapshot(asset)

    old_filename = asset.image_filename
    new_filename = process_and_save_image(image) if image else old_filename

    for field, value in values.items():
        setattr(asset, field, value)
    asset.image_filename = new_filename

    try:
        with db_transaction.atomic():
            asset.save()
    except DatabaseError as exc:
        if new_filename != old_filename:
            delete_image_files(new_filename)
        _raise_write_error(exc, values["asset_tag"], exclude_pk=asset.pk)

    if old_filename and new_filename != old_filename:
        delete_image_files(old_filename)

    lines = describe_changes(before, _snapshot(asset), CHANGE_LABELS)
    details = (
        "\n".join(lines)
        if lines
        else "Asset details re-saved with no changes."
    )
    record_asset_event(asset.pk, actor, "updated", details)
    logger.info("Asset %s updated by %s", asset.asset_tag, actor)
    return asset


def check_out(asset_id, user_id, actor) -> Asset:
    """Assign an in-stock asset to a user."""
    if not user_id:
        raise ValidationError(
            "You must select a user to check out the asset to."
        )
    asset = _get_asset(asset_id)
    validate_checkout(asset)
    try:
        borrower = User.objects.get(pk=getattr(user_id, "pk", user_id))
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("User not found.")

    asset.status = "assigned"
    asset.assigned_to = borrower
    validate_assignment(asset.status, borrower.pk)
    try:
        with db_transaction.atomic():
            asset.save(update_fields=["status", "assigned_to", "updated_at"])
    except DatabaseError as exc:
        logger.exception("Check-out of asset %s failed", asset.asset_tag)
        raise PersistenceError("The asset could not be checked out.") from exc

    record_asset_event(
        asset.pk,
        actor,
        "checked_out",
        f"Asset checked out to {borrower.audit_label}.",
    )
    return asset


def check_in(asset_id, actor) -> Asset:
    """Return an asset to stock, clearing its assignee."""
    asset = _get_asset(asset_id)
    # Resolve the name before the assignment is cleared
    if asset.assigned_to:
        returned_from = asset.assigned_to.audit_label
    else:
        returned_from = "Unknown User (User #unknown)"

    asset.status = "in_stock"
    asset.assigned_to = None
    try:
        with db_transaction.atomic():
            asset.save(update_fields=["status", "assigned_to", "updated_at"])
    except DatabaseError as exc:
        logger.exception("Check-in of asset %s failed", asset.asset_tag)
        raise PersistenceError("The asset could not be checked in.") from exc

    record_asset_event(
        asset.pk,
        actor,
        "checked_in",
        f"Asset returned from {returned_from}.",
    )
    return asset


def delete_asset(asset_id, actor) -> Asset:
    """Delete an asset and its image files.

    Log entries and maintenance tasks for the asset are kept.
    """
    asset = _get_asset(asset_id)
    pk = asset.pk
    asset_tag = asset.asset_tag
    filename = asset.image_filename
    try:
        with db_transaction.atomic():
            asset.delete()
    except DatabaseError as exc:
        logger.exception("Deleting asset %s failed", asset_tag)
        raise PersistenceError("The asset could not be deleted.") from exc

    delete_image_files(filename)
    record_asset_event(
        pk, actor, "deleted", f"Asset deleted (was tag: '{asset_tag}')."
    )
    logger.info("Asset %s deleted by %s", asset_tag, actor)
    return asset


def _clean_ids(asset_ids) -> list[int]:
    ids = []
    for value in asset_ids or []:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return sorted(set(ids))


def bulk_apply(asset_ids, action: str, actor) -> dict:
    """Delete, retire or send to repair several assets at once.

    The reads, the batch mutation and the audit entries share one
    transaction: either every row changes and is logged, or nothing
    does. Retiring or sending to repair also clears the assignee of
    every row, but only rows whose status actually changed are logged.

    Returns a dict with the 'action', the number of rows 'affected' and
    the number of audit entries 'logged'.
    """
    if action not in BULK_ACTIONS:
        raise ValidationError("Invalid bulk action selected.")
    ids = _clean_ids(asset_ids)
    if not ids:
        raise ValidationError("No items were selected.")
    if not Asset.objects.filter(pk__in=ids).exists():
        raise ValidationError("None of the selected assets exist.")

    new_status = BULK_ACTIONS[action]
    orphaned_files = []
    try:
        with db_transaction.atomic():
            assets = list(
                Asset.objects.filter(pk__in=ids)
                .select_related("assigned_to")
                .order_by("asset_tag")
            )
            selected = Asset.objects.filter(pk__in=[a.pk for a in assets])

            if new_status is None:
                selected.delete()
                affected = len(assets)
                entries = [
                    build_asset_entry(
                        a.pk,
                        actor,
                        "deleted",
                        f"Asset deleted (was tag: '{a.asset_tag}').",
                    )
                    for a in assets
                ]
                orphaned_files = [
                    a.image_filename for a in assets if a.image_filename
                ]
            else:
                affected = selected.update(
                    status=new_status,
                    assigned_to=None,
                    updated_at=timezone.now(),
                )
                entries = [
                    build_asset_entry(
                        a.pk,
                        actor,
                        "updated",
                        _bulk_status_details(a, new_status),
                    )
                    for a in assets
                    if a.status != new_status
                ]

            AssetLogEntry.objects.bulk_create(entries)
    except DatabaseError as exc:
        logger.exception("Bulk action %s failed for %s", action, ids)
        raise PersistenceError(
            "The bulk action failed and no changes were made."
        ) from exc

    for filename in orphaned_files:
        delete_image_files(filename)

    logger.info(
        "Bulk %s by %s: %d affected, %d logged",
        action,
        actor,
        affected,
        len(entries),
    )
    return {"action": action, "affected": affected, "logged": len(entries)}


def _bulk_status_details(asset: Asset, new_status: str) -> str:
    before = {
        "status": status_label(asset.status),
        "assigned_to": (
            asset.assigned_to.audit_label if asset.assigned_to else UNASSIGNED
        ),
    }
    after = {"status": status_label(new_status), "assigned_to": UNASSIGNED}
    labels = {
        "status": CHANGE_LABELS["status"],
        "assigned_to": CHANGE_LABELS["assigned_to"],
    }
    return "\n".join(describe_changes(before, after, labels))
