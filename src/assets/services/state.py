"""Asset status rules and the status/assignment coupling."""

from django.core.exceptions import ValidationError

from ..models import Asset

VALID_STATUSES = dict(Asset.STATUS_CHOICES)


def status_label(status: str) -> str:
    """Return the display label for a status key ('in_stock' -> 'In Stock')."""
    return VALID_STATUSES.get(status, status)


def validate_assignment(status: str, assigned_to_id) -> None:
    """Raise ValidationError unless status is 'assigned' iff a user is set.

    Called before every write that touches either field.
    """
    if status not in VALID_STATUSES:
        raise ValidationError(f"'{status}' is not a valid status.")

    if assigned_to_id and status != "assigned":
        raise ValidationError(
            "An asset cannot be assigned to a user unless its status "
            "is 'Assigned'."
        )
    if status == "assigned" and not assigned_to_id:
        raise ValidationError(
            "An asset with status 'Assigned' must be assigned to a user."
        )


def validate_checkout(asset: Asset) -> None:
    """Only assets that are in stock can be checked out."""
    if asset.status != "in_stock":
        raise ValidationError(
            f"This asset is '{status_label(asset.status)}', not 'In Stock', "
            f"and cannot be checked out."
        )
