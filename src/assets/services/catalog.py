"""Category and supplier maintenance.

Reference rows are only removable while no asset points at them. Every
successful write is recorded in the system log.
"""

import logging
import re

from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import DatabaseError, IntegrityError
from django.db import transaction as db_transaction
from django.db.models import ProtectedError

from ..exceptions import (
    ConflictError,
    InUseError,
    NotFoundError,
    PersistenceError,
)
from ..models import Category, Supplier
from .audit import describe_changes, record_system_event

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    "name": "Name",
    "description": lambda old, new: "Description changed.",
}

SUPPLIER_LABELS = {
    "name": "Name",
    "contact_person": "Contact",
    "phone": "Phone",
    "email": "Email",
}

_PHONE_SEPARATORS_RE = re.compile(r"[\s\-()]+")
# Mobile (09/08 + 9 digits), Manila landline (02 + 8), provincial (9 digits)
_PHONE_RE = re.compile(r"^(?:0[89]\d{9}|02\d{8}|[1-9]\d{8})$")


def normalize_phone(phone: str) -> str:
    """Strip formatting from a PH phone number and validate it.

    Returns the bare digits, or "" for an empty value.
    """
    phone = _PHONE_SEPARATORS_RE.sub("", phone or "")
    if not phone:
        return ""
    if not _PHONE_RE.match(phone):
        raise ValidationError(
            "Invalid PH phone number. Please use a valid 11-digit mobile "
            "(09..), 10-digit Manila (02..), or 9-digit provincial "
            "(32.. / 82..) format."
        )
    return phone


def _get(model, pk, kind: str):
    try:
        return model.objects.get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"{kind} not found.")


def _clean(fields: dict, labels: dict, prior=None) -> dict:
    values = {
        field: getattr(prior, field) if prior is not None else ""
        for field in labels
    }
    for field in labels:
        if field in fields:
            values[field] = str(fields[field] or "").strip()
    if not values["name"]:
        raise ValidationError("Name is required.")
    return values


def _save(instance, kind: str):
    try:
        with db_transaction.atomic():
            instance.save()
    except IntegrityError as exc:
        raise ConflictError(
            f"A {kind.lower()} with this name already exists."
        ) from exc
    except DatabaseError as exc:
        logger.exception("Saving %s %r failed", kind.lower(), instance.name)
        raise PersistenceError(
            f"The {kind.lower()} could not be saved."
        ) from exc


def _delete(instance, kind: str, actor, ip_address):
    if instance.assets.exists():
        raise InUseError(
            f"Cannot delete {kind.lower()}. It is linked to one or more "
            f"computers."
        )
    pk, name = instance.pk, instance.name
    try:
        with db_transaction.atomic():
            instance.delete()
    except ProtectedError as exc:
        # An asset started referencing the row after the check above
        raise InUseError(
            f"Cannot delete {kind.lower()}. It is linked to one or more "
            f"computers."
        ) from exc
    except DatabaseError as exc:
        logger.exception("Deleting %s %r failed", kind.lower(), name)
        raise PersistenceError(
            f"The {kind.lower()} could not be deleted."
        ) from exc

    record_system_event(
        actor, kind, f"{kind} deleted (ID: {pk}, Name: {name}).", ip_address
    )
    logger.info("%s %r deleted by %s", kind, name, actor)


def _create(model, kind: str, values: dict, actor, ip_address):
    instance = model(**values)
    _save(instance, kind)
    record_system_event(
        actor,
        kind,
        f"{kind} created (ID: {instance.pk}, Name: {instance.name}).",
        ip_address,
    )
    logger.info("%s %r created by %s", kind, instance.name, actor)
    return instance


def _update(instance, kind: str, values: dict, labels, actor, ip_address):
    before = {field: getattr(instance, field) for field in labels}
    for field, value in values.items():
        setattr(instance, field, value)
    _save(instance, kind)

    lines = [f"{kind} (ID: {instance.pk}) updated."]
    lines += describe_changes(before, values, labels)
    record_system_event(actor, kind, "\n".join(lines), ip_address)
    return instance


# Categories


def create_category(fields: dict, actor, ip_address=None) -> Category:
    values = _clean(fields, CATEGORY_LABELS)
    return _create(Category, "Category", values, actor, ip_address)


def update_category(
    category_id, fields: dict, actor, ip_address=None
) -> Category:
    category = _get(Category, category_id, "Category")
    values = _clean(fields, CATEGORY_LABELS, prior=category)
    return _update(
        category, "Category", values, CATEGORY_LABELS, actor, ip_address
    )


def delete_category(category_id, actor, ip_address=None) -> None:
    """Delete a category that no asset uses; raises InUseError otherwise."""
    category = _get(Category, category_id, "Category")
    _delete(category, "Category", actor, ip_address)


# Suppliers


def _clean_supplier(fields: dict, prior=None) -> dict:
    values = _clean(fields, SUPPLIER_LABELS, prior=prior)
    values["phone"] = normalize_phone(values["phone"])
    if values["email"]:
        try:
            validate_email(values["email"])
        except ValidationError:
            raise ValidationError("Invalid email address format.")
    return values


def create_supplier(fields: dict, actor, ip_address=None) -> Supplier:
    values = _clean_supplier(fields)
    return _create(Supplier, "Supplier", values, actor, ip_address)


def update_supplier(
    supplier_id, fields: dict, actor, ip_address=None
) -> Supplier:
    supplier = _get(Supplier, supplier_id, "Supplier")
    values = _clean_supplier(fields, prior=supplier)
    return _update(
        supplier, "Supplier", values, SUPPLIER_LABELS, actor, ip_address
    )


def delete_supplier(supplier_id, actor, ip_address=None) -> None:
    """Delete a supplier that no asset uses; raises InUseError otherwise."""
    supplier = _get(Supplier, supplier_id, "Supplier")
    _delete(supplier, "Supplier", actor, ip_address)
