"""Maintenance schedule for assets."""

import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.db import transaction as db_transaction
from django.utils import timezone

from ..exceptions import NotFoundError, PersistenceError
from ..models import Asset, MaintenanceTask
from .audit import record_system_event
from .lifecycle import parse_date_field

logger = logging.getLogger(__name__)


def _get_task(task_id) -> MaintenanceTask:
    try:
        return MaintenanceTask.objects.get(pk=task_id)
    except (MaintenanceTask.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Maintenance task not found.")


def schedule_task(
    computer_id, title, scheduled_date, actor, notes="", ip_address=None
) -> MaintenanceTask:
    """Schedule a maintenance task for an existing asset."""
    title = str(title or "").strip()
    if not title:
        raise ValidationError("Title is required.")
    scheduled_date = parse_date_field(scheduled_date, "Scheduled date")
    if scheduled_date is None:
        raise ValidationError("Scheduled date is required.")
    try:
        exists = Asset.objects.filter(pk=computer_id).exists()
    except (ValueError, TypeError):
        exists = False
    if not exists:
        raise NotFoundError("Asset not found.")

    try:
        with db_transaction.atomic():
            task = MaintenanceTask.objects.create(
                computer_id=computer_id,
                created_by=actor,
                title=title,
                scheduled_date=scheduled_date,
                notes=notes or "",
            )
    except DatabaseError as exc:
        logger.exception("Scheduling maintenance for %s failed", computer_id)
        raise PersistenceError("The task could not be scheduled.") from exc

    record_system_event(
        actor,
        "Maintenance",
        f"Scheduled maintenance '{title}' for computer ID {computer_id}.",
        ip_address,
    )
    return task


def complete_task(task_id, actor, ip_address=None) -> MaintenanceTask:
    """Mark a task done today. Completing it again keeps the first date."""
    task = _get_task(task_id)
    if task.completed_date is None:
        task.completed_date = timezone.localdate()
        try:
            with db_transaction.atomic():
                task.save(update_fields=["completed_date"])
        except DatabaseError as exc:
            logger.exception("Completing task %s failed", task.pk)
            raise PersistenceError("The task could not be updated.") from exc

    record_system_event(
        actor,
        "Maintenance",
        f"Marked task ID {task.pk} as complete.",
        ip_address,
    )
    return task


def delete_task(task_id, actor, ip_address=None) -> None:
    task = _get_task(task_id)
    pk = task.pk
    try:
        with db_transaction.atomic():
            task.delete()
    except DatabaseError as exc:
        logger.exception("Deleting task %s failed", pk)
        raise PersistenceError("The task could not be deleted.") from exc

    record_system_event(
        actor, "Maintenance", f"Deleted task ID {pk}.", ip_address
    )


def pending_tasks():
    """Uncompleted tasks, soonest first."""
    return MaintenanceTask.objects.filter(
        completed_date__isnull=True
    ).order_by("scheduled_date", "pk")
