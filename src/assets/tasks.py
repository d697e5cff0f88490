"""Celery tasks for the assets app."""

from datetime import timedelta

from celery import shared_task


@shared_task
def purge_orphaned_images(min_age_minutes: int = 60) -> int:
    """Delete stored image files no asset references any more."""
    from .services.images import purge_orphaned_images as purge

    return purge(min_age=timedelta(minutes=min_age_minutes))
