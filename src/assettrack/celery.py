"""Celery configuration for AssetTrack."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "assettrack.settings")

app = Celery("assettrack")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
