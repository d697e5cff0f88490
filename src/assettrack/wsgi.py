"""WSGI config for AssetTrack."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "assettrack.settings")

application = get_wsgi_application()
