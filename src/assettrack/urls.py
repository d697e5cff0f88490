"""URL configuration for AssetTrack.

The asset engine is consumed as a service layer; the only routes served
here are uploaded media in development.
"""

from django.conf import settings
from django.conf.urls.static import static

urlpatterns = []

if settings.DEBUG:
    urlpatterns += static(
        settings.MEDIA_URL, document_root=settings.MEDIA_ROOT
    )
