"""Custom user model for AssetTrack."""

from django.contrib.auth.models import AbstractUser
from django.db import models


class CustomUser(AbstractUser):
    """Extended user with display name and an application role."""

    ROLE_CHOICES = [
        ("admin", "Admin"),
        ("user", "User"),
    ]

    display_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Human-readable name displayed in assignment records",
    )
    role = models.CharField(
        max_length=20, choices=ROLE_CHOICES, default="user"
    )

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["display_name", "username"]

    def get_display_name(self):
        """Return display_name if set, otherwise full name or username."""
        if self.display_name:
            return self.display_name
        full = self.get_full_name()
        return full if full else self.username

    @property
    def audit_label(self):
        """Label used in audit details, e.g. ``Jane Doe (User #jdoe)``."""
        return f"{self.get_display_name()} (User #{self.username})"

    @property
    def is_admin(self):
        return self.role == "admin"

    def __str__(self):
        return self.get_display_name()
