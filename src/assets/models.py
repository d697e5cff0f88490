"""Models for the AssetTrack catalog."""

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Category(models.Model):
    """Asset type classification (e.g. Laptop, Desktop)."""

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default="")

    class Meta:
        verbose_name_plural = "categories"
        ordering = ["name"]

    def __str__(self):
        return self.name


class Supplier(models.Model):
    """Vendor an asset was purchased from."""

    name = models.CharField(max_length=150, unique=True)
    contact_person = models.CharField(max_length=150, blank=True, default="")
    phone = models.CharField(max_length=30, blank=True, default="")
    email = models.EmailField(blank=True, default="")

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Asset(models.Model):
    """Individual tracked computer."""

    STATUS_CHOICES = [
        ("in_stock", "In Stock"),
        ("assigned", "Assigned"),
        ("in_repair", "In Repair"),
        ("retired", "Retired"),
    ]

    asset_tag = models.CharField(max_length=50, unique=True)
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        related_name="assets",
        null=True,
        blank=True,
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        related_name="assets",
        null=True,
        blank=True,
    )
    model = models.CharField(max_length=200)
    serial_number = models.CharField(
        max_length=100, null=True, blank=True
    )
    purchase_date = models.DateField(null=True, blank=True)
    warranty_expiry = models.DateField(null=True, blank=True)
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="assigned_assets",
        help_text="Set if and only if status is 'assigned'",
    )
    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default="in_stock"
    )
    image_filename = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Main image name; the thumbnail shares its stem",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["asset_tag"]
        indexes = [
            models.Index(fields=["status"], name="idx_asset_status"),
        ]

    def __str__(self):
        return f"{self.asset_tag} ({self.model})"

    def clean(self):
        super().clean()
        from .services.state import validate_assignment

        validate_assignment(self.status, self.assigned_to_id)

    @property
    def image_url(self):
        from .services.images import image_url

        return image_url(self.image_filename)

    @property
    def thumbnail_url(self):
        from .services.images import image_url

        return image_url(self.image_filename, thumb=True)


class ImmutableLogMixin:
    """Reject updates and deletes on append-only log rows."""

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError(
                "Log entries are immutable and cannot be modified."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(
            "Log entries are immutable and cannot be deleted."
        )


class AssetLogEntry(ImmutableLogMixin, models.Model):
    """Immutable history of everything that happened to one asset.

    ``asset`` is a reference without a database constraint so entries
    outlive the asset they describe.
    """

    ACTION_CHOICES = [
        ("created", "Created"),
        ("updated", "Updated"),
        ("deleted", "Deleted"),
        ("checked_out", "Checked Out"),
        ("checked_in", "Checked In"),
    ]

    asset = models.ForeignKey(
        Asset,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="log_entries",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="asset_log_entries",
        help_text="The user who performed the action",
    )
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    details = models.TextField(blank=True)
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-timestamp", "-pk"]
        verbose_name_plural = "asset log entries"
        indexes = [
            models.Index(
                fields=["asset", "timestamp"],
                name="idx_assetlog_asset_ts",
            ),
        ]

    def __str__(self):
        return f"#{self.asset_id} {self.get_action_display()} by {self.user}"


class SystemLogEntry(ImmutableLogMixin, models.Model):
    """Immutable record of global administrative actions."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="system_log_entries",
    )
    action_type = models.CharField(
        max_length=50, help_text="e.g. Category, Supplier, Maintenance"
    )
    details = models.TextField(blank=True)
    ip_address = models.CharField(max_length=45, default="UNKNOWN")
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-timestamp", "-pk"]
        verbose_name_plural = "system log entries"
        indexes = [
            models.Index(
                fields=["timestamp"], name="idx_systemlog_timestamp"
            ),
        ]

    def __str__(self):
        return f"{self.action_type} by {self.user} at {self.timestamp}"


class MaintenanceTask(models.Model):
    """Scheduled maintenance for one computer.

    Status is derived at read time and never stored.
    """

    computer = models.ForeignKey(
        Asset,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="maintenance_tasks",
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="maintenance_tasks",
    )
    title = models.CharField(max_length=200)
    scheduled_date = models.DateField()
    completed_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["scheduled_date", "pk"]

    def __str__(self):
        return self.title

    @property
    def status(self):
        if self.completed_date:
            return "Completed"
        if self.scheduled_date < timezone.localdate():
            return "Overdue"
        return "Pending"
