import uuid

from django.conf import settings
from django.db import models

from common.utils import to_money


class Shoot(models.Model):
    class Status(models.TextChoices):
        BOOKED = "booked", "Booked"
        RAW_UPLOADED = "raw_uploaded", "RAW uploaded"
        EDITING = "editing", "Editing"
        IN_REVIEW = "in_review", "In review"
        READY = "ready", "Ready"
        DELIVERED = "delivered", "Delivered"
        SCHEDULED = "scheduled", "Scheduled"
        COMPLETED = "completed", "Completed"

    class BracketMode(models.IntegerChoices):
        THREE = 3, "3-bracket"
        FIVE = 5, "5-bracket"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    status = models.CharField(max_length=32, choices=Status, default=Status.BOOKED)
    scheduled_date = models.DateField(null=True, blank=True)
    time = models.CharField(max_length=32, blank=True, default="")

    address = models.CharField(max_length=255)
    address2 = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=128, blank=True, default="")
    state = models.CharField(max_length=64, blank=True, default="")
    zip = models.CharField(max_length=16, blank=True, default="")

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="client_shoots",
    )
    client_name = models.CharField(max_length=255, blank=True, default="")
    client_email = models.EmailField(blank=True, default="")
    client_phone = models.CharField(max_length=64, blank=True, default="")
    photographer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="photographer_shoots",
    )
    editor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="editor_shoots",
    )

    services = models.JSONField(default=list, blank=True)

    base_quote = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_quote = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    package_name = models.CharField(max_length=255, blank=True, default="")
    expected_delivered_count = models.PositiveIntegerField(default=0)
    bracket_mode = models.PositiveSmallIntegerField(choices=BracketMode, null=True, blank=True)

    shoot_notes = models.TextField(blank=True, default="")
    photographer_notes = models.TextField(blank=True, default="")
    editing_notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-scheduled_date", "-created_at"]
        indexes = [
            models.Index(fields=["status", "scheduled_date"], name="shoot_status_date_idx"),
            models.Index(fields=["photographer", "status"], name="shoot_photographer_status_idx"),
            models.Index(fields=["editor", "status"], name="shoot_editor_status_idx"),
            models.Index(fields=["client", "created_at"], name="shoot_client_created_idx"),
        ]

    def __str__(self):
        return f"{self.address} ({self.status})"

    @staticmethod
    def quote_totals(base_quote, tax_rate):
        """Return ``(base_quote, tax_amount, total_quote)`` rounded to cents."""
        base_quote = to_money(base_quote)
        tax_amount = to_money(base_quote * to_money(tax_rate) / 100)
        return base_quote, tax_amount, to_money(base_quote + tax_amount)

    def recalculate_totals(self):
        self.base_quote, self.tax_amount, self.total_quote = self.quote_totals(self.base_quote, self.tax_rate)

    @property
    def balance_due(self):
        return max(to_money(self.total_quote) - to_money(self.total_paid), to_money(0))

    @property
    def is_paid(self):
        return to_money(self.total_quote) > 0 and to_money(self.total_paid) >= to_money(self.total_quote)


def media_upload_path(instance, filename):
    return f"shoots/{instance.shoot_id}/{instance.upload_type}/{filename}"


def media_variant_path(instance, filename):
    return f"shoots/{instance.shoot_id}/{instance.upload_type}/variants/{filename}"


class MediaFile(models.Model):
    class UploadType(models.TextChoices):
        RAW = "raw", "RAW"
        EDITED = "edited", "Edited"

    class Stage(models.TextChoices):
        TODO = "todo", "To do"
        COMPLETED = "completed", "Completed"
        VERIFIED = "verified", "Verified"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shoot = models.ForeignKey(Shoot, on_delete=models.CASCADE, related_name="media_files")
    upload_type = models.CharField(max_length=16, choices=UploadType)
    workflow_stage = models.CharField(max_length=16, choices=Stage, default=Stage.TODO)
    is_extra = models.BooleanField(default=False)
    filename = models.CharField(max_length=255)
    file = models.FileField(upload_to=media_upload_path, max_length=500)
    file_type = models.CharField(max_length=128, blank=True, default="")
    file_size = models.PositiveBigIntegerField(default=0)
    thumb = models.ImageField(upload_to=media_variant_path, max_length=500, null=True, blank=True)
    medium = models.ImageField(upload_to=media_variant_path, max_length=500, null=True, blank=True)
    large = models.ImageField(upload_to=media_variant_path, max_length=500, null=True, blank=True)
    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="uploaded_media",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "filename"]
        indexes = [
            models.Index(fields=["shoot", "upload_type"], name="media_shoot_type_idx"),
            models.Index(fields=["shoot", "workflow_stage"], name="media_shoot_stage_idx"),
        ]

    def __str__(self):
        return self.filename


class Issue(models.Model):
    class Status(models.TextChoices):
        OPEN = "open", "Open"
        IN_PROGRESS = "in-progress", "In progress"
        RESOLVED = "resolved", "Resolved"

    class AssigneeRole(models.TextChoices):
        EDITOR = "editor", "Editor"
        PHOTOGRAPHER = "photographer", "Photographer"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shoot = models.ForeignKey(Shoot, on_delete=models.CASCADE, related_name="issues")
    media = models.ForeignKey(MediaFile, on_delete=models.SET_NULL, null=True, blank=True, related_name="issues")
    raised_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="raised_issues",
    )
    raised_by_role = models.CharField(max_length=32, blank=True, default="")
    assigned_to_role = models.CharField(max_length=16, choices=AssigneeRole, null=True, blank=True)
    assigned_to_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_issues",
    )
    status = models.CharField(max_length=16, choices=Status, default=Status.OPEN)
    note = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["shoot", "status"], name="issue_shoot_status_idx"),
            models.Index(fields=["assigned_to_role", "status"], name="issue_assignee_status_idx"),
        ]

    def __str__(self):
        return f"{self.shoot_id}: {self.note[:40]}"
