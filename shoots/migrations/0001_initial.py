import uuid

import django.db.models.deletion
import shoots.models
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Shoot",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("booked", "Booked"),
                            ("raw_uploaded", "RAW uploaded"),
                            ("editing", "Editing"),
                            ("in_review", "In review"),
                            ("ready", "Ready"),
                            ("delivered", "Delivered"),
                            ("scheduled", "Scheduled"),
                            ("completed", "Completed"),
                        ],
                        default="booked",
                        max_length=32,
                    ),
                ),
                ("scheduled_date", models.DateField(blank=True, null=True)),
                ("time", models.CharField(blank=True, default="", max_length=32)),
                ("address", models.CharField(max_length=255)),
                ("address2", models.CharField(blank=True, default="", max_length=255)),
                ("city", models.CharField(blank=True, default="", max_length=128)),
                ("state", models.CharField(blank=True, default="", max_length=64)),
                ("zip", models.CharField(blank=True, default="", max_length=16)),
                ("client_name", models.CharField(blank=True, default="", max_length=255)),
                ("client_email", models.EmailField(blank=True, default="", max_length=254)),
                ("client_phone", models.CharField(blank=True, default="", max_length=64)),
                ("services", models.JSONField(blank=True, default=list)),
                ("base_quote", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("tax_rate", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("tax_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_quote", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("package_name", models.CharField(blank=True, default="", max_length=255)),
                ("expected_delivered_count", models.PositiveIntegerField(default=0)),
                (
                    "bracket_mode",
                    models.PositiveSmallIntegerField(blank=True, choices=[(3, "3-bracket"), (5, "5-bracket")], null=True),
                ),
                ("shoot_notes", models.TextField(blank=True, default="")),
                ("photographer_notes", models.TextField(blank=True, default="")),
                ("editing_notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "client",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="client_shoots",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "editor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="editor_shoots",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "photographer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="photographer_shoots",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-scheduled_date", "-created_at"],
                "indexes": [
                    models.Index(fields=["status", "scheduled_date"], name="shoot_status_date_idx"),
                    models.Index(fields=["photographer", "status"], name="shoot_photographer_status_idx"),
                    models.Index(fields=["editor", "status"], name="shoot_editor_status_idx"),
                    models.Index(fields=["client", "created_at"], name="shoot_client_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="MediaFile",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("upload_type", models.CharField(choices=[("raw", "RAW"), ("edited", "Edited")], max_length=16)),
                (
                    "workflow_stage",
                    models.CharField(
                        choices=[("todo", "To do"), ("completed", "Completed"), ("verified", "Verified")],
                        default="todo",
                        max_length=16,
                    ),
                ),
                ("is_extra", models.BooleanField(default=False)),
                ("filename", models.CharField(max_length=255)),
                ("file", models.FileField(max_length=500, upload_to=shoots.models.media_upload_path)),
                ("file_type", models.CharField(blank=True, default="", max_length=128)),
                ("file_size", models.PositiveBigIntegerField(default=0)),
                ("thumb", models.ImageField(blank=True, max_length=500, null=True, upload_to=shoots.models.media_variant_path)),
                ("medium", models.ImageField(blank=True, max_length=500, null=True, upload_to=shoots.models.media_variant_path)),
                ("large", models.ImageField(blank=True, max_length=500, null=True, upload_to=shoots.models.media_variant_path)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "shoot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="media_files",
                        to="shoots.shoot",
                    ),
                ),
                (
                    "uploaded_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="uploaded_media",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "filename"],
                "indexes": [
                    models.Index(fields=["shoot", "upload_type"], name="media_shoot_type_idx"),
                    models.Index(fields=["shoot", "workflow_stage"], name="media_shoot_stage_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Issue",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("raised_by_role", models.CharField(blank=True, default="", max_length=32)),
                (
                    "assigned_to_role",
                    models.CharField(
                        blank=True,
                        choices=[("editor", "Editor"), ("photographer", "Photographer")],
                        max_length=16,
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("in-progress", "In progress"), ("resolved", "Resolved")],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("note", models.TextField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "assigned_to_user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="assigned_issues",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "media",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="issues",
                        to="shoots.mediafile",
                    ),
                ),
                (
                    "raised_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="raised_issues",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "shoot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="issues",
                        to="shoots.shoot",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["shoot", "status"], name="issue_shoot_status_idx"),
                    models.Index(fields=["assigned_to_role", "status"], name="issue_assignee_status_idx"),
                ],
            },
        ),
    ]
