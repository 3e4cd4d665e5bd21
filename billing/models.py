import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone

from shoots.models import Shoot


class ShootPayment(models.Model):
    class PaymentType(models.TextChoices):
        MANUAL = "manual", "Manual"
        CASH = "cash", "Cash"
        CARD = "card", "Card"
        BANK_TRANSFER = "bank_transfer", "Bank transfer"
        CHECK = "check", "Check"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shoot = models.ForeignKey(Shoot, on_delete=models.CASCADE, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_type = models.CharField(max_length=32, choices=PaymentType)
    reference = models.CharField(max_length=255, blank=True, default="")
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="recorded_payments",
    )
    paid_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-paid_at"]
        indexes = [
            models.Index(fields=["shoot", "paid_at"], name="payment_shoot_paid_idx"),
            models.Index(fields=["payment_type", "paid_at"], name="payment_type_paid_idx"),
        ]

    def __str__(self):
        return f"{self.shoot_id} {self.amount} ({self.payment_type})"
