from rest_framework import serializers

from billing.models import ShootPayment
from shoots.models import Shoot


class ShootPaymentSerializer(serializers.ModelSerializer):
    recorded_by_username = serializers.CharField(source="recorded_by.username", read_only=True, default=None)
    shoot_total_quote = serializers.DecimalField(source="shoot.total_quote", max_digits=12, decimal_places=2, read_only=True)
    shoot_total_paid = serializers.DecimalField(source="shoot.total_paid", max_digits=12, decimal_places=2, read_only=True)
    shoot_balance_due = serializers.DecimalField(source="shoot.balance_due", max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = ShootPayment
        fields = [
            "id",
            "shoot",
            "amount",
            "payment_type",
            "reference",
            "recorded_by_username",
            "paid_at",
            "created_at",
            "shoot_total_quote",
            "shoot_total_paid",
            "shoot_balance_due",
        ]
        read_only_fields = ["id", "recorded_by_username", "paid_at", "created_at"]


class PaymentCreateSerializer(serializers.Serializer):
    shoot_id = serializers.PrimaryKeyRelatedField(queryset=Shoot.objects.all())
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_type = serializers.ChoiceField(
        choices=[choice for choice in ShootPayment.PaymentType.choices if choice[0] != ShootPayment.PaymentType.MANUAL]
    )
    reference = serializers.CharField(required=False, allow_blank=True, max_length=255)


class MarkPaidSerializer(serializers.Serializer):
    payment_type = serializers.ChoiceField(choices=ShootPayment.PaymentType.choices, default=ShootPayment.PaymentType.MANUAL)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    reference = serializers.CharField(required=False, allow_blank=True, max_length=255)
