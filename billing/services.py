import logging

from django.db import transaction
from rest_framework.exceptions import ValidationError

from billing.models import ShootPayment
from common.exceptions import DomainError
from common.utils import to_money
from shoots.models import Shoot
from shoots.services import audit

logger = logging.getLogger(__name__)


class PaymentRejected(DomainError):
    """The ledger refused a payment because of the shoot's current balance."""


def record_payment(shoot, *, payment_type, actor, amount=None, reference="", request=None):
    """Add a payment to the shoot's ledger and roll it into ``total_paid``.

    ``amount`` defaults to the outstanding balance. The running total never
    exceeds the quote.
    """
    with transaction.atomic():
        locked = Shoot.objects.select_for_update().get(pk=shoot.pk)
        total_quote = to_money(locked.total_quote)
        total_paid = to_money(locked.total_paid)

        if locked.is_paid:
            raise PaymentRejected(
                "already_paid",
                {"total_quote": str(total_quote), "total_paid": str(total_paid)},
                message="This shoot is already fully paid.",
            )

        amount = to_money(amount if amount is not None else locked.balance_due)
        if amount <= 0:
            raise ValidationError({"amount": ["Payment amount must be greater than zero."]})
        if total_paid + amount > total_quote:
            raise ValidationError({"amount": ["Payment amount cannot be greater than the remaining balance."]})

        payment = ShootPayment.objects.create(
            shoot=locked,
            amount=amount,
            payment_type=payment_type,
            reference=reference or "",
            recorded_by=actor,
        )
        locked.total_paid = total_paid + amount
        locked.save(update_fields=["total_paid", "updated_at"])
        audit(
            request,
            actor,
            action="payment.record",
            entity="shoot",
            entity_id=locked.pk,
            before_snapshot={"total_paid": str(total_paid)},
            after_snapshot={
                "payment_id": str(payment.id),
                "payment_type": payment_type,
                "amount": str(amount),
                "total_paid": str(locked.total_paid),
                "total_quote": str(total_quote),
            },
        )

    logger.info(
        "payment_recorded",
        extra={"shoot_id": str(locked.pk), "user_id": str(actor.pk) if actor else None},
    )
    return payment, locked
