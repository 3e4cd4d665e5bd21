from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.test import TestCase
from rest_framework.test import APIClient

from billing.models import ShootPayment
from billing.services import PaymentRejected, record_payment
from core.models import AuditLog
from shoots.models import Issue, Shoot


class BillingTestCase(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        User = get_user_model()
        self.superadmin = User.objects.create_user(username="bill-super", password="pass1234", role="superadmin")
        self.admin = User.objects.create_user(username="bill-admin", password="pass1234", role="admin")
        self.client_user = User.objects.create_user(username="bill-client", password="pass1234", role="client")
        self.shoot = self.make_shoot("10 Quote Ave", Decimal("200.00"), Decimal("10.00"))

    def make_shoot(self, address, base_quote, tax_rate=Decimal("0.00"), **fields):
        shoot = Shoot(address=address, base_quote=base_quote, tax_rate=tax_rate, client=self.client_user, **fields)
        shoot.recalculate_totals()
        shoot.save()
        return shoot

    def mark_paid_url(self, shoot=None):
        return f"/api/shoots/{(shoot or self.shoot).id}/mark-paid"


class MarkPaidTests(BillingTestCase):
    def test_superadmin_settles_the_balance(self):
        self.client.force_authenticate(user=self.superadmin)

        response = self.client.post(self.mark_paid_url(), {}, format="json")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertTrue(payload["is_paid"])
        self.assertEqual(payload["total_paid"], "220.00")
        self.assertEqual(payload["balance_due"], "0.00")
        self.assertEqual(payload["payment"]["payment_type"], "manual")
        self.assertEqual(payload["payment"]["amount"], "220.00")
        self.assertTrue(AuditLog.objects.filter(action="payment.record", entity_id=self.shoot.id).exists())

    def test_admin_is_refused(self):
        self.client.force_authenticate(user=self.admin)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.post(self.mark_paid_url(), {}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertFalse(ShootPayment.objects.exists())

    def test_already_paid_is_a_conflict(self):
        self.client.force_authenticate(user=self.superadmin)
        self.client.post(self.mark_paid_url(), {}, format="json")

        response = self.client.post(self.mark_paid_url(), {}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "already_paid")
        self.assertEqual(ShootPayment.objects.count(), 1)

    def test_partial_payment_then_overpayment(self):
        self.client.force_authenticate(user=self.superadmin)

        partial = self.client.post(self.mark_paid_url(), {"amount": "100.00", "paymentType": "cash"}, format="json")
        over = self.client.post(self.mark_paid_url(), {"amount": "200.00"}, format="json")

        self.assertEqual(partial.status_code, 201)
        self.assertFalse(partial.json()["is_paid"])
        self.assertEqual(partial.json()["balance_due"], "120.00")
        self.assertEqual(over.status_code, 400)
        self.assertIn("amount", over.json()["errors"])
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.total_paid, Decimal("100.00"))

    def test_zero_quote_shoot_has_nothing_to_pay(self):
        free_shoot = self.make_shoot("0 Free St", Decimal("0.00"))
        self.client.force_authenticate(user=self.superadmin)

        response = self.client.post(self.mark_paid_url(free_shoot), {}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(free_shoot.is_paid)

    def test_service_raises_domain_error_when_paid(self):
        record_payment(self.shoot, payment_type="manual", actor=self.superadmin)

        with self.assertRaises(PaymentRejected) as ctx:
            record_payment(self.shoot, payment_type="manual", actor=self.superadmin)

        self.assertEqual(ctx.exception.reason, "already_paid")

    def test_payment_appears_in_shoot_activity(self):
        self.client.force_authenticate(user=self.superadmin)
        self.client.post(self.mark_paid_url(), {}, format="json")

        response = self.client.get(f"/api/shoots/{self.shoot.id}/activity-log")

        self.assertEqual([row["type"] for row in response.json()["results"]], ["payment"])


class PaymentApiTests(BillingTestCase):
    def test_admin_records_card_payment(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/payments/",
            {"shootId": str(self.shoot.id), "amount": "50.00", "paymentType": "card", "reference": "txn-1"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["shoot_balance_due"], "170.00")
        self.assertEqual(response.json()["recorded_by_username"], "bill-admin")

    def test_manual_type_is_reserved_for_mark_paid(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/payments/",
            {"shoot_id": str(self.shoot.id), "amount": "50.00", "payment_type": "manual"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("payment_type", response.json()["errors"])

    def test_list_filters_by_shoot(self):
        other = self.make_shoot("11 Other Rd", Decimal("80.00"))
        record_payment(self.shoot, payment_type="cash", amount=Decimal("20.00"), actor=self.admin)
        record_payment(other, payment_type="cash", amount=Decimal("30.00"), actor=self.admin)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/payments/", {"shoot_id": str(other.id)})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["amount"] for row in response.json()["results"]], ["30.00"])

    def test_client_cannot_view_payments(self):
        self.client.force_authenticate(user=self.client_user)

        response = self.client.get("/api/payments/")

        self.assertEqual(response.status_code, 403)


class ReportTests(BillingTestCase):
    def setUp(self):
        super().setUp()
        self.make_shoot("20 Review Way", Decimal("100.00"), status="in_review")
        blocked = self.make_shoot("21 Review Way", Decimal("100.00"), status="in_review")
        Issue.objects.create(shoot=blocked, note="Sky", raised_by=self.client_user)
        self.client.force_authenticate(user=self.admin)

    def test_workflow_summary(self):
        response = self.client.get("/api/reports/workflow-summary")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        counts = {row["status"]: row["count"] for row in payload["status_counts"]}
        self.assertEqual(counts["booked"], 1)
        self.assertEqual(counts["in_review"], 2)
        self.assertEqual(payload["awaiting"]["finalise"], 1)
        self.assertEqual(payload["awaiting"]["issue_resolution"], 1)
        self.assertEqual(payload["open_issue_count"], 1)

    def test_reports_are_cached_per_user(self):
        first = self.client.get("/api/reports/workflow-summary").json()
        self.make_shoot("30 New St", Decimal("10.00"))
        cached = self.client.get("/api/reports/workflow-summary").json()
        self.client.force_authenticate(user=self.superadmin)
        fresh = self.client.get("/api/reports/workflow-summary").json()

        self.assertEqual(first, cached)
        booked = {row["status"]: row["count"] for row in fresh["status_counts"]}["booked"]
        self.assertEqual(booked, 2)

    def test_workflow_summary_csv_export(self):
        response = self.client.get("/api/reports/workflow-summary", {"export": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().splitlines()
        self.assertEqual(lines[0], "status,count")
        self.assertIn("in_review,2", lines)

    def test_revenue_totals_payments(self):
        record_payment(self.shoot, payment_type="cash", amount=Decimal("20.00"), actor=self.admin)
        record_payment(self.shoot, payment_type="card", amount=Decimal("30.00"), actor=self.admin)

        response = self.client.get("/api/reports/revenue")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload["results"]), 1)
        self.assertEqual(payload["results"][0]["payment_count"], 2)
        self.assertEqual(Decimal(str(payload["total"])), Decimal("50.00"))

    def test_revenue_rejects_bad_parameters(self):
        half_range = self.client.get("/api/reports/revenue", {"date_from": "2026-01-01"})
        bad_tz = self.client.get("/api/reports/revenue", {"timezone": "Mars/Olympus"})

        self.assertEqual(half_range.status_code, 400)
        self.assertIn("date_range", half_range.json()["errors"])
        self.assertEqual(bad_tz.status_code, 400)

    def test_outstanding_balances_sorted_by_balance(self):
        record_payment(self.shoot, payment_type="cash", amount=Decimal("200.00"), actor=self.admin)

        response = self.client.get("/api/reports/outstanding-balances")

        self.assertEqual(response.status_code, 200)
        rows = response.json()["results"]
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[-1]["shoot_id"], str(self.shoot.id))
        self.assertEqual(Decimal(str(rows[-1]["balance_due"])), Decimal("20.00"))

    def test_client_cannot_read_reports(self):
        self.client.force_authenticate(user=self.client_user)

        response = self.client.get("/api/reports/revenue")

        self.assertEqual(response.status_code, 403)
