import csv
from datetime import datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.core.cache import cache
from django.db.models import Count, F, Q, Sum
from django.db.models.functions import Coalesce, TruncDate
from django.http import HttpResponse
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import ShootPayment
from common.permissions import RoleCapabilityPermission
from shoots import workflow
from shoots.models import Issue, Shoot


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}
    cache_timeout = 60

    def _parse_timezone(self, tz_name):
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({"timezone": "Invalid IANA timezone."})

    def _date_range(self, request, tz):
        date_from = parse_date(request.query_params.get("date_from", ""))
        date_to = parse_date(request.query_params.get("date_to", ""))
        if not date_from and not date_to:
            return None, None

        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})

        start = datetime.combine(date_from, time.min).replace(tzinfo=tz)
        end = datetime.combine(date_to, time.max).replace(tzinfo=tz)
        return start, end

    def _wants_csv(self, request):
        return request.query_params.get("export") == "csv"

    def _csv_response(self, filename, rows):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.user.pk}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload


class WorkflowSummaryReportView(BaseReportView):
    """Shoots per status plus the queues waiting on each admin action."""

    def get(self, request):
        def run():
            counts = dict(Shoot.objects.order_by().values_list("status").annotate(total=Count("id")))
            blocked = (
                Shoot.objects.filter(status=workflow.IN_REVIEW)
                .annotate(
                    blocking=Count("issues", filter=Q(issues__status__in=workflow.BLOCKING_ISSUE_STATUSES))
                )
                .filter(blocking__gt=0)
                .count()
            )
            return {
                "status_counts": [{"status": value, "count": counts.get(value, 0)} for value in workflow.STATUSES],
                "open_issue_count": Issue.objects.filter(status__in=workflow.BLOCKING_ISSUE_STATUSES).count(),
                "awaiting": {
                    "raw_upload": counts.get(workflow.BOOKED, 0) + counts.get(workflow.SCHEDULED, 0),
                    "send_to_editing": counts.get(workflow.RAW_UPLOADED, 0),
                    "edits": counts.get(workflow.EDITING, 0),
                    "finalise": counts.get(workflow.IN_REVIEW, 0) - blocked,
                    "issue_resolution": blocked,
                },
            }

        payload = self._cached(request, "workflow-summary", run)
        if self._wants_csv(request):
            return self._csv_response("workflow_summary.csv", payload["status_counts"])
        return Response(payload)


class RevenueReportView(BaseReportView):
    def get(self, request):
        tz_name = request.query_params.get("timezone") or "UTC"
        tz = self._parse_timezone(tz_name)
        start, end = self._date_range(request, tz)

        def run():
            qs = ShootPayment.objects.all()
            if start and end:
                qs = qs.filter(paid_at__gte=start, paid_at__lte=end)
            rows = list(
                qs.annotate(day=TruncDate("paid_at", tzinfo=tz))
                .values("day")
                .annotate(
                    payment_count=Count("id"),
                    amount=Coalesce(Sum("amount"), Decimal("0.00")),
                )
                .order_by("day")
            )
            return [{**row, "day": row["day"].isoformat()} for row in rows]

        rows = self._cached(request, "revenue", run)
        if self._wants_csv(request):
            return self._csv_response("revenue.csv", rows)
        total = sum((Decimal(row["amount"]) for row in rows), Decimal("0.00"))
        return Response({"timezone": tz_name, "total": total, "results": rows})


class OutstandingBalancesReportView(BaseReportView):
    def get(self, request):
        tz_name = request.query_params.get("timezone") or "UTC"
        tz = self._parse_timezone(tz_name)

        def run():
            rows = []
            now = datetime.now(tz=tz)
            qs = Shoot.objects.filter(total_paid__lt=F("total_quote")).order_by("created_at")
            for shoot in qs:
                rows.append(
                    {
                        "shoot_id": str(shoot.id),
                        "address": shoot.address,
                        "client_name": shoot.client_name,
                        "status": shoot.status,
                        "scheduled_date": shoot.scheduled_date.isoformat() if shoot.scheduled_date else None,
                        "total_quote": shoot.total_quote,
                        "total_paid": shoot.total_paid,
                        "balance_due": shoot.balance_due,
                        "age_days": max((now - shoot.created_at.astimezone(tz)).days, 0),
                    }
                )
            rows.sort(key=lambda row: row["balance_due"], reverse=True)
            return rows

        rows = self._cached(request, "outstanding-balances", run)
        if self._wants_csv(request):
            return self._csv_response("outstanding_balances.csv", rows)
        return Response({"timezone": tz_name, "results": rows})
