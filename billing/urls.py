from django.urls import re_path
from rest_framework.routers import DefaultRouter

from billing.reports import OutstandingBalancesReportView, RevenueReportView, WorkflowSummaryReportView
from billing.views import MarkPaidView, PaymentViewSet

router = DefaultRouter()
router.trailing_slash = "/?"
router.include_root_view = False
router.register(r"payments", PaymentViewSet, basename="payment")

urlpatterns = router.urls + [
    re_path(r"^shoots/(?P<shoot_id>[0-9a-fA-F-]{36})/mark-paid/?$", MarkPaidView.as_view(), name="shoot-mark-paid"),
    re_path(r"^reports/workflow-summary/?$", WorkflowSummaryReportView.as_view(), name="report-workflow-summary"),
    re_path(r"^reports/revenue/?$", RevenueReportView.as_view(), name="report-revenue"),
    re_path(r"^reports/outstanding-balances/?$", OutstandingBalancesReportView.as_view(), name="report-outstanding-balances"),
]
