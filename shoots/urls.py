from django.urls import re_path
from rest_framework.routers import DefaultRouter

from shoots.views import IssueViewSet, ShootViewSet

router = DefaultRouter()
router.trailing_slash = "/?"
router.include_root_view = False
router.register(r"shoots", ShootViewSet, basename="shoot")

UUID = r"[0-9a-fA-F-]{36}"

issue_list = IssueViewSet.as_view({"get": "list", "post": "create"})
issue_detail = IssueViewSet.as_view({"get": "retrieve", "patch": "partial_update"})
issue_assign = IssueViewSet.as_view({"post": "assign"})

urlpatterns = router.urls + [
    re_path(rf"^shoots/(?P<shoot_pk>{UUID})/issues/?$", issue_list, name="shoot-issue-list"),
    re_path(rf"^shoots/(?P<shoot_pk>{UUID})/issues/(?P<pk>{UUID})/?$", issue_detail, name="shoot-issue-detail"),
    re_path(rf"^shoots/(?P<shoot_pk>{UUID})/issues/(?P<pk>{UUID})/assign/?$", issue_assign, name="shoot-issue-assign"),
]
