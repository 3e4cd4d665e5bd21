from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import (
    AuditLogViewSet,
    PasswordResetConfirmView,
    PasswordResetRequestView,
    RegisterView,
    UserDirectoryViewSet,
    healthz,
    readyz,
)

router = DefaultRouter()
router.trailing_slash = "/?"
router.include_root_view = False
router.register(r"users", UserDirectoryViewSet, basename="user-directory")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("register/", RegisterView.as_view(), name="register"),
    path("password-reset/request/", PasswordResetRequestView.as_view(), name="password_reset_request"),
    path("password-reset/confirm/", PasswordResetConfirmView.as_view(), name="password_reset_confirm"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
