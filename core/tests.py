from django.contrib.auth import get_user_model
from django.contrib.auth.tokens import default_token_generator
from django.test import TestCase, override_settings
from django.core import mail
from django.urls import URLResolver, get_resolver
from rest_framework.test import APIClient
from django.utils.encoding import force_bytes
from django.utils.http import urlsafe_base64_encode
from unittest.mock import patch

from common.permissions import ROLE_CAPABILITY_MATRIX, get_user_role, user_has_capability
from core.models import AuditLog


class RoleResolutionTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()

    def test_superuser_resolves_to_superadmin(self):
        user = self.user_model.objects.create_user(username="root", password="pass1234", is_superuser=True)

        self.assertEqual(get_user_role(user), "superadmin")
        self.assertTrue(user_has_capability(user, "payments.mark_paid"))

    def test_only_superadmin_may_mark_paid(self):
        admin = self.user_model.objects.create_user(username="plain-admin", password="pass1234", role="admin")
        superadmin = self.user_model.objects.create_user(username="super", password="pass1234", role="superadmin")

        self.assertFalse(user_has_capability(admin, "payments.mark_paid"))
        self.assertTrue(user_has_capability(superadmin, "payments.mark_paid"))

    def test_media_upload_is_limited_to_production_roles(self):
        for role, expected in (("photographer", True), ("editor", True), ("client", False), ("admin", False)):
            user = self.user_model.objects.create_user(username=f"upload-{role}", password="pass1234", role=role)
            self.assertEqual(user_has_capability(user, "media.upload"), expected, role)

    def test_every_capability_guards_a_routed_view(self):
        def routed_views(patterns):
            for pattern in patterns:
                if isinstance(pattern, URLResolver):
                    yield from routed_views(pattern.url_patterns)
                else:
                    view_class = getattr(pattern.callback, "cls", None)
                    if view_class is not None:
                        yield view_class

        used = set()
        for view_class in routed_views(get_resolver().url_patterns):
            used.update(getattr(view_class, "permission_action_map", {}).values())

        self.assertEqual(set(ROLE_CAPABILITY_MATRIX) - used, set())
        self.assertEqual(used - set(ROLE_CAPABILITY_MATRIX), set())


class UserDirectoryTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(username="dir-admin", password="pass1234", role="admin")
        self.photographer = self.user_model.objects.create_user(
            username="dir-photo",
            password="pass1234",
            role="photographer",
            first_name="Pat",
            last_name="Lens",
        )
        self.inactive_photographer = self.user_model.objects.create_user(
            username="dir-photo-old",
            password="pass1234",
            role="photographer",
            is_active=False,
        )
        self.editor = self.user_model.objects.create_user(username="dir-editor", password="pass1234", role="editor")
        self.client_user = self.user_model.objects.create_user(username="dir-client", password="pass1234", role="client")

    def test_admin_lists_active_photographers(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/users/photographers")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([item["id"] for item in payload], [str(self.photographer.id)])
        self.assertEqual(payload[0]["name"], "Pat Lens")
        self.assertEqual(payload[0]["role"], "photographer")

    def test_admin_lists_editors(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/users/editors")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["id"] for item in response.json()], [str(self.editor.id)])

    def test_client_cannot_read_directory_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.client_user)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/users/editors")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(
            username="audit-admin",
            password="pass1234",
            role="admin",
        )

    def test_registration_writes_audit_log(self):
        res = self.client.post(
            "/api/register/",
            {"username": "audited", "email": "audited@example.com", "password": "pass12345"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(res.status_code, 201)
        self.assertEqual(res["X-Request-ID"], "req-123")
        self.assertTrue(AuditLog.objects.filter(action="user.create", entity="user", request_id="req-123").exists())

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_log_export_is_csv(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="shoot.finalise", entity="shoot", actor=self.admin)

        response = self.client.get("/api/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        body = response.content.decode()
        self.assertIn("shoot.finalise", body)
        self.assertIn("audit-admin", body)


class PasswordResetTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user = self.user_model.objects.create_user(
            username="reset-user",
            email="reset@example.com",
            password="old-pass-123",
        )

    def test_password_reset_request_returns_generic_message_for_known_and_unknown_email(self):
        known_response = self.client.post(
            "/api/password-reset/request/",
            {"email": self.user.email},
            format="json",
        )
        unknown_response = self.client.post(
            "/api/password-reset/request/",
            {"email": "missing@example.com"},
            format="json",
        )

        self.assertEqual(known_response.status_code, 200)
        self.assertEqual(unknown_response.status_code, 200)
        self.assertEqual(known_response.json()["detail"], unknown_response.json()["detail"])

    @override_settings(
        PASSWORD_RESET_FRONTEND_URL="https://app.example.com/reset-password",
        PASSWORD_RESET_FROM_EMAIL="support@example.com",
    )
    def test_password_reset_request_sends_clickable_link(self):
        response = self.client.post(
            "/api/password-reset/request/",
            {"email": self.user.email},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.from_email, "support@example.com")

        uid = urlsafe_base64_encode(force_bytes(self.user.pk))
        self.assertIn(f"https://app.example.com/reset-password/{uid}/", message.body)

    def test_password_reset_confirm_updates_password_with_uid_token(self):
        token = default_token_generator.make_token(self.user)
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))

        response = self.client.post(
            "/api/password-reset/confirm/",
            {
                "uid": uid,
                "token": token,
                "new_password": "new-safe-pass-123",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("new-safe-pass-123"))
        self.assertTrue(AuditLog.objects.filter(action="user.password_reset", entity_id=self.user.id).exists())

    def test_password_reset_request_logs_mail_send_failures(self):
        with patch("core.views.send_mail", side_effect=RuntimeError("mail down")):
            with self.assertLogs("core.views", level="ERROR") as logs:
                response = self.client.post(
                    "/api/password-reset/request/",
                    {"email": self.user.email},
                    format="json",
                )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(any("password_reset_email_send_failed" in entry for entry in logs.output))

    def test_password_reset_confirm_rejects_invalid_token(self):
        uid = urlsafe_base64_encode(force_bytes(self.user.pk))
        response = self.client.post(
            "/api/password-reset/confirm/",
            {
                "uid": uid,
                "token": "invalid-token",
                "new_password": "new-safe-pass-123",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password("old-pass-123"))

    def test_password_reset_confirm_rejects_garbage_uid(self):
        token = default_token_generator.make_token(self.user)
        response = self.client.post(
            "/api/password-reset/confirm/",
            {
                "uid": urlsafe_base64_encode(b"not-a-uuid"),
                "token": token,
                "new_password": "new-safe-pass-123",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)


class RegistrationAndTokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.user_model.objects.create_user(
            username="existing-user",
            email="existing@example.com",
            password="pass1234",
        )

    def test_registration_rejects_case_insensitive_duplicate_email(self):
        response = self.client.post(
            "/api/register/",
            {
                "username": "new-user",
                "email": "EXISTING@example.com",
                "password": "pass12345",
                "first_name": "New",
                "last_name": "User",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"], {"email": ["A user with this email already exists."]})

    def test_registration_always_creates_client_accounts(self):
        response = self.client.post(
            "/api/register/",
            {"username": "wannabe", "email": "wannabe@example.com", "password": "pass12345", "role": "superadmin"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(self.user_model.objects.get(username="wannabe").role, "client")

    def test_token_accepts_email_and_reports_role(self):
        response = self.client.post(
            "/api/token/",
            {"username": "EXISTING@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertIn("access", payload)
        self.assertEqual(payload["user"]["username"], "existing-user")
        self.assertEqual(payload["user"]["role"], "client")


class HealthCheckTests(TestCase):
    def test_healthz_and_readyz(self):
        client = APIClient()

        health = client.get("/api/healthz/", HTTP_X_REQUEST_ID="health-1")
        ready = client.get("/api/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json(), {"status": "ok", "request_id": "health-1"})
        self.assertEqual(ready.json()["status"], "ready")
