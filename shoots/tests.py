import json
import os
import shutil
import tempfile
import zipfile
from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, TestCase, override_settings
from PIL import Image
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog
from shoots import issues as issue_rules
from shoots import services, uploads, workflow
from shoots.models import Issue, MediaFile, Shoot
from shoots.normalization import normalize_payload
from shoots.views import IssueViewSet
from shoots.workflow import TransitionRejected

MEDIA_ROOT = tempfile.mkdtemp(prefix="shootflow-tests-")
FULL_CHECKLIST = json.dumps({item: True for item in uploads.EDIT_CHECKLIST_ITEMS})


def tearDownModule():
    shutil.rmtree(MEDIA_ROOT, ignore_errors=True)


def png_bytes(size=(2400, 1600)):
    buffer = BytesIO()
    Image.new("RGB", size, "white").save(buffer, format="PNG")
    return buffer.getvalue()


class WorkflowEngineTests(SimpleTestCase):
    def test_legal_edges_follow_the_lifecycle(self):
        self.assertEqual(workflow.check_transition(workflow.UPLOAD_RAW, "booked", role="photographer"), "raw_uploaded")
        self.assertEqual(workflow.check_transition(workflow.UPLOAD_RAW, "scheduled", role="photographer"), "raw_uploaded")
        self.assertEqual(workflow.check_transition(workflow.SEND_TO_EDITING, "raw_uploaded", role="admin"), "editing")
        self.assertEqual(workflow.check_transition(workflow.SUBMIT_EDITS, "editing", role="editor"), "in_review")
        self.assertEqual(workflow.check_transition(workflow.FINALISE, "in_review", role="superadmin"), "delivered")
        for current in ("booked", "raw_uploaded", "editing", "ready", "delivered", "scheduled"):
            self.assertEqual(workflow.check_transition(workflow.MARK_COMPLETE, current, role="admin"), "completed")

    def test_edges_outside_the_table_are_rejected(self):
        cases = [
            (workflow.UPLOAD_RAW, "editing", "photographer"),
            (workflow.SEND_TO_EDITING, "booked", "admin"),
            (workflow.SUBMIT_EDITS, "raw_uploaded", "editor"),
            (workflow.FINALISE, "editing", "admin"),
            (workflow.MARK_COMPLETE, "completed", "admin"),
        ]
        for action, current, role in cases:
            with self.subTest(action=action, current=current):
                with self.assertRaises(TransitionRejected) as ctx:
                    workflow.check_transition(action, current, role=role)
                self.assertEqual(ctx.exception.reason, "invalid_transition")
                self.assertEqual(ctx.exception.status_code, 409)

    def test_role_is_checked_before_source_status(self):
        with self.assertRaises(TransitionRejected) as ctx:
            workflow.check_transition(workflow.FINALISE, "booked", role="client")

        self.assertEqual(ctx.exception.reason, "forbidden")
        self.assertEqual(ctx.exception.status_code, 403)

    def test_open_issues_block_leaving_review(self):
        for action in (workflow.FINALISE, workflow.MARK_COMPLETE):
            with self.assertRaises(TransitionRejected) as ctx:
                workflow.check_transition(action, "in_review", role="admin", open_issue_count=2)
            self.assertEqual(ctx.exception.reason, "open_issues")
            self.assertEqual(ctx.exception.details["open_issue_count"], 2)

    def test_resolve_action_maps_status_pairs(self):
        self.assertEqual(workflow.resolve_action("raw_uploaded", "editing"), workflow.SEND_TO_EDITING)
        self.assertEqual(workflow.resolve_action("in_review", "delivered"), workflow.FINALISE)
        self.assertEqual(workflow.resolve_action("booked", "completed"), workflow.MARK_COMPLETE)
        self.assertEqual(workflow.resolve_action("booked", "raw_uploaded"), workflow.UPLOAD_RAW)
        with self.assertRaises(TransitionRejected):
            workflow.resolve_action("booked", "delivered")

    def test_available_actions_respect_role_and_guard(self):
        self.assertEqual(workflow.available_actions("in_review", "admin"), [workflow.FINALISE, workflow.MARK_COMPLETE])
        self.assertEqual(workflow.available_actions("in_review", "admin", open_issue_count=1), [])
        self.assertEqual(workflow.available_actions("booked", "photographer"), [workflow.UPLOAD_RAW])
        self.assertEqual(workflow.available_actions("booked", "client"), [])


class RawUploadValidationTests(SimpleTestCase):
    def test_package_of_ten_at_three_brackets_with_24_files(self):
        summary = uploads.evaluate_raw_upload(24, 10, uploads.bracket_multiplier("3-bracket"))

        self.assertEqual(summary.expected_raw_count, 30)
        self.assertEqual(summary.equivalent_final_photos, 8)
        self.assertTrue(summary.is_short)
        self.assertEqual(summary.shortfall, 6)
        self.assertEqual(summary.warning, "6 photos are missing")

    def test_five_bracket_multiplier_and_singular_warning(self):
        summary = uploads.evaluate_raw_upload(49, 10, uploads.bracket_multiplier("5-bracket"))

        self.assertEqual(summary.expected_raw_count, 50)
        self.assertEqual(summary.equivalent_final_photos, 9)
        self.assertEqual(summary.warning, "1 photo is missing")

    def test_no_warning_for_empty_or_complete_uploads(self):
        self.assertIsNone(uploads.evaluate_raw_upload(0, 10, 3).warning)
        complete = uploads.evaluate_raw_upload(31, 10, 3)
        self.assertFalse(complete.is_short)
        self.assertEqual(complete.shortfall, 0)
        self.assertIsNone(complete.warning)

    def test_unknown_bracket_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            uploads.bracket_multiplier("7-bracket")

    def test_extra_indices_parsing(self):
        self.assertEqual(uploads.parse_extra_indices("[0, 2]", 3), {0, 2})
        self.assertEqual(uploads.parse_extra_indices("", 3), set())
        for raw in ("[3]", "{}", "[true]", "not json"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError):
                    uploads.parse_extra_indices(raw, 3)

    def test_checklist_requires_every_item(self):
        checklist = {item: True for item in uploads.EDIT_CHECKLIST_ITEMS}
        uploads.validate_edit_checklist(checklist)

        checklist["sky_replacement"] = False
        with self.assertRaises(ValidationError) as ctx:
            uploads.validate_edit_checklist(checklist)
        self.assertIn("sky_replacement", str(ctx.exception.detail))


class IssueRuleTests(SimpleTestCase):
    def _issue(self, **kwargs):
        return Issue(note="n", **kwargs)

    def test_severity_is_derived_from_status(self):
        self.assertEqual(issue_rules.severity_for_status("open"), "high")
        self.assertEqual(issue_rules.severity_for_status("in-progress"), "medium")
        self.assertEqual(issue_rules.severity_for_status("resolved"), "low")

    def test_visibility_is_role_pure(self):
        issue = self._issue(raised_by_id="u2", assigned_to_role="editor")

        self.assertTrue(issue_rules.issue_visible_to(issue, "admin", "u1"))
        self.assertTrue(issue_rules.issue_visible_to(issue, "superadmin", "u1"))
        self.assertTrue(issue_rules.issue_visible_to(issue, "editor", "u9"))
        self.assertFalse(issue_rules.issue_visible_to(issue, "photographer", "u9"))
        self.assertFalse(issue_rules.issue_visible_to(issue, "client", "u1"))
        self.assertTrue(issue_rules.issue_visible_to(issue, "client", "u2"))
        self.assertFalse(issue_rules.issue_visible_to(issue, "guest", "u2"))

    def test_client_never_sees_unassigned_issue_raised_by_someone_else(self):
        issue = self._issue(raised_by_id="u2", assigned_to_role=None)

        self.assertFalse(issue_rules.issue_visible_to(issue, "client", "u1"))

    def test_status_moves(self):
        self.assertTrue(issue_rules.can_move("open", "resolved", "editor"))
        self.assertTrue(issue_rules.can_move("open", "in-progress", "editor"))
        self.assertFalse(issue_rules.can_move("resolved", "open", "editor"))
        self.assertTrue(issue_rules.can_move("resolved", "open", "admin"))


class NormalizationTests(SimpleTestCase):
    def test_camel_case_and_nested_keys_are_canonical(self):
        payload = normalize_payload(
            {
                "workflowStatus": "editing",
                "editorId": "e-1",
                "package": {"expectedDeliveredCount": 25, "name": "Standard"},
                "location": {"address": "1 Main St", "zip": "12345"},
                "payment": {"baseQuote": "100.00"},
            }
        )

        self.assertEqual(
            payload,
            {
                "status": "editing",
                "editor_id": "e-1",
                "expected_delivered_count": 25,
                "package_name": "Standard",
                "address": "1 Main St",
                "zip": "12345",
                "base_quote": "100.00",
            },
        )

    def test_matching_duplicates_collapse(self):
        self.assertEqual(normalize_payload({"status": "delivered", "workflowStatus": "delivered"}), {"status": "delivered"})

    def test_conflicting_duplicates_are_rejected(self):
        with self.assertRaises(ValidationError):
            normalize_payload({"status": "delivered", "workflowStatus": "editing"})
        with self.assertRaises(ValidationError):
            normalize_payload({"mediaId": "a", "media_id": "b"})


@override_settings(MEDIA_ROOT=MEDIA_ROOT)
class ShootApiTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        User = get_user_model()
        self.admin = User.objects.create_user(username="wf-admin", password="pass1234", role="admin")
        self.superadmin = User.objects.create_user(username="wf-super", password="pass1234", role="superadmin")
        self.photographer = User.objects.create_user(username="wf-photo", password="pass1234", role="photographer")
        self.other_photographer = User.objects.create_user(username="wf-photo-2", password="pass1234", role="photographer")
        self.editor = User.objects.create_user(username="wf-editor", password="pass1234", role="editor")
        self.other_editor = User.objects.create_user(username="wf-editor-2", password="pass1234", role="editor")
        self.client_user = User.objects.create_user(username="wf-client", password="pass1234", role="client")
        self.other_client = User.objects.create_user(username="wf-client-2", password="pass1234", role="client")

        self.shoot = Shoot(
            address="1 Test St",
            client=self.client_user,
            client_name="Test Client",
            photographer=self.photographer,
            expected_delivered_count=10,
            base_quote=Decimal("200.00"),
            tax_rate=Decimal("10.00"),
        )
        self.shoot.recalculate_totals()
        self.shoot.save()

    def url(self, suffix=""):
        return f"/api/shoots/{self.shoot.id}{suffix}"

    def as_user(self, user):
        self.client.force_authenticate(user=user)

    def set_status(self, status_value, **fields):
        Shoot.objects.filter(pk=self.shoot.pk).update(status=status_value, **fields)
        self.shoot.refresh_from_db()

    def raw_files(self, count, prefix="IMG"):
        return [
            SimpleUploadedFile(f"{prefix}_{index:03d}.CR3", b"raw-bytes", content_type="application/octet-stream")
            for index in range(count)
        ]

    def upload(self, user, files, **fields):
        self.as_user(user)
        with self.captureOnCommitCallbacks(execute=True):
            return self.client.post(self.url("/files/upload"), {"files[]": files, **fields}, format="multipart")


class ShootVisibilityAndPaymentTests(ShootApiTestCase):
    def test_client_books_a_shoot_for_themselves(self):
        self.as_user(self.client_user)

        response = self.client.post(
            "/api/shoots/",
            {
                "location": {"address": "9 Elm St", "city": "Springfield"},
                "scheduledDate": "2026-11-02",
                "services": ["HDR Photos", " ", "Drone"],
                "package": {"expectedDeliveredCount": 20},
                "photographer_id": str(self.photographer.id),
                "base_quote": "1.00",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["status"], "booked")
        self.assertEqual(payload["workflow_status"], "booked")
        self.assertEqual(payload["client"]["id"], str(self.client_user.id))
        self.assertIsNone(payload["photographer"])
        self.assertEqual(payload["services"], ["HDR Photos", "Drone"])
        self.assertEqual(payload["expected_delivered_count"], 20)
        self.assertEqual(response["X-Schema-Version"], "1")
        shoot = Shoot.objects.get(pk=payload["id"])
        self.assertEqual(shoot.base_quote, Decimal("0.00"))
        self.assertTrue(AuditLog.objects.filter(action="shoot.create", entity_id=shoot.id).exists())

    def test_shoot_list_is_scoped_by_role(self):
        cases = [
            (self.admin, True),
            (self.photographer, True),
            (self.other_photographer, False),
            (self.client_user, True),
            (self.other_client, False),
            (self.editor, False),
        ]
        for user, visible in cases:
            with self.subTest(user=user.username):
                self.as_user(user)
                response = self.client.get("/api/shoots/")
                self.assertEqual(response.status_code, 200)
                ids = {item["id"] for item in response.json()["results"]}
                self.assertEqual(str(self.shoot.id) in ids, visible)

    def test_other_client_gets_404_for_detail(self):
        self.as_user(self.other_client)

        response = self.client.get(self.url())

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_payment_block_depends_on_role(self):
        self.as_user(self.admin)
        admin_payment = self.client.get(self.url()).json()["payment"]
        self.as_user(self.client_user)
        client_payment = self.client.get(self.url()).json()["payment"]
        self.as_user(self.photographer)
        photographer_payment = self.client.get(self.url()).json()["payment"]

        self.assertEqual(admin_payment["tax_amount"], "20.00")
        self.assertEqual(admin_payment["total_quote"], "220.00")
        self.assertEqual(admin_payment["balance_due"], "220.00")
        self.assertEqual(set(client_payment), {"total_quote", "total_paid", "balance_due"})
        self.assertIsNone(photographer_payment)

    def test_admin_patch_recomputes_totals_and_assigns_photographer(self):
        self.as_user(self.admin)

        response = self.client.patch(
            self.url(),
            {"baseQuote": "300.00", "photographerId": str(self.other_photographer.id)},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.photographer_id, self.other_photographer.id)
        self.assertEqual(self.shoot.tax_amount, Decimal("30.00"))
        self.assertEqual(self.shoot.total_quote, Decimal("330.00"))

    def test_quote_cannot_drop_below_amount_paid(self):
        Shoot.objects.filter(pk=self.shoot.pk).update(total_paid=Decimal("150.00"))
        self.as_user(self.admin)

        lowered = self.client.patch(self.url(), {"base_quote": "50.00"}, format="json")
        untaxed = self.client.patch(self.url(), {"base_quote": "140.00", "tax_rate": "0"}, format="json")
        covered = self.client.patch(self.url(), {"base_quote": "150.00", "tax_rate": "0"}, format="json")

        self.assertEqual(lowered.status_code, 400)
        self.assertIn("base_quote", lowered.json()["errors"])
        self.assertEqual(untaxed.status_code, 400)
        self.assertEqual(covered.status_code, 200)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.total_quote, Decimal("150.00"))
        self.assertEqual(self.shoot.balance_due, Decimal("0.00"))

    def test_assigning_wrong_role_is_rejected(self):
        self.as_user(self.admin)

        response = self.client.patch(self.url(), {"editor_id": str(self.photographer.id)}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("editor_id", response.json()["errors"])

    def test_non_admin_cannot_patch(self):
        self.as_user(self.photographer)

        response = self.client.patch(self.url(), {"shoot_notes": "changed"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_only_admin_deletes_and_delete_cascades(self):
        Issue.objects.create(shoot=self.shoot, note="n", raised_by=self.client_user)
        self.as_user(self.client_user)
        self.assertEqual(self.client.delete(self.url()).status_code, 403)

        self.as_user(self.admin)
        response = self.client.delete(self.url())

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Shoot.objects.filter(pk=self.shoot.pk).exists())
        self.assertFalse(Issue.objects.exists())

    def test_photographer_notes(self):
        self.as_user(self.photographer)

        response = self.client.post(self.url("/notes"), {"photographerNotes": "Gate code 1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["photographer_notes"], "Gate code 1234")


class RawUploadApiTests(ShootApiTestCase):
    def test_raw_upload_moves_booked_shoot_and_reports_shortfall(self):
        response = self.upload(self.photographer, self.raw_files(24), upload_type="raw", bracket_type="3-bracket")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["shoot"]["status"], "raw_uploaded")
        self.assertEqual(payload["validation"]["expected_raw_count"], 30)
        self.assertEqual(payload["validation"]["equivalent_final_photos"], 8)
        self.assertTrue(payload["validation"]["is_short"])
        self.assertEqual(payload["warning"], "6 photos are missing")
        self.assertEqual(len(payload["files"]), 24)

        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.bracket_mode, 3)
        self.assertEqual(set(self.shoot.media_files.values_list("workflow_stage", flat=True)), {"todo"})
        self.assertTrue(AuditLog.objects.filter(action="media.upload", entity_id=self.shoot.id).exists())

    def test_scheduled_is_accepted_as_booked(self):
        self.set_status("scheduled")

        response = self.upload(self.photographer, self.raw_files(3), upload_type="raw", bracketType="3-bracket")

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["shoot"]["status"], "raw_uploaded")

    def test_extras_are_stored_but_not_counted(self):
        response = self.upload(
            self.photographer,
            self.raw_files(3),
            upload_type="raw",
            bracket_type="3-bracket",
            extra_indices="[2]",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["validation"]["uploaded_count"], 2)
        self.assertEqual(self.shoot.media_files.filter(is_extra=True).count(), 1)
        self.assertEqual(self.shoot.media_files.count(), 3)

    def test_additional_raw_batches_use_stored_bracket_mode(self):
        self.upload(self.photographer, self.raw_files(24, "A"), upload_type="raw", bracket_type="3-bracket")

        response = self.upload(self.photographer, self.raw_files(6, "B"), upload_type="raw")

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["shoot"]["status"], "raw_uploaded")
        self.assertEqual(payload["validation"]["uploaded_count"], 30)
        self.assertFalse(payload["validation"]["is_short"])
        self.assertIsNone(payload["warning"])

    def test_bracket_type_is_required_without_stored_mode(self):
        response = self.upload(self.photographer, self.raw_files(1), upload_type="raw")

        self.assertEqual(response.status_code, 400)
        self.assertIn("bracket_type", response.json()["errors"])

    def test_raw_upload_rejected_once_editing(self):
        self.set_status("editing", editor=self.editor)

        with self.assertLogs("shoots.workflow", level="WARNING") as logs:
            response = self.upload(self.photographer, self.raw_files(1), upload_type="raw", bracket_type="3-bracket")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")
        self.assertTrue(any("workflow_transition_rejected" in line for line in logs.output))
        self.assertFalse(self.shoot.media_files.exists())

    def test_unassigned_photographer_cannot_see_or_upload(self):
        response = self.upload(self.other_photographer, self.raw_files(1), upload_type="raw", bracket_type="3-bracket")
        self.assertEqual(response.status_code, 404)

        with self.assertLogs("shoots.workflow", level="WARNING"), self.assertRaises(TransitionRejected) as ctx:
            services.upload_media(
                self.shoot,
                actor=self.other_photographer,
                upload_type="raw",
                files=self.raw_files(1),
                bracket_type="3-bracket",
            )
        self.assertEqual(ctx.exception.reason, "not_assigned")

    def test_admin_cannot_upload(self):
        response = self.upload(self.admin, self.raw_files(1), upload_type="raw", bracket_type="3-bracket")

        self.assertEqual(response.status_code, 403)

    def test_image_uploads_get_size_variants(self):
        files = [SimpleUploadedFile("front.png", png_bytes(), content_type="image/png")]

        response = self.upload(self.photographer, files, upload_type="raw", bracket_type="3-bracket")

        self.assertEqual(response.status_code, 201)
        media_file = self.shoot.media_files.get()
        for name, width in (("thumb", 300), ("medium", 800), ("large", 1800)):
            with getattr(media_file, name).open("rb") as handle:
                self.assertEqual(Image.open(handle).size[0], width)
        listing = self.client.get(self.url("/files"))
        self.assertIsNotNone(listing.json()["results"][0]["thumb_url"])

    def test_renditions_are_written_after_commit(self):
        self.as_user(self.photographer)
        files = [SimpleUploadedFile("front.png", png_bytes(), content_type="image/png")]

        with self.captureOnCommitCallbacks() as callbacks:
            response = self.client.post(
                self.url("/files/upload"),
                {"files[]": files, "upload_type": "raw", "bracket_type": "3-bracket"},
                format="multipart",
            )

        self.assertEqual(response.status_code, 201)
        media_file = self.shoot.media_files.get()
        self.assertFalse(media_file.thumb)
        self.assertEqual(len(callbacks), 1)

        callbacks[0]()

        media_file.refresh_from_db()
        self.assertTrue(media_file.thumb)
        self.assertTrue(media_file.large)

    def test_undecodable_images_are_stored_without_renditions(self):
        buffer = BytesIO()
        Image.effect_noise((800, 600), 50).convert("RGB").save(buffer, format="JPEG")
        truncated_jpeg = buffer.getvalue()[: len(buffer.getvalue()) // 2]
        # TIFF header whose first directory has no entries, as camera RAW readers see it.
        bogus_tiff = b"II*\x00\x08\x00\x00\x00" + b"\x00" * 32
        files = [
            SimpleUploadedFile("broken.jpg", truncated_jpeg, content_type="image/jpeg"),
            SimpleUploadedFile("DSC_0001.NEF", bogus_tiff, content_type="image/x-nikon-nef"),
        ]

        with self.assertLogs("shoots.uploads", level="INFO") as logs:
            response = self.upload(self.photographer, files, upload_type="raw", bracket_type="3-bracket")

        self.assertEqual(response.status_code, 201)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "raw_uploaded")
        self.assertEqual(self.shoot.media_files.count(), 2)
        for media_file in self.shoot.media_files.all():
            self.assertFalse(media_file.thumb)
        self.assertEqual(sum("media_variants_skipped" in line for line in logs.output), 2)

        self.as_user(self.admin)
        file_ids = [str(pk) for pk in self.shoot.media_files.values_list("id", flat=True)]
        download = self.client.post(self.url("/files/download"), {"file_ids": file_ids, "size": "small"}, format="json")

        self.assertEqual(download.status_code, 200)
        with zipfile.ZipFile(BytesIO(download.content)) as archive:
            self.assertEqual(sorted(archive.namelist()), ["DSC_0001.NEF", "broken.jpg"])
            self.assertEqual(archive.read("broken.jpg"), truncated_jpeg)
            self.assertEqual(archive.read("DSC_0001.NEF"), bogus_tiff)

    def test_failed_upload_leaves_no_stored_files(self):
        files = [SimpleUploadedFile("front.png", png_bytes(), content_type="image/png"), *self.raw_files(2)]

        with patch("shoots.services.audit", side_effect=RuntimeError("audit store down")):
            with self.assertLogs("common.exceptions", level="ERROR"):
                response = self.upload(self.photographer, files, upload_type="raw", bracket_type="3-bracket")

        self.assertEqual(response.status_code, 500)
        self.assertFalse(MediaFile.objects.filter(shoot=self.shoot).exists())
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "booked")
        leftovers = [name for _, _, names in os.walk(os.path.join(MEDIA_ROOT, "shoots", str(self.shoot.id))) for name in names]
        self.assertEqual(leftovers, [])

    def test_files_summary(self):
        self.upload(self.photographer, self.raw_files(24), upload_type="raw", bracket_type="3-bracket")
        self.as_user(self.admin)

        response = self.client.get(self.url("/files/summary"))

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["raw_count"], 24)
        self.assertEqual(payload["missing_edited_count"], 10)
        self.assertEqual(payload["raw_validation"]["shortfall"], 6)
        self.assertEqual(payload["bracket_type"], "3-bracket")


class EditingWorkflowApiTests(ShootApiTestCase):
    def test_send_to_editing_assigns_editor_and_moves_status(self):
        self.set_status("raw_uploaded")
        self.as_user(self.admin)

        response = self.client.post(self.url("/send-to-editing"), {"editor_id": str(self.editor.id)}, format="json")

        self.assertEqual(response.status_code, 200)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "editing")
        self.assertEqual(self.shoot.editor_id, self.editor.id)
        self.assertTrue(AuditLog.objects.filter(action="shoot.send_to_editing", entity_id=self.shoot.id).exists())

    def test_send_to_editing_is_atomic(self):
        self.set_status("raw_uploaded")
        self.as_user(self.admin)

        with patch("shoots.services.audit", side_effect=RuntimeError("audit store down")):
            with self.assertLogs("common.exceptions", level="ERROR"):
                response = self.client.post(self.url("/send-to-editing"), {"editor_id": str(self.editor.id)}, format="json")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "internal_server_error")
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "raw_uploaded")
        self.assertIsNone(self.shoot.editor_id)

    def test_patch_status_editing_requires_an_editor(self):
        self.set_status("raw_uploaded")
        self.as_user(self.admin)

        missing = self.client.patch(self.url(), {"status": "editing", "workflowStatus": "editing"}, format="json")
        assigned = self.client.patch(self.url(), {"status": "editing", "editor_id": str(self.editor.id)}, format="json")

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(assigned.status_code, 200)
        self.assertEqual(assigned.json()["status"], "editing")
        self.assertEqual(assigned.json()["editor"]["id"], str(self.editor.id))

    def test_patch_rejects_illegal_and_upload_driven_statuses(self):
        self.as_user(self.admin)

        illegal = self.client.patch(self.url(), {"status": "delivered"}, format="json")
        upload_driven = self.client.patch(self.url(), {"workflowStatus": "raw_uploaded"}, format="json")
        conflicting = self.client.patch(self.url(), {"status": "completed", "workflowStatus": "editing"}, format="json")

        self.assertEqual(illegal.status_code, 409)
        self.assertEqual(illegal.json()["code"], "invalid_transition")
        self.assertEqual(upload_driven.status_code, 409)
        self.assertEqual(upload_driven.json()["code"], "upload_required")
        self.assertEqual(conflicting.status_code, 400)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "booked")

    def test_rejected_status_rolls_back_field_changes(self):
        self.as_user(self.admin)

        response = self.client.patch(self.url(), {"shoot_notes": "new notes", "status": "delivered"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.shoot_notes, "")

    def test_edited_upload_requires_checklist(self):
        self.set_status("editing", editor=self.editor)

        response = self.upload(
            self.editor,
            [SimpleUploadedFile("final_001.jpg", b"jpeg", content_type="image/jpeg")],
            upload_type="edited",
            checklist=json.dumps({"interior_exposure": True}),
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("checklist", response.json()["errors"])
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "editing")

    def test_edited_upload_moves_to_review(self):
        self.set_status("editing", editor=self.editor)

        response = self.upload(
            self.editor,
            [SimpleUploadedFile("final_001.jpg", b"jpeg", content_type="image/jpeg")],
            upload_type="edited",
            checklist=FULL_CHECKLIST,
            editing_notes="Sky swapped on exteriors",
        )

        self.assertEqual(response.status_code, 201)
        self.shoot.refresh_from_db()
        self.assertEqual(self.shoot.status, "in_review")
        self.assertEqual(self.shoot.editing_notes, "Sky swapped on exteriors")
        self.assertEqual(self.shoot.media_files.get().workflow_stage, "completed")

    def test_unassigned_editor_cannot_submit(self):
        self.set_status("editing", editor=self.other_editor)

        response = self.upload(
            self.editor,
            [SimpleUploadedFile("final_001.jpg", b"jpeg", content_type="image/jpeg")],
            upload_type="edited",
            checklist=FULL_CHECKLIST,
        )

        self.assertEqual(response.status_code, 404)

    def test_finalise_is_blocked_while_issues_are_open(self):
        self.set_status("in_review", editor=self.editor)
        MediaFile.objects.create(shoot=self.shoot, upload_type="edited", workflow_stage="completed", filename="f.jpg", file="x/f.jpg")
        issue = Issue.objects.create(shoot=self.shoot, note="Crooked lines", raised_by=self.client_user, status="in-progress")
        self.as_user(self.admin)

        with self.assertLogs("shoots.workflow", level="WARNING"):
            blocked = self.client.post(self.url("/finalise"))

        self.assertEqual(blocked.status_code, 409)
        self.assertEqual(blocked.json()["code"], "open_issues")
        self.assertEqual(blocked.json()["errors"]["open_issue_count"], 1)

        Issue.objects.filter(pk=issue.pk).update(status="resolved")
        response = self.client.post(self.url("/finalise"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "delivered")
        self.shoot.refresh_from_db()
        self.assertIsNotNone(self.shoot.delivered_at)
        self.assertEqual(self.shoot.media_files.get().workflow_stage, "verified")

    def test_open_issue_count_and_actions_are_exposed(self):
        self.set_status("in_review", editor=self.editor)
        Issue.objects.create(shoot=self.shoot, note="Dust spot", raised_by=self.client_user)
        self.as_user(self.admin)

        payload = self.client.get(self.url()).json()

        self.assertEqual(payload["open_issue_count"], 1)
        self.assertEqual(payload["available_actions"], [])

    def test_mark_complete(self):
        self.set_status("delivered")
        self.as_user(self.admin)

        response = self.client.post(self.url("/mark-complete"))
        again = self.client.post(self.url("/mark-complete"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "completed")
        self.assertIsNotNone(response.json()["completed_at"])
        self.assertEqual(again.status_code, 409)

    def test_photographer_cannot_finalise(self):
        self.set_status("in_review")
        self.as_user(self.photographer)

        response = self.client.post(self.url("/finalise"))

        self.assertEqual(response.status_code, 403)

    def test_activity_log_types(self):
        self.upload(self.photographer, self.raw_files(2), upload_type="raw", bracket_type="3-bracket")
        self.as_user(self.admin)
        self.client.post(self.url("/send-to-editing"), {"editor_id": str(self.editor.id)}, format="json")

        response = self.client.get(self.url("/activity-log"))

        self.assertEqual(response.status_code, 200)
        types = [row["type"] for row in response.json()["results"]]
        self.assertEqual(types, ["status_change", "upload"])


class MediaDownloadApiTests(ShootApiTestCase):
    def setUp(self):
        super().setUp()
        self.upload(
            self.photographer,
            [
                SimpleUploadedFile("front.png", png_bytes(), content_type="image/png"),
                SimpleUploadedFile("IMG_0001.CR3", b"raw-bytes", content_type="application/octet-stream"),
            ],
            upload_type="raw",
            bracket_type="3-bracket",
        )
        self.file_ids = [str(pk) for pk in self.shoot.media_files.values_list("id", flat=True)]

    def test_small_download_resizes_images_and_keeps_raw_originals(self):
        self.as_user(self.admin)

        response = self.client.post(self.url("/files/download"), {"file_ids": self.file_ids, "size": "small"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/zip")
        with zipfile.ZipFile(BytesIO(response.content)) as archive:
            self.assertEqual(sorted(archive.namelist()), ["IMG_0001.CR3", "front.jpg"])
            self.assertEqual(Image.open(BytesIO(archive.read("front.jpg"))).size, (1800, 1200))
            self.assertEqual(archive.read("IMG_0001.CR3"), b"raw-bytes")

    def test_unknown_ids_are_rejected(self):
        self.as_user(self.admin)

        response = self.client.post(
            self.url("/files/download"),
            {"file_ids": ["00000000-0000-0000-0000-000000000000"]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("file_ids", response.json()["errors"])

    def test_clients_only_see_edited_files(self):
        self.as_user(self.client_user)

        listing = self.client.get(self.url("/files"))
        download = self.client.post(self.url("/files/download"), {"file_ids": self.file_ids}, format="json")

        self.assertEqual(listing.json()["count"], 0)
        self.assertEqual(download.status_code, 400)


class IssueApiTests(ShootApiTestCase):
    def setUp(self):
        super().setUp()
        self.media = MediaFile.objects.create(shoot=self.shoot, upload_type="edited", filename="kitchen.jpg", file="x/kitchen.jpg")

    def issues_url(self, suffix=""):
        return self.url(f"/issues{suffix}")

    def test_issue_with_media_reports_filename_and_ignores_client_assignment(self):
        self.as_user(self.client_user)

        response = self.client.post(
            self.issues_url(),
            {"note": "Window too bright", "mediaId": str(self.media.id), "assignedToRole": "editor"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["media_filename"], "kitchen.jpg")
        self.assertEqual(payload["severity"], "high")
        self.assertIsNone(payload["assigned_to_role"])
        self.assertEqual(payload["raised_by_role"], "client")

        detail = self.client.get(self.issues_url(f"/{payload['id']}"))
        self.assertEqual(detail.json()["media_filename"], "kitchen.jpg")

    def test_media_from_another_shoot_is_rejected(self):
        other_shoot = Shoot.objects.create(address="2 Other St")
        foreign = MediaFile.objects.create(shoot=other_shoot, upload_type="raw", filename="x.cr3", file="x/x.cr3")
        self.as_user(self.admin)

        response = self.client.post(self.issues_url(), {"note": "Bad", "media_id": str(foreign.id)}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("media_id", response.json()["errors"])

    def test_resolving_recomputes_severity_only(self):
        issue = Issue.objects.create(shoot=self.shoot, note="Crooked", raised_by=self.client_user, assigned_to_role="editor")
        self.as_user(self.admin)

        response = self.client.patch(self.issues_url(f"/{issue.id}"), {"status": "resolved"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["severity"], "low")
        issue.refresh_from_db()
        self.assertEqual(issue.note, "Crooked")
        self.assertEqual(issue.assigned_to_role, "editor")
        self.assertIsNotNone(issue.resolved_at)

    def test_client_only_sees_own_issues(self):
        mine = Issue.objects.create(shoot=self.shoot, note="Mine", raised_by=self.client_user)
        theirs = Issue.objects.create(shoot=self.shoot, note="Admin note", raised_by=self.admin, assigned_to_role="editor")
        self.as_user(self.client_user)

        listing = self.client.get(self.issues_url())
        hidden = self.client.get(self.issues_url(f"/{theirs.id}"))

        self.assertEqual([item["id"] for item in listing.json()["results"]], [str(mine.id)])
        self.assertEqual(hidden.status_code, 404)

    def test_editor_sees_editor_issues_only(self):
        self.set_status("editing", editor=self.editor)
        editor_issue = Issue.objects.create(shoot=self.shoot, note="Edit", raised_by=self.admin, assigned_to_role="editor")
        Issue.objects.create(shoot=self.shoot, note="Reshoot", raised_by=self.admin, assigned_to_role="photographer")
        Issue.objects.create(shoot=self.shoot, note="Unassigned", raised_by=self.client_user)
        self.as_user(self.editor)

        response = self.client.get(self.issues_url())

        self.assertEqual([item["id"] for item in response.json()["results"]], [str(editor_issue.id)])

    def test_assignee_updates_forward_only(self):
        self.set_status("editing", editor=self.editor)
        issue = Issue.objects.create(shoot=self.shoot, note="Edit", raised_by=self.admin, assigned_to_role="editor")
        self.as_user(self.editor)

        progress = self.client.patch(self.issues_url(f"/{issue.id}"), {"status": "in-progress"}, format="json")
        back = self.client.patch(self.issues_url(f"/{issue.id}"), {"status": "open"}, format="json")

        self.assertEqual(progress.status_code, 200)
        self.assertEqual(progress.json()["severity"], "medium")
        self.assertEqual(back.status_code, 400)

    def test_status_checks_use_state_read_under_the_shoot_lock(self):
        self.set_status("editing", editor=self.editor)
        issue = Issue.objects.create(shoot=self.shoot, note="Edit", raised_by=self.admin, assigned_to_role="editor")
        stale = Issue.objects.get(pk=issue.pk)
        # Another request resolves the issue after this one has loaded it.
        Issue.objects.filter(pk=issue.pk).update(status="resolved")
        self.as_user(self.editor)

        with patch.object(IssueViewSet, "get_object", return_value=stale):
            response = self.client.patch(self.issues_url(f"/{issue.id}"), {"status": "in-progress"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("status", response.json()["errors"])
        issue.refresh_from_db()
        self.assertEqual(issue.status, "resolved")
        self.assertFalse(AuditLog.objects.filter(action="issue.update", entity_id=issue.id).exists())

    def test_assign_records_the_committed_state(self):
        issue = Issue.objects.create(shoot=self.shoot, note="Reshoot", raised_by=self.client_user)
        stale = Issue.objects.get(pk=issue.pk)
        Issue.objects.filter(pk=issue.pk).update(status="in-progress", note="Reshoot the pool")
        self.as_user(self.admin)

        with patch.object(IssueViewSet, "get_object", return_value=stale):
            response = self.client.post(self.issues_url(f"/{issue.id}/assign"), {"assignedToRole": "editor"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "in-progress")
        entry = AuditLog.objects.get(action="issue.assign", entity_id=issue.id)
        self.assertEqual(entry.before_snapshot["status"], "in-progress")
        self.assertEqual(entry.before_snapshot["note"], "Reshoot the pool")

    def test_specific_assignee_is_enforced(self):
        self.set_status("editing", editor=self.editor)
        issue = Issue.objects.create(
            shoot=self.shoot,
            note="Edit",
            raised_by=self.admin,
            assigned_to_role="editor",
            assigned_to_user=self.other_editor,
        )
        self.as_user(self.editor)

        response = self.client.patch(self.issues_url(f"/{issue.id}"), {"status": "resolved"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_admin_assigns_and_reopens(self):
        issue = Issue.objects.create(shoot=self.shoot, note="Reshoot", raised_by=self.client_user, status="resolved")
        self.as_user(self.admin)

        assigned = self.client.post(
            self.issues_url(f"/{issue.id}/assign"),
            {"assignedToUserId": str(self.photographer.id)},
            format="json",
        )
        reopened = self.client.patch(self.issues_url(f"/{issue.id}"), {"status": "open"}, format="json")

        self.assertEqual(assigned.status_code, 200)
        self.assertEqual(assigned.json()["assigned_to_role"], "photographer")
        self.assertEqual(assigned.json()["assigned_to_user"]["id"], str(self.photographer.id))
        self.assertEqual(reopened.json()["severity"], "high")
        self.assertEqual(AuditLog.objects.filter(entity="issue", entity_id=issue.id).count(), 2)

    def test_non_admin_cannot_assign(self):
        issue = Issue.objects.create(shoot=self.shoot, note="Mine", raised_by=self.client_user)
        self.as_user(self.client_user)

        response = self.client.post(self.issues_url(f"/{issue.id}/assign"), {"assignedToRole": "editor"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_filters_and_ordering(self):
        first = Issue.objects.create(shoot=self.shoot, note="Blurry hallway", raised_by=self.admin)
        second = Issue.objects.create(shoot=self.shoot, note="Sky color", raised_by=self.admin, status="resolved")
        self.as_user(self.admin)

        high = self.client.get(self.issues_url(), {"severity": "high"})
        search = self.client.get(self.issues_url(), {"search": "sky"})
        oldest = self.client.get(self.issues_url(), {"ordering": "oldest"})

        self.assertEqual([item["id"] for item in high.json()["results"]], [str(first.id)])
        self.assertEqual([item["id"] for item in search.json()["results"]], [str(second.id)])
        self.assertEqual([item["id"] for item in oldest.json()["results"]], [str(first.id), str(second.id)])
