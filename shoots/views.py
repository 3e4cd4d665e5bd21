from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Count, Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission, get_user_role, is_admin
from core.models import AuditLog
from shoots import issues as issue_rules
from shoots import services, uploads, workflow
from shoots.models import Issue, MediaFile, Shoot
from shoots.normalization import SCHEMA_VERSION, SCHEMA_VERSION_HEADER, normalize_payload
from shoots.serializers import (
    IssueAssignSerializer,
    IssueCreateSerializer,
    IssueSerializer,
    IssueUpdateSerializer,
    MediaDownloadSerializer,
    MediaFileSerializer,
    PhotographerNotesSerializer,
    SendToEditingSerializer,
    ShootSerializer,
)

User = get_user_model()

# Fields only admins may set when booking or editing a shoot.
ADMIN_ONLY_FIELDS = ("client_id", "photographer_id", "editor_id", "base_quote", "tax_rate")

ACTIVITY_TYPES = {
    "media.upload": "upload",
    "shoot.finalise": "finalize",
    "shoot.notes": "note",
    "shoot.send_to_editing": "status_change",
    "shoot.mark_complete": "status_change",
    "payment.record": "payment",
}


def scoped_shoots_for_user(queryset, user):
    role = get_user_role(user)
    if role in (User.Role.ADMIN, User.Role.SUPERADMIN):
        return queryset
    if role == User.Role.PHOTOGRAPHER:
        return queryset.filter(photographer_id=user.id)
    if role == User.Role.EDITOR:
        return queryset.filter(editor_id=user.id)
    if role == User.Role.CLIENT:
        return queryset.filter(client_id=user.id)
    return queryset.none()


def scoped_media_for_user(queryset, user):
    # Clients receive deliverables only, never the RAW brackets.
    if get_user_role(user) == User.Role.CLIENT:
        return queryset.filter(upload_type=MediaFile.UploadType.EDITED)
    return queryset


def activity_type(action_name):
    return ACTIVITY_TYPES.get(action_name, "other")


class SchemaVersionMixin:
    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        response[SCHEMA_VERSION_HEADER] = SCHEMA_VERSION
        return response


class ShootViewSet(SchemaVersionMixin, viewsets.ModelViewSet):
    queryset = Shoot.objects.select_related("client", "photographer", "editor")
    serializer_class = ShootSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    parser_classes = [JSONParser, MultiPartParser, FormParser]
    permission_action_map = {
        "list": "shoots.view",
        "retrieve": "shoots.view",
        "create": "shoots.book",
        "update": "shoots.manage",
        "partial_update": "shoots.manage",
        "destroy": "shoots.delete",
        "send_to_editing": "shoots.send_to_editing",
        "finalise": "shoots.finalise",
        "mark_complete": "shoots.complete",
        "notes": "shoots.notes.photographer",
        "files": "media.view",
        "files_summary": "media.view",
        "upload": "media.upload",
        "download": "media.download",
        "activity_log": "shoots.activity.view",
    }

    def get_queryset(self):
        qs = scoped_shoots_for_user(super().get_queryset(), self.request.user)
        qs = qs.annotate(
            blocking_issue_count=Count(
                "issues",
                filter=Q(issues__status__in=workflow.BLOCKING_ISSUE_STATUSES),
                distinct=True,
            )
        )

        params = self.request.query_params
        status_filter = params.get("status") or params.get("workflow_status") or params.get("workflowStatus")
        if status_filter:
            qs = qs.filter(status__in=[value for value in status_filter.split(",") if value])
        for param, field in (("photographer_id", "photographer_id"), ("editor_id", "editor_id"), ("client_id", "client_id")):
            if params.get(param):
                qs = qs.filter(**{field: params[param]})

        date_from = parse_date(params.get("date_from", ""))
        date_to = parse_date(params.get("date_to", ""))
        if date_from:
            qs = qs.filter(scheduled_date__gte=date_from)
        if date_to:
            qs = qs.filter(scheduled_date__lte=date_to)

        search = (params.get("search") or "").strip()
        if search:
            qs = qs.filter(
                Q(address__icontains=search)
                | Q(city__icontains=search)
                | Q(client_name__icontains=search)
                | Q(client_email__icontains=search)
            )
        return qs

    def _refreshed(self, shoot):
        return self.get_serializer(self.get_queryset().get(pk=shoot.pk)).data

    def create(self, request, *args, **kwargs):
        payload = normalize_payload(request.data)
        if not is_admin(request.user):
            for field in ADMIN_ONLY_FIELDS:
                payload.pop(field, None)
        payload.pop("status", None)

        serializer = self.get_serializer(data=payload)
        serializer.is_valid(raise_exception=True)
        extra = {}
        if get_user_role(request.user) == User.Role.CLIENT:
            extra = {
                "client": request.user,
                "client_name": serializer.validated_data.get("client_name") or request.user.display_name,
                "client_email": serializer.validated_data.get("client_email") or request.user.email,
            }
        shoot = serializer.save(**extra)
        create_audit_log_from_request(
            request,
            action="shoot.create",
            entity="shoot",
            entity_id=shoot.id,
            after_snapshot=services.workflow_snapshot(shoot),
        )
        return Response(self._refreshed(shoot), status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        shoot = self.get_object()
        payload = normalize_payload(request.data)
        target_status = payload.pop("status", None)
        before = services.workflow_snapshot(shoot)

        with transaction.atomic():
            serializer = self.get_serializer(shoot, data=payload, partial=partial)
            serializer.is_valid(raise_exception=True)
            shoot = serializer.save()
            create_audit_log_from_request(
                request,
                action="shoot.update",
                entity="shoot",
                entity_id=shoot.id,
                before_snapshot=before,
                after_snapshot={**services.workflow_snapshot(shoot), "fields": sorted(payload)},
            )
            if target_status:
                if target_status not in Shoot.Status.values:
                    raise ValidationError({"status": [f'"{target_status}" is not a valid status.']})
                shoot = services.change_status(shoot, target=target_status, actor=request.user, request=request)

        return Response(self._refreshed(shoot))

    def perform_destroy(self, instance):
        create_audit_log_from_request(
            self.request,
            action="shoot.delete",
            entity="shoot",
            entity_id=instance.id,
            before_snapshot=services.workflow_snapshot(instance),
        )
        instance.delete()

    @action(detail=True, methods=["post"], url_path="send-to-editing")
    def send_to_editing(self, request, pk=None):
        shoot = self.get_object()
        serializer = SendToEditingSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        shoot = services.send_to_editing(
            shoot,
            editor=serializer.validated_data["editor_id"],
            actor=request.user,
            request=request,
        )
        return Response(self._refreshed(shoot))

    @action(detail=True, methods=["post"])
    def finalise(self, request, pk=None):
        shoot = services.finalise(self.get_object(), actor=request.user, request=request)
        return Response(self._refreshed(shoot))

    @action(detail=True, methods=["post"], url_path="mark-complete")
    def mark_complete(self, request, pk=None):
        shoot = services.mark_complete(self.get_object(), actor=request.user, request=request)
        return Response(self._refreshed(shoot))

    @action(detail=True, methods=["post"])
    def notes(self, request, pk=None):
        shoot = self.get_object()
        serializer = PhotographerNotesSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        before = {"photographer_notes": shoot.photographer_notes}
        shoot.photographer_notes = serializer.validated_data["photographer_notes"]
        shoot.save(update_fields=["photographer_notes", "updated_at"])
        create_audit_log_from_request(
            request,
            action="shoot.notes",
            entity="shoot",
            entity_id=shoot.id,
            before_snapshot=before,
            after_snapshot={"photographer_notes": shoot.photographer_notes},
        )
        return Response(self._refreshed(shoot))

    def _media_queryset(self, shoot):
        qs = scoped_media_for_user(shoot.media_files.select_related("uploaded_by"), self.request.user)
        upload_type = self.request.query_params.get("upload_type")
        if upload_type:
            qs = qs.filter(upload_type=upload_type)
        stage = self.request.query_params.get("workflow_stage")
        if stage:
            qs = qs.filter(workflow_stage=stage)
        return qs

    @action(detail=True, methods=["get"])
    def files(self, request, pk=None):
        shoot = self.get_object()
        queryset = self._media_queryset(shoot)
        page = self.paginate_queryset(queryset)
        if page is not None:
            serializer = MediaFileSerializer(page, many=True, context=self.get_serializer_context())
            return self.get_paginated_response(serializer.data)
        serializer = MediaFileSerializer(queryset, many=True, context=self.get_serializer_context())
        return Response(serializer.data)

    @action(detail=True, methods=["get"], url_path="files/summary")
    def files_summary(self, request, pk=None):
        """RAW/edited counts for the shoot against what its package expects."""
        shoot = self.get_object()
        counts = shoot.media_files.aggregate(
            raw_count=Count("id", filter=Q(upload_type=MediaFile.UploadType.RAW, is_extra=False)),
            raw_extra_count=Count("id", filter=Q(upload_type=MediaFile.UploadType.RAW, is_extra=True)),
            edited_count=Count("id", filter=Q(upload_type=MediaFile.UploadType.EDITED, is_extra=False)),
            edited_extra_count=Count("id", filter=Q(upload_type=MediaFile.UploadType.EDITED, is_extra=True)),
        )
        validation = None
        if shoot.bracket_mode:
            validation = uploads.evaluate_raw_upload(
                counts["raw_count"], shoot.expected_delivered_count, shoot.bracket_mode
            ).as_dict()
        missing_edited = max(shoot.expected_delivered_count - counts["edited_count"], 0)
        return Response(
            {
                **counts,
                "expected_delivered_count": shoot.expected_delivered_count,
                "bracket_type": uploads.bracket_type_for_mode(shoot.bracket_mode),
                "missing_edited_count": missing_edited,
                "raw_validation": validation,
            }
        )

    @action(detail=True, methods=["post"], url_path="files/upload")
    def upload(self, request, pk=None):
        shoot = self.get_object()
        files = request.FILES.getlist("files[]") or request.FILES.getlist("files")
        payload = normalize_payload(request.data)
        upload_type = payload.get("upload_type")
        notes_key = "editing_notes" if upload_type == MediaFile.UploadType.EDITED else "photographer_notes"

        shoot, created, summary = services.upload_media(
            shoot,
            actor=request.user,
            upload_type=upload_type,
            files=files,
            bracket_type=payload.get("bracket_type"),
            extra_indices=uploads.parse_extra_indices(payload.get("extra_indices"), len(files)),
            notes=payload.get(notes_key),
            checklist=uploads.parse_checklist(payload.get("checklist")),
            request=request,
        )
        context = self.get_serializer_context()
        return Response(
            {
                "shoot": self._refreshed(shoot),
                "files": MediaFileSerializer(created, many=True, context=context).data,
                "validation": summary.as_dict() if summary else None,
                "warning": summary.warning if summary else None,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="files/download")
    def download(self, request, pk=None):
        shoot = self.get_object()
        serializer = MediaDownloadSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        file_ids = set(serializer.validated_data["file_ids"])
        size = serializer.validated_data["size"]

        media_files = list(self._media_queryset(shoot).filter(id__in=file_ids))
        missing = file_ids - {media_file.id for media_file in media_files}
        if missing:
            raise ValidationError({"file_ids": [f"Unknown file id(s): {', '.join(sorted(str(item) for item in missing))}."]})

        response = HttpResponse(uploads.build_download_archive(media_files, size), content_type="application/zip")
        response["Content-Disposition"] = f'attachment; filename="shoot-{shoot.id}-{size}.zip"'
        return response

    @action(detail=True, methods=["get"], url_path="activity-log")
    def activity_log(self, request, pk=None):
        shoot = self.get_object()
        issue_ids = list(shoot.issues.values_list("id", flat=True))
        logs = (
            AuditLog.objects.select_related("actor")
            .filter(Q(entity="shoot", entity_id=shoot.id) | Q(entity="issue", entity_id__in=issue_ids))
            .order_by("-created_at")
        )
        page = self.paginate_queryset(logs)
        rows = [
            {
                "id": str(log.id),
                "type": activity_type(log.action),
                "action": log.action,
                "entity": log.entity,
                "entity_id": str(log.entity_id) if log.entity_id else None,
                "actor": log.actor.display_name if log.actor else None,
                "details": log.after_snapshot,
                "request_id": log.request_id,
                "created_at": log.created_at,
            }
            for log in (page if page is not None else logs)
        ]
        if page is not None:
            return self.get_paginated_response(rows)
        return Response(rows)


class IssueViewSet(SchemaVersionMixin, mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = IssueSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "issues.view",
        "retrieve": "issues.view",
        "create": "issues.create",
        "partial_update": "issues.update",
        "assign": "issues.assign",
    }

    def get_shoot(self):
        if not hasattr(self, "_shoot"):
            shoots = scoped_shoots_for_user(Shoot.objects.all(), self.request.user)
            self._shoot = get_object_or_404(shoots, pk=self.kwargs["shoot_pk"])
        return self._shoot

    def get_queryset(self):
        queryset = Issue.objects.filter(shoot=self.get_shoot()).select_related(
            "media", "raised_by", "assigned_to_user"
        )
        queryset = issue_rules.visible_issues(queryset, self.request.user)
        if self.action == "list":
            queryset = issue_rules.apply_filters(queryset, self.request.query_params)
        return queryset

    def _lock_shoot(self):
        # Serialises issue changes with workflow transitions that count open issues.
        return Shoot.objects.select_for_update().get(pk=self.get_shoot().pk)

    def _snapshot(self, issue):
        return {
            "status": issue.status,
            "assigned_to_role": issue.assigned_to_role,
            "assigned_to_user_id": issue.assigned_to_user_id,
            "media_id": issue.media_id,
            "note": issue.note,
        }

    def create(self, request, *args, **kwargs):
        shoot = self.get_shoot()
        serializer = IssueCreateSerializer(data=normalize_payload(request.data), context={"shoot": shoot})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = request.user

        issue = Issue(
            shoot=shoot,
            media=data.get("media_id"),
            raised_by=user,
            raised_by_role=get_user_role(user),
            note=data["note"],
        )
        if is_admin(user):
            issue.assigned_to_role = data.get("assigned_to_role")
            issue.assigned_to_user = data.get("assigned_to_user_id")

        with transaction.atomic():
            self._lock_shoot()
            issue.save()
            create_audit_log_from_request(
                request,
                action="issue.create",
                entity="issue",
                entity_id=issue.id,
                after_snapshot={**self._snapshot(issue), "shoot_id": shoot.id},
            )
        return Response(self.get_serializer(issue).data, status=status.HTTP_201_CREATED)

    def _locked_issue(self, issue):
        """Lock the shoot, then re-read the issue so checks see committed state."""
        self._lock_shoot()
        return Issue.objects.select_related("media", "raised_by", "assigned_to_user").get(pk=issue.pk)

    def partial_update(self, request, *args, **kwargs):
        issue = self.get_object()
        serializer = IssueUpdateSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user = request.user
        role = get_user_role(user)

        with transaction.atomic():
            issue = self._locked_issue(issue)
            if "status" in data:
                if not issue_rules.can_update_status(issue, user):
                    raise PermissionDenied("Only admins or the assignee can change this issue's status.")
                if not issue_rules.can_move(issue.status, data["status"], role):
                    raise ValidationError({"status": [f"Cannot move an issue from {issue.status} to {data['status']}."]})
            if "note" in data and not (is_admin(user) or issue.raised_by_id == user.id):
                raise PermissionDenied("Only admins or the reporter can edit the issue note.")

            before = self._snapshot(issue)
            if "status" in data and data["status"] != issue.status:
                issue.status = data["status"]
                issue.resolved_at = timezone.now() if issue.status == issue_rules.RESOLVED else None
            if "note" in data:
                issue.note = data["note"]
            issue.save()
            create_audit_log_from_request(
                request,
                action="issue.update",
                entity="issue",
                entity_id=issue.id,
                before_snapshot=before,
                after_snapshot=self._snapshot(issue),
            )
        return Response(self.get_serializer(issue).data)

    @action(detail=True, methods=["post"])
    def assign(self, request, *args, **kwargs):
        issue = self.get_object()
        serializer = IssueAssignSerializer(data=normalize_payload(request.data))
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        with transaction.atomic():
            issue = self._locked_issue(issue)
            before = self._snapshot(issue)
            issue.assigned_to_role = data["assigned_to_role"]
            issue.assigned_to_user = data.get("assigned_to_user_id")
            issue.save(update_fields=["assigned_to_role", "assigned_to_user", "updated_at"])
            create_audit_log_from_request(
                request,
                action="issue.assign",
                entity="issue",
                entity_id=issue.id,
                before_snapshot=before,
                after_snapshot=self._snapshot(issue),
            )
        return Response(self.get_serializer(issue).data)
