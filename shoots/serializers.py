from django.contrib.auth import get_user_model
from rest_framework import serializers

from common.permissions import ADMIN_ROLES, get_user_role
from common.utils import to_money
from core.serializers import UserSummarySerializer
from shoots import issues as issue_rules
from shoots import uploads, workflow
from shoots.models import Issue, MediaFile, Shoot

User = get_user_model()


def _request_user(serializer):
    request = serializer.context.get("request")
    return getattr(request, "user", None)


def _user_with_role(role, label):
    return serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(role=role, is_active=True),
        required=False,
        allow_null=True,
        write_only=True,
        error_messages={"does_not_exist": f"Selected user is not an active {label}."},
    )


class BracketModeField(serializers.Field):
    """Accepts 3, 5, "3", "5", "3-bracket" or "5-bracket"; renders the multiplier."""

    default_error_messages = {"invalid": "Must be 3-bracket or 5-bracket."}

    def to_internal_value(self, data):
        if data in uploads.BRACKET_TYPES:
            return uploads.BRACKET_TYPES[data]
        try:
            value = int(data)
        except (TypeError, ValueError):
            self.fail("invalid")
        if value not in uploads.BRACKET_TYPES.values():
            self.fail("invalid")
        return value

    def to_representation(self, value):
        return value


class ShootSerializer(serializers.ModelSerializer):
    workflow_status = serializers.CharField(source="status", read_only=True)
    client = UserSummarySerializer(read_only=True)
    photographer = UserSummarySerializer(read_only=True)
    editor = UserSummarySerializer(read_only=True)
    client_id = _user_with_role(User.Role.CLIENT, "client")
    photographer_id = _user_with_role(User.Role.PHOTOGRAPHER, "photographer")
    editor_id = _user_with_role(User.Role.EDITOR, "editor")
    services = serializers.ListField(child=serializers.CharField(max_length=255, allow_blank=True), required=False)
    base_quote = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, write_only=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False, write_only=True)
    bracket_mode = BracketModeField(required=False, allow_null=True)
    bracket_type = serializers.SerializerMethodField()
    payment = serializers.SerializerMethodField()
    open_issue_count = serializers.SerializerMethodField()
    available_actions = serializers.SerializerMethodField()

    class Meta:
        model = Shoot
        fields = [
            "id",
            "status",
            "workflow_status",
            "scheduled_date",
            "time",
            "address",
            "address2",
            "city",
            "state",
            "zip",
            "client",
            "client_id",
            "client_name",
            "client_email",
            "client_phone",
            "photographer",
            "photographer_id",
            "editor",
            "editor_id",
            "services",
            "base_quote",
            "tax_rate",
            "payment",
            "package_name",
            "expected_delivered_count",
            "bracket_mode",
            "bracket_type",
            "shoot_notes",
            "photographer_notes",
            "editing_notes",
            "open_issue_count",
            "available_actions",
            "created_at",
            "updated_at",
            "delivered_at",
            "completed_at",
        ]
        read_only_fields = ["id", "status", "created_at", "updated_at", "delivered_at", "completed_at"]

    def get_bracket_type(self, obj):
        return uploads.bracket_type_for_mode(obj.bracket_mode)

    def get_payment(self, obj):
        role = get_user_role(_request_user(self))
        if role in ADMIN_ROLES:
            return {
                "base_quote": str(to_money(obj.base_quote)),
                "tax_rate": str(to_money(obj.tax_rate)),
                "tax_amount": str(to_money(obj.tax_amount)),
                "total_quote": str(to_money(obj.total_quote)),
                "total_paid": str(to_money(obj.total_paid)),
                "balance_due": str(obj.balance_due),
                "is_paid": obj.is_paid,
            }
        if role == User.Role.CLIENT:
            return {
                "total_quote": str(to_money(obj.total_quote)),
                "total_paid": str(to_money(obj.total_paid)),
                "balance_due": str(obj.balance_due),
            }
        return None

    def _open_issue_count(self, obj):
        annotated = getattr(obj, "blocking_issue_count", None)
        if annotated is not None:
            return annotated
        return obj.issues.filter(status__in=workflow.BLOCKING_ISSUE_STATUSES).count()

    def get_open_issue_count(self, obj):
        return self._open_issue_count(obj)

    def get_available_actions(self, obj):
        role = get_user_role(_request_user(self))
        return workflow.available_actions(obj.status, role, self._open_issue_count(obj))

    def validate_services(self, value):
        return [item.strip() for item in value if item.strip()]

    def validate(self, attrs):
        for source, target in (("client_id", "client"), ("photographer_id", "photographer"), ("editor_id", "editor")):
            if source in attrs:
                attrs[target] = attrs.pop(source)

        client = attrs.get("client")
        if client is not None and self.instance is None:
            attrs.setdefault("client_name", client.display_name)
            attrs.setdefault("client_email", client.email)
            attrs.setdefault("client_phone", client.phone)

        if self.instance is not None and ("base_quote" in attrs or "tax_rate" in attrs):
            _, _, total_quote = Shoot.quote_totals(
                attrs.get("base_quote", self.instance.base_quote),
                attrs.get("tax_rate", self.instance.tax_rate),
            )
            total_paid = to_money(self.instance.total_paid)
            if total_quote < total_paid:
                raise serializers.ValidationError(
                    {"base_quote": [f"Total quote {total_quote} would be below the {total_paid} already paid."]}
                )
        return attrs

    def _apply_totals(self, instance):
        instance.recalculate_totals()

    def create(self, validated_data):
        instance = Shoot(status=workflow.INITIAL_STATUS, **validated_data)
        self._apply_totals(instance)
        instance.save()
        return instance

    def update(self, instance, validated_data):
        for field, value in validated_data.items():
            setattr(instance, field, value)
        if "base_quote" in validated_data or "tax_rate" in validated_data:
            self._apply_totals(instance)
        instance.save()
        return instance


class SendToEditingSerializer(serializers.Serializer):
    editor_id = _user_with_role(User.Role.EDITOR, "editor")

    def validate_editor_id(self, value):
        if value is None:
            raise serializers.ValidationError("An editor is required.")
        return value


class PhotographerNotesSerializer(serializers.Serializer):
    photographer_notes = serializers.CharField(allow_blank=True)


class MediaFileSerializer(serializers.ModelSerializer):
    url = serializers.SerializerMethodField()
    thumb_url = serializers.SerializerMethodField()
    medium_url = serializers.SerializerMethodField()
    large_url = serializers.SerializerMethodField()
    uploaded_by = UserSummarySerializer(read_only=True)

    class Meta:
        model = MediaFile
        fields = [
            "id",
            "shoot",
            "upload_type",
            "workflow_stage",
            "is_extra",
            "filename",
            "file_type",
            "file_size",
            "url",
            "thumb_url",
            "medium_url",
            "large_url",
            "uploaded_by",
            "created_at",
        ]
        read_only_fields = fields

    def _absolute(self, field_file):
        if not field_file:
            return None
        request = self.context.get("request")
        url = field_file.url
        return request.build_absolute_uri(url) if request else url

    def get_url(self, obj):
        return self._absolute(obj.file)

    def get_thumb_url(self, obj):
        return self._absolute(obj.thumb)

    def get_medium_url(self, obj):
        return self._absolute(obj.medium)

    def get_large_url(self, obj):
        return self._absolute(obj.large)


class MediaDownloadSerializer(serializers.Serializer):
    file_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)
    size = serializers.ChoiceField(choices=uploads.DOWNLOAD_SIZES, default="original")


class IssueSerializer(serializers.ModelSerializer):
    media_id = serializers.UUIDField(read_only=True)
    media_filename = serializers.CharField(source="media.filename", read_only=True, default=None)
    raised_by = UserSummarySerializer(read_only=True)
    assigned_to_user = UserSummarySerializer(read_only=True)
    severity = serializers.SerializerMethodField()

    class Meta:
        model = Issue
        fields = [
            "id",
            "shoot",
            "media_id",
            "media_filename",
            "raised_by",
            "raised_by_role",
            "assigned_to_role",
            "assigned_to_user",
            "status",
            "severity",
            "note",
            "created_at",
            "updated_at",
            "resolved_at",
        ]
        read_only_fields = fields

    def get_severity(self, obj):
        return issue_rules.severity_for_status(obj.status)


class IssueAssignmentMixin:
    def _validate_assignment(self, attrs):
        role = attrs.get("assigned_to_role")
        user = attrs.get("assigned_to_user_id")
        if user is not None:
            if role is None:
                role = get_user_role(user)
                attrs["assigned_to_role"] = role
            if get_user_role(user) != role:
                raise serializers.ValidationError({"assigned_to_user_id": [f"Selected user is not an active {role}."]})
        return attrs


class IssueCreateSerializer(IssueAssignmentMixin, serializers.Serializer):
    note = serializers.CharField()
    media_id = serializers.UUIDField(required=False, allow_null=True)
    assigned_to_role = serializers.ChoiceField(choices=Issue.AssigneeRole.choices, required=False, allow_null=True)
    assigned_to_user_id = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(role__in=issue_rules.ASSIGNABLE_ROLES, is_active=True),
        required=False,
        allow_null=True,
    )

    def validate_note(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Describe the issue.")
        return value

    def validate_media_id(self, value):
        if value is None:
            return None
        shoot = self.context["shoot"]
        media = MediaFile.objects.filter(pk=value, shoot=shoot).first()
        if media is None:
            raise serializers.ValidationError("Media file does not belong to this shoot.")
        return media

    def validate(self, attrs):
        return self._validate_assignment(attrs)


class IssueUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Issue.Status.choices, required=False)
    note = serializers.CharField(required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("Provide a status or note to update.")
        return attrs


class IssueAssignSerializer(IssueAssignmentMixin, serializers.Serializer):
    assigned_to_role = serializers.ChoiceField(choices=Issue.AssigneeRole.choices, required=False)
    assigned_to_user_id = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(role__in=issue_rules.ASSIGNABLE_ROLES, is_active=True),
        required=False,
        allow_null=True,
    )

    def validate(self, attrs):
        if not attrs.get("assigned_to_role") and not attrs.get("assigned_to_user_id"):
            raise serializers.ValidationError({"assigned_to_role": ["Choose a role or a user to assign."]})
        return self._validate_assignment(attrs)
