"""Persisted workflow operations.

Each public function runs in a single transaction holding a row lock on the
shoot: the engine check, the field changes, the status change, the media
stage updates and the audit entry either all commit or none do. Uploaded
originals written during a rolled-back transaction are deleted again, and
image renditions are rendered only after commit.
"""
import logging
import os

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.files.storage import default_storage
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.audit import create_audit_log, create_audit_log_from_request
from common.permissions import get_user_role
from shoots import uploads, workflow
from shoots.models import MediaFile, Shoot
from shoots.workflow import TransitionRejected

User = get_user_model()
logger = logging.getLogger("shoots.workflow")


def blocking_issue_count(shoot):
    return shoot.issues.filter(status__in=workflow.BLOCKING_ISSUE_STATUSES).count()


def workflow_snapshot(shoot):
    return {
        "status": shoot.status,
        "photographer_id": shoot.photographer_id,
        "editor_id": shoot.editor_id,
        "bracket_mode": shoot.bracket_mode,
        "delivered_at": shoot.delivered_at,
        "completed_at": shoot.completed_at,
    }


def audit(request, actor, *, action, entity, entity_id, before_snapshot=None, after_snapshot=None):
    if request is not None:
        return create_audit_log_from_request(
            request,
            action=action,
            entity=entity,
            entity_id=entity_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )
    return create_audit_log(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
    )


def _lock(shoot):
    return Shoot.objects.select_for_update().get(pk=shoot.pk)


def _log_rejection(shoot, action, actor, exc):
    logger.warning(
        "workflow_transition_rejected",
        extra={
            "shoot_id": str(shoot.pk),
            "workflow_action": action,
            "from_status": shoot.status,
            "reason": exc.reason,
            "user_id": str(actor.pk) if actor else None,
        },
    )


def _ensure_assigned(shoot, actor, action):
    if action == workflow.UPLOAD_RAW:
        assigned_id = shoot.photographer_id
    elif action == workflow.SUBMIT_EDITS:
        assigned_id = shoot.editor_id
    else:
        return
    if assigned_id is None or assigned_id != actor.pk:
        raise TransitionRejected(
            TransitionRejected.NOT_ASSIGNED,
            {"action": action, "shoot_id": str(shoot.pk)},
        )


def _authorize(shoot, action, actor):
    """Role and assignment checks for work done without a status change."""
    role = get_user_role(actor)
    if role not in workflow.TRANSITIONS[action].roles:
        raise TransitionRejected(TransitionRejected.FORBIDDEN, {"action": action, "role": role})
    _ensure_assigned(shoot, actor, action)


def _transition(shoot, action, actor):
    """Move a locked shoot along ``action``'s edge; the caller saves it."""
    try:
        target = workflow.check_transition(
            action,
            shoot.status,
            role=get_user_role(actor),
            open_issue_count=blocking_issue_count(shoot),
        )
        _ensure_assigned(shoot, actor, action)
    except TransitionRejected as exc:
        _log_rejection(shoot, action, actor, exc)
        raise
    from_status = shoot.status
    shoot.status = target
    return from_status


def _committed(shoot, action, from_status, actor):
    logger.info(
        "workflow_transition_committed",
        extra={
            "shoot_id": str(shoot.pk),
            "workflow_action": action,
            "from_status": from_status,
            "to_status": shoot.status,
            "user_id": str(actor.pk) if actor else None,
        },
    )


def send_to_editing(shoot, *, editor, actor, request=None):
    if editor is None:
        raise ValidationError({"editor_id": ["An editor must be assigned before sending the shoot to editing."]})
    if not editor.is_active or get_user_role(editor) != User.Role.EDITOR:
        raise ValidationError({"editor_id": ["Selected user is not an active editor."]})

    with transaction.atomic():
        locked = _lock(shoot)
        before = workflow_snapshot(locked)
        from_status = _transition(locked, workflow.SEND_TO_EDITING, actor)
        locked.editor = editor
        locked.save(update_fields=["status", "editor", "updated_at"])
        audit(
            request,
            actor,
            action="shoot.send_to_editing",
            entity="shoot",
            entity_id=locked.pk,
            before_snapshot=before,
            after_snapshot=workflow_snapshot(locked),
        )
    _committed(locked, workflow.SEND_TO_EDITING, from_status, actor)
    return locked


def finalise(shoot, *, actor, request=None):
    with transaction.atomic():
        locked = _lock(shoot)
        before = workflow_snapshot(locked)
        from_status = _transition(locked, workflow.FINALISE, actor)
        locked.delivered_at = timezone.now()
        locked.save(update_fields=["status", "delivered_at", "updated_at"])
        verified = locked.media_files.filter(upload_type=MediaFile.UploadType.EDITED).update(
            workflow_stage=MediaFile.Stage.VERIFIED
        )
        after = workflow_snapshot(locked)
        after["verified_media_count"] = verified
        audit(
            request,
            actor,
            action="shoot.finalise",
            entity="shoot",
            entity_id=locked.pk,
            before_snapshot=before,
            after_snapshot=after,
        )
    _committed(locked, workflow.FINALISE, from_status, actor)
    return locked


def mark_complete(shoot, *, actor, request=None):
    with transaction.atomic():
        locked = _lock(shoot)
        before = workflow_snapshot(locked)
        from_status = _transition(locked, workflow.MARK_COMPLETE, actor)
        locked.completed_at = timezone.now()
        locked.save(update_fields=["status", "completed_at", "updated_at"])
        audit(
            request,
            actor,
            action="shoot.mark_complete",
            entity="shoot",
            entity_id=locked.pk,
            before_snapshot=before,
            after_snapshot=workflow_snapshot(locked),
        )
    _committed(locked, workflow.MARK_COMPLETE, from_status, actor)
    return locked


def change_status(shoot, *, target, actor, editor=None, request=None):
    """Apply a status requested through a plain shoot update."""
    if target == shoot.status:
        return shoot
    try:
        action = workflow.resolve_action(shoot.status, target)
        if action in (workflow.UPLOAD_RAW, workflow.SUBMIT_EDITS):
            raise TransitionRejected(
                TransitionRejected.UPLOAD_REQUIRED,
                {"action": action, "from_status": shoot.status, "to_status": target},
            )
    except TransitionRejected as exc:
        _log_rejection(shoot, None, actor, exc)
        raise

    if action == workflow.SEND_TO_EDITING:
        return send_to_editing(shoot, editor=editor or shoot.editor, actor=actor, request=request)
    if action == workflow.FINALISE:
        return finalise(shoot, actor=actor, request=request)
    return mark_complete(shoot, actor=actor, request=request)


def _resolve_bracket_type(shoot, bracket_type):
    if bracket_type:
        return bracket_type
    stored = uploads.bracket_type_for_mode(shoot.bracket_mode)
    if stored:
        return stored
    return settings.SHOOTFLOW_DEFAULT_BRACKET_MODE


def _store_files(shoot, files, *, upload_type, stage, extra_indices, actor, stored):
    created = []
    for index, uploaded in enumerate(files):
        media_file = MediaFile(
            shoot=shoot,
            upload_type=upload_type,
            workflow_stage=stage,
            is_extra=index in extra_indices,
            filename=os.path.basename(uploaded.name),
            file_type=getattr(uploaded, "content_type", "") or "",
            file_size=uploaded.size or 0,
            uploaded_by=actor,
        )
        media_file.file.save(media_file.filename, uploaded, save=False)
        stored.append(media_file.file.name)
        media_file.save()
        created.append(media_file)
    return created


def _discard_stored(names):
    """Remove originals written during a transaction that rolled back."""
    for name in names:
        default_storage.delete(name)
    if names:
        logger.warning("media_upload_rolled_back", extra={"reason": f"{len(names)} stored file(s) removed"})


def _render_variants(media_files):
    for media_file in media_files:
        uploads.generate_variants(media_file)


def _raw_summary(shoot, multiplier):
    uploaded_count = shoot.media_files.filter(upload_type=MediaFile.UploadType.RAW, is_extra=False).count()
    return uploads.evaluate_raw_upload(uploaded_count, shoot.expected_delivered_count, multiplier)


def upload_media(shoot, *, actor, upload_type, files, bracket_type=None, extra_indices=(), notes=None, checklist=None, request=None):
    """Store a batch of RAW or edited files and advance the shoot when the batch opens a stage."""
    if not files:
        raise ValidationError({"files": ["At least one file is required."]})
    if upload_type not in MediaFile.UploadType.values:
        raise ValidationError({"upload_type": [f"Must be one of: {', '.join(MediaFile.UploadType.values)}."]})

    if upload_type == MediaFile.UploadType.RAW:
        action = workflow.UPLOAD_RAW
        stage = MediaFile.Stage.TODO
        continuing_status = workflow.RAW_UPLOADED
        notes_field = "photographer_notes"
        bracket_type = _resolve_bracket_type(shoot, bracket_type)
        if not bracket_type:
            raise ValidationError({"bracket_type": ["Choose 3-bracket or 5-bracket for this shoot."]})
        multiplier = uploads.bracket_multiplier(bracket_type)
    else:
        action = workflow.SUBMIT_EDITS
        stage = MediaFile.Stage.COMPLETED
        continuing_status = workflow.IN_REVIEW
        notes_field = "editing_notes"
        uploads.validate_edit_checklist(checklist or {})
        multiplier = None

    stored = []
    try:
        with transaction.atomic():
            locked = _lock(shoot)
            before = workflow_snapshot(locked)
            from_status = locked.status
            update_fields = ["updated_at"]

            if locked.status == continuing_status:
                try:
                    _authorize(locked, action, actor)
                except TransitionRejected as exc:
                    _log_rejection(locked, action, actor, exc)
                    raise
                transitioned = False
            else:
                _transition(locked, action, actor)
                update_fields.append("status")
                transitioned = True

            if multiplier is not None and locked.bracket_mode != multiplier:
                locked.bracket_mode = multiplier
                update_fields.append("bracket_mode")
            if notes:
                setattr(locked, notes_field, notes)
                update_fields.append(notes_field)
            locked.save(update_fields=update_fields)

            created = _store_files(
                locked,
                files,
                upload_type=upload_type,
                stage=stage,
                extra_indices=set(extra_indices),
                actor=actor,
                stored=stored,
            )
            summary = _raw_summary(locked, multiplier) if multiplier is not None else None

            after = workflow_snapshot(locked)
            after.update(
                {
                    "upload_type": upload_type,
                    "file_count": len(created),
                    "extra_count": sum(1 for media_file in created if media_file.is_extra),
                    "validation": summary.as_dict() if summary else None,
                }
            )
            audit(
                request,
                actor,
                action="media.upload",
                entity="shoot",
                entity_id=locked.pk,
                before_snapshot=before,
                after_snapshot=after,
            )
            transaction.on_commit(lambda: _render_variants(created))
    except Exception:
        _discard_stored(stored)
        raise

    if transitioned:
        _committed(locked, action, from_status, actor)
    if summary is not None and summary.is_short:
        logger.info(
            "raw_upload_short",
            extra={"shoot_id": str(locked.pk), "workflow_action": action, "reason": summary.warning},
        )
    return locked, created, summary
