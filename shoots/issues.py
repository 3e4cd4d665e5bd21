from django.db.models import Case, IntegerField, Q, Value, When

from common.permissions import ADMIN_ROLES, get_user_role

OPEN = "open"
IN_PROGRESS = "in-progress"
RESOLVED = "resolved"

SEVERITY_BY_STATUS = {
    OPEN: "high",
    IN_PROGRESS: "medium",
    RESOLVED: "low",
}
STATUSES_BY_SEVERITY = {severity: issue_status for issue_status, severity in SEVERITY_BY_STATUS.items()}

# Forward moves anyone allowed to update an issue may make.
FORWARD_MOVES = {
    OPEN: {IN_PROGRESS, RESOLVED},
    IN_PROGRESS: {RESOLVED},
    RESOLVED: set(),
}
# Admins may additionally reopen.
ADMIN_MOVES = {
    OPEN: FORWARD_MOVES[OPEN],
    IN_PROGRESS: FORWARD_MOVES[IN_PROGRESS] | {OPEN},
    RESOLVED: {OPEN},
}

ASSIGNABLE_ROLES = ("editor", "photographer")


def severity_for_status(issue_status):
    return SEVERITY_BY_STATUS.get(issue_status, "low")


def issue_visible_to(issue, role, viewer_id):
    if role in ADMIN_ROLES:
        return True
    if role == "client":
        return viewer_id is not None and str(issue.raised_by_id) == str(viewer_id)
    if role in ASSIGNABLE_ROLES:
        return issue.assigned_to_role == role
    return False


def visible_issues(queryset, user):
    """Queryset form of :func:`issue_visible_to`."""
    role = get_user_role(user)
    if role in ADMIN_ROLES:
        return queryset
    if role == "client":
        return queryset.filter(raised_by_id=user.id)
    if role in ASSIGNABLE_ROLES:
        return queryset.filter(assigned_to_role=role)
    return queryset.none()


def can_move(current, target, role):
    if current == target:
        return True
    moves = ADMIN_MOVES if role in ADMIN_ROLES else FORWARD_MOVES
    return target in moves.get(current, set())


def can_update_status(issue, user):
    role = get_user_role(user)
    if role in ADMIN_ROLES:
        return True
    if role not in ASSIGNABLE_ROLES or issue.assigned_to_role != role:
        return False
    return issue.assigned_to_user_id is None or issue.assigned_to_user_id == user.id


def apply_filters(queryset, params):
    issue_status = params.get("status")
    severity = params.get("severity")
    search = (params.get("search") or "").strip()
    ordering = params.get("ordering") or "newest"

    if issue_status and issue_status != "all":
        queryset = queryset.filter(status=issue_status)
    if severity and severity != "all":
        queryset = queryset.filter(status=STATUSES_BY_SEVERITY.get(severity, ""))
    if search:
        queryset = queryset.filter(
            Q(note__icontains=search)
            | Q(media__filename__icontains=search)
            | Q(raised_by__username__icontains=search)
            | Q(raised_by__first_name__icontains=search)
            | Q(raised_by__last_name__icontains=search)
        )

    if ordering == "oldest":
        return queryset.order_by("created_at")
    if ordering == "status":
        rank = Case(
            When(status=OPEN, then=Value(0)),
            When(status=IN_PROGRESS, then=Value(1)),
            default=Value(2),
            output_field=IntegerField(),
        )
        return queryset.annotate(status_rank=rank).order_by("status_rank", "-created_at")
    return queryset.order_by("-created_at")
