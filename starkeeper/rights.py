"""Granting and revoking star-level view/edit rights.

`update_rights` is the only sanctioned way to change `Star.can_view` or
`Star.can_edit`. The generic star update path goes through
`apply_star_patch`, which refuses to touch the rights lists, the owner or
the placement coordinates.
"""
import datetime
import enum
import logging
from typing import Any, Dict

from .authorization import can_edit_star, is_star_owner
from .errors import BadRequest, Forbidden

logger = logging.getLogger(__name__)


class RightsMode(str, enum.Enum):
    VIEW = "view"
    EDIT = "edit"


class RightsAction(str, enum.Enum):
    ADD = "add"
    REMOVE = "remove"


STAR_MUTABLE_FIELDS = frozenset({
    "is_private",
    "star_for",
    "color",
    "word",
    "activation_date",
    "long_term_maintenance",
})

STAR_PROTECTED_FIELDS = frozenset({"id", "user_id", "x", "y", "z", "can_view", "can_edit", "created_at"})


def _parse_enum(enum_cls, value, name: str):
    try:
        return enum_cls(str(value).strip().lower())
    except (ValueError, AttributeError):
        allowed = ", ".join(m.value for m in enum_cls)
        raise BadRequest(f"Invalid {name}: expected one of {allowed}")


def update_rights(star, requester_id: str, target_user_id: str, mode, action):
    """Add or remove `target_user_id` on the star's view or edit list.

    The owner may change either list. A non-owner editor may only change the
    view list. The list is rebuilt and assigned as a whole so that the
    caller's single commit persists either the full change or nothing.
    """
    mode = _parse_enum(RightsMode, mode, "mode")
    action = _parse_enum(RightsAction, action, "action")
    if not target_user_id or not str(target_user_id).strip():
        raise BadRequest("targetUserId is required")
    target = str(target_user_id).strip()

    if not can_edit_star(star, requester_id):
        raise Forbidden("Only the owner or an editor can change rights")
    if mode is RightsMode.EDIT and not is_star_owner(star, requester_id):
        raise Forbidden("Only the owner can change edit rights")

    field = "can_view" if mode is RightsMode.VIEW else "can_edit"
    current = [str(i) for i in (getattr(star, field) or [])]

    if action is RightsAction.ADD:
        updated = current if target in current else current + [target]
    else:
        updated = [i for i in current if i != target]

    setattr(star, field, updated)
    star.updated_at = datetime.datetime.now(datetime.timezone.utc)
    logger.info("Rights %s %s for user %s on star %s by %s", action.value, mode.value, target, star.id, requester_id)
    return star


def apply_star_patch(star, patch: Dict[str, Any]):
    """Copy the allowed fields of `patch` onto `star`; everything else is ignored."""
    ignored = sorted(k for k in patch if k not in STAR_MUTABLE_FIELDS)
    if ignored:
        logger.debug("Ignoring protected or unknown star fields: %s", ignored)
    for name in STAR_MUTABLE_FIELDS:
        if name in patch:
            setattr(star, name, patch[name])
    star.updated_at = datetime.datetime.now(datetime.timezone.utc)
    return star
