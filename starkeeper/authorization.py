"""Permission resolution for stars and everything they contain.

Rights only flow downward. A grant on the Star covers every collection and
item under it; a grant on a collection covers the items inside it; a grant on
an item covers that item alone. Edit always implies view, and the star owner
holds both regardless of list contents.

Checks never use a denormalized ACL: callers pass the live Star (and the
collection, where there is one), so revoking a star-level grant takes effect
for every descendant immediately.
"""
import enum
import logging
from typing import Any, Iterable, Optional, Sequence

from .errors import Forbidden, NotFound

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    VIEW = "view"
    EDIT = "edit"


class ListPolicy(str, enum.Enum):
    """How a listing behaves for a principal without access to the parent.

    PARENT: access to the parent is required and everything is listed.
    GRANTS: parent access lists everything; otherwise only the children the
    principal was individually granted are listed.
    OWNER: only the star owner may list; grants are ignored.
    """
    PARENT = "parent"
    GRANTS = "grants"
    OWNER = "owner"


class DeletePolicy(str, enum.Enum):
    """EDITOR follows the edit capability; OWNER restricts to the star owner."""
    EDITOR = "editor"
    OWNER = "owner"


def _listed(principal_id: Optional[str], ids: Optional[Iterable[Any]]) -> bool:
    if principal_id is None or not ids:
        return False
    principal_id = str(principal_id)
    return any(str(i) == principal_id for i in ids)


def is_star_owner(star, principal_id: Optional[str]) -> bool:
    return principal_id is not None and str(star.user_id) == str(principal_id)


def can_see_star(star, principal_id: Optional[str]) -> bool:
    return (
        is_star_owner(star, principal_id)
        or _listed(principal_id, star.can_view)
        or _listed(principal_id, star.can_edit)
    )


def can_edit_star(star, principal_id: Optional[str]) -> bool:
    return is_star_owner(star, principal_id) or _listed(principal_id, star.can_edit)


def effective_editors(resource) -> set[str]:
    """Edit set of a resource: its `can_edit` list plus its sender, if any."""
    editors = {str(i) for i in (getattr(resource, "can_edit", None) or ())}
    sender = getattr(resource, "sender", None)
    if sender:
        editors.add(str(sender))
    return editors


def effective_viewers(resource) -> set[str]:
    viewers = {str(i) for i in (getattr(resource, "can_view", None) or ())}
    return viewers | effective_editors(resource)


def has_own_grant(resource, principal_id: Optional[str], require_edit: bool) -> bool:
    """Whether the resource itself (not its parents) grants the capability."""
    if resource is None or principal_id is None:
        return False
    granted = effective_editors(resource) if require_edit else effective_viewers(resource)
    return str(principal_id) in granted


def can_access_chain(chain: Sequence[Any], star, principal_id: Optional[str], require_edit: bool) -> bool:
    """Check a capability on the last element of `chain`.

    `chain` runs from the collection down to the target (for example
    ``[album, photo]``); it may be empty for a star-level check. Access on the
    star or on any element of the chain is sufficient.
    """
    if require_edit:
        if can_edit_star(star, principal_id):
            return True
    elif can_see_star(star, principal_id):
        return True
    return any(has_own_grant(r, principal_id, require_edit) for r in chain)


def can_access_resource(resource, star, principal_id: Optional[str], require_edit: bool) -> bool:
    chain = [] if resource is None else [resource]
    return can_access_chain(chain, star, principal_id, require_edit)


def can_access_item(item, collection, star, principal_id: Optional[str], require_edit: bool) -> bool:
    chain = [r for r in (collection, item) if r is not None]
    return can_access_chain(chain, star, principal_id, require_edit)


def _deny(chain, star, principal_id, conceal: bool, label: str):
    if conceal and not can_access_chain(chain, star, principal_id, False):
        raise NotFound(f"{label} not found")
    raise Forbidden()


def require_access(chain: Sequence[Any], star, principal_id: Optional[str], capability: Capability,
                   conceal: bool = False, label: str = "Resource") -> None:
    """Raise unless `principal_id` holds `capability` on the end of `chain`.

    Existence is checked first: a missing star or chain element is NotFound.
    A refusal is Forbidden, or NotFound when `conceal` is set and the
    principal cannot even view the target.
    """
    if star is None or any(r is None for r in chain):
        raise NotFound(f"{label} not found")
    require_edit = Capability(capability) is Capability.EDIT
    if can_access_chain(chain, star, principal_id, require_edit):
        return
    logger.debug("Denied %s on %s for principal %s", capability, label, principal_id)
    _deny(chain, star, principal_id, conceal, label)


def require_owner(chain: Sequence[Any], star, principal_id: Optional[str],
                  conceal: bool = False, label: str = "Resource") -> None:
    if star is None or any(r is None for r in chain):
        raise NotFound(f"{label} not found")
    if is_star_owner(star, principal_id):
        return
    logger.debug("Owner-only operation on %s refused for principal %s", label, principal_id)
    _deny(chain, star, principal_id, conceal, label)


def require_delete(policy: DeletePolicy, chain: Sequence[Any], star, principal_id: Optional[str],
                   conceal: bool = False, label: str = "Resource") -> None:
    if DeletePolicy(policy) is DeletePolicy.OWNER:
        require_owner(chain, star, principal_id, conceal=conceal, label=label)
    else:
        require_access(chain, star, principal_id, Capability.EDIT, conceal=conceal, label=label)


def filter_listing(children: Sequence[Any], parent_chain: Sequence[Any], star, principal_id: Optional[str],
                   policy: ListPolicy, conceal: bool = False, label: str = "Resource") -> list:
    """Return the children of a parent that `principal_id` may see, per `policy`."""
    if star is None or any(r is None for r in parent_chain):
        raise NotFound(f"{label} not found")
    policy = ListPolicy(policy)
    if policy is ListPolicy.OWNER:
        if is_star_owner(star, principal_id):
            return list(children)
    elif can_access_chain(parent_chain, star, principal_id, False):
        return list(children)
    elif policy is ListPolicy.GRANTS:
        granted = [c for c in children if has_own_grant(c, principal_id, False)]
        if granted:
            return granted
    logger.debug("Listing under %s refused for principal %s", label, principal_id)
    if conceal:
        raise NotFound(f"{label} not found")
    raise Forbidden()
