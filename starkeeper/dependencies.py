"""FastAPI dependencies shared by the route modules."""
from dataclasses import dataclass
from typing import Iterator, List, Optional

from fastapi import Depends, Form, Request

from .auth import optional_principal, require_principal
from .db_helpers import session_scope
from .lifecycle import AccessContext


@dataclass(frozen=True)
class Scope:
    """Path location of a resource: its Star and, for nested kinds, its collection."""
    star_id: str
    collection_id: Optional[str] = None


def star_scope(star_id: str) -> Scope:
    return Scope(star_id=star_id)


def collection_scope(star_id: str, collection_id: str) -> Scope:
    return Scope(star_id=star_id, collection_id=collection_id)


def _context(request: Request, principal_id: Optional[str]) -> Iterator[AccessContext]:
    state = request.app.state
    with session_scope(state.engine) as session:
        yield AccessContext(
            session=session,
            principal_id=principal_id,
            settings=getattr(state, "settings", None),
            storage=getattr(state, "storage", None),
        )


def access_context(request: Request, principal_id: str = Depends(require_principal)) -> Iterator[AccessContext]:
    yield from _context(request, principal_id)


def optional_access_context(request: Request,
                            principal_id: Optional[str] = Depends(optional_principal)) -> Iterator[AccessContext]:
    yield from _context(request, principal_id)


def upload_form(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    original_name: Optional[str] = Form(None, alias="originalName"),
    can_view: Optional[List[str]] = Form(None, alias="canView"),
    can_edit: Optional[List[str]] = Form(None, alias="canEdit"),
) -> dict:
    """Metadata fields sent alongside a multipart file; unset fields are omitted."""
    fields = {
        "title": title,
        "description": description,
        "original_name": original_name,
        "can_view": can_view,
        "can_edit": can_edit,
    }
    return {k: v for k, v in fields.items() if v is not None}
