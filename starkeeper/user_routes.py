import datetime
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from sqlalchemy import func
from sqlmodel import select

from .constants import USER_SEARCH_LIMIT, guess_content_type
from .db_helpers import persist, session_scope
from .dependencies import access_context
from .errors import BadRequest, Conflict, NotFound, ServerError
from .lifecycle import AccessContext
from .models import DeathCertificate, User
from .schemas import ActivatePayload
from .storage_helpers import build_user_blob_key, read_staged, release_blob_if_unreferenced, staged_upload, store_blob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


def _summary(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }


def _me(ctx: AccessContext) -> User:
    me = ctx.session.get(User, ctx.principal_id)
    if me is None:
        raise NotFound("User not found")
    return me


def _parse_date(value: str) -> datetime.date:
    text = value.strip()
    try:
        return datetime.date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise BadRequest("Invalid date format for dod") from exc


@router.get("/me")
def get_me(ctx: AccessContext = Depends(access_context)):
    me = _me(ctx)
    return me.model_dump(exclude={"activation_code"})


@router.get("/search")
def search_users(username: str = "", ctx: AccessContext = Depends(access_context)):
    """Case-insensitive prefix search on username."""
    q = username.strip().lower()
    if not q:
        raise BadRequest("username query missing")
    rows = ctx.session.exec(
        select(User)
        .where(func.lower(User.username).startswith(q, autoescape=True))
        .order_by(User.username)
        .limit(USER_SEARCH_LIMIT)
    ).all()
    return {"users": [_summary(u) for u in rows]}


@router.get("/me/contacts")
def list_contacts(ctx: AccessContext = Depends(access_context)):
    me = _me(ctx)
    contacts = []
    for contact_id in me.contacts or []:
        user = ctx.session.get(User, contact_id)
        if user is not None:
            contacts.append(_summary(user))
    return {"contacts": contacts}


@router.post("/me/death-certificates", status_code=201)
async def upload_death_certificate(file: UploadFile = File(...), ctx: AccessContext = Depends(access_context)):
    me = _me(ctx)
    with staged_upload(file, getattr(ctx.settings, "upload_tmp_dir", None)) as tmp_path:
        data = read_staged(tmp_path)
    if not data:
        raise BadRequest("Uploaded file is empty")

    key = build_user_blob_key(me.id, "death-certificates", file.filename)
    await store_blob(ctx.storage, key, data, guess_content_type(file.filename, file.content_type))
    record = DeathCertificate(user_id=me.id, file_key=key)
    try:
        record = persist(ctx.session, record)
    except ServerError:
        await release_blob_if_unreferenced(ctx.session, ctx.storage, key)
        raise
    logger.info("Death certificate %s uploaded for user %s", record.id, me.id)
    return record.model_dump()


@router.post("/activate")
def activate(payload: ActivatePayload, request: Request):
    """Mark the user holding `activationCode` as deceased. No bearer token required."""
    code = (payload.activation_code or "").strip()
    if not code:
        raise BadRequest("Activation code is required")
    dod: Optional[datetime.date] = _parse_date(payload.dod) if payload.dod else None

    with session_scope(request.app.state.engine) as session:
        user = session.exec(select(User).where(User.activation_code == code)).first()
        if user is None:
            raise NotFound("Invalid activation code")
        if not user.is_alive:
            raise BadRequest("User is already deactivated")
        user.is_alive = False
        if dod is not None:
            user.dod = dod
        user.updated_at = datetime.datetime.now(datetime.timezone.utc)
        user = persist(session, user)
        logger.info("User %s activated as deceased", user.id)
        return {"message": "User successfully deactivated", "user_id": user.id, "dod": user.dod}


@router.post("/{contact_id}/contacts", status_code=201)
def add_contact(contact_id: str, ctx: AccessContext = Depends(access_context)):
    if contact_id == ctx.principal_id:
        raise BadRequest("Cannot add yourself")
    me = _me(ctx)
    contact = ctx.session.get(User, contact_id)
    if contact is None:
        raise NotFound("User not found")
    if contact_id in (me.contacts or []):
        raise Conflict("Already in contacts")
    me.contacts = list(me.contacts or []) + [contact_id]
    me.updated_at = datetime.datetime.now(datetime.timezone.utc)
    persist(ctx.session, me)
    return {"message": "Contact added", "contact": _summary(contact)}


@router.delete("/{contact_id}/contacts")
def remove_contact(contact_id: str, ctx: AccessContext = Depends(access_context)):
    if contact_id == ctx.principal_id:
        raise BadRequest("Cannot remove yourself")
    me = _me(ctx)
    if contact_id not in (me.contacts or []):
        raise NotFound("Contact not found")
    me.contacts = [c for c in me.contacts if c != contact_id]
    me.updated_at = datetime.datetime.now(datetime.timezone.utc)
    persist(ctx.session, me)
    return {"message": "Contact removed"}
