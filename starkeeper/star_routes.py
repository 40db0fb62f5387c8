import logging

from fastapi import APIRouter, Depends
from sqlmodel import select

from .authorization import Capability, can_see_star, require_access
from .db_helpers import persist
from .dependencies import access_context
from .errors import NotFound
from .lifecycle import AccessContext, delete_star, load_star
from .models import Star
from .placement import allocate_spawn_position
from .rights import STAR_MUTABLE_FIELDS, apply_star_patch, update_rights
from .schemas import RightsPayload, StarPayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stars", tags=["stars"])


def _provided(payload: StarPayload) -> dict:
    return {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}


@router.get("")
def list_own_stars(ctx: AccessContext = Depends(access_context)):
    rows = ctx.session.exec(
        select(Star).where(Star.user_id == ctx.principal_id).order_by(Star.created_at)
    ).all()
    return [s.model_dump() for s in rows]


@router.get("/shared")
def list_shared_stars(ctx: AccessContext = Depends(access_context)):
    """Stars owned by someone else on which the caller holds view or edit rights."""
    rows = ctx.session.exec(
        select(Star).where(Star.user_id != ctx.principal_id).order_by(Star.created_at)
    ).all()
    return [s.model_dump() for s in rows if can_see_star(s, ctx.principal_id)]


@router.post("", status_code=201)
def create_star(payload: StarPayload, ctx: AccessContext = Depends(access_context)):
    values = {k: v for k, v in _provided(payload).items() if k in STAR_MUTABLE_FIELDS}
    x, y, z = allocate_spawn_position(ctx.session)
    star = Star(user_id=ctx.principal_id, x=x, y=y, z=z, **values)
    star = persist(ctx.session, star)
    logger.info("Created star %s for %s at (%s, %s, %s)", star.id, ctx.principal_id, x, y, z)
    return star.model_dump()


@router.get("/{star_id}")
def get_star(star_id: str, ctx: AccessContext = Depends(access_context)):
    star = load_star(ctx, star_id)
    require_access([], star, ctx.principal_id, Capability.VIEW, conceal=ctx.conceal, label="Star")
    return star.model_dump()


@router.put("/{star_id}")
def update_star(star_id: str, payload: StarPayload, ctx: AccessContext = Depends(access_context)):
    """Update the star's own fields. Placement, owner and rights lists are never taken from the body."""
    star = load_star(ctx, star_id)
    require_access([], star, ctx.principal_id, Capability.EDIT, conceal=ctx.conceal, label="Star")
    apply_star_patch(star, _provided(payload))
    star = persist(ctx.session, star)
    return star.model_dump()


@router.delete("/{star_id}")
async def remove_star(star_id: str, ctx: AccessContext = Depends(access_context)):
    star = await delete_star(ctx, star_id)
    return {"status": "deleted", "id": star.id}


@router.patch("/{star_id}/rights")
def update_star_rights(star_id: str, payload: RightsPayload, ctx: AccessContext = Depends(access_context)):
    star = load_star(ctx, star_id)
    if ctx.conceal and not can_see_star(star, ctx.principal_id):
        raise NotFound("Star not found")
    update_rights(star, ctx.principal_id, payload.target_user_id, payload.mode, payload.action)
    star = persist(ctx.session, star)
    return {"id": star.id, "can_view": star.can_view, "can_edit": star.can_edit}
