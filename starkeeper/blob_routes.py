import logging
from io import BytesIO

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from .constants import DEFAULT_SIGN_TTL_LIST, MAX_SIGN_TTL, guess_content_type
from .dependencies import access_context
from .errors import BadRequest, Forbidden
from .lifecycle import AccessContext, require_blob_access
from .storage_helpers import fetch_blob, sign_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/blobs", tags=["blobs"])


@router.get("/sign")
async def sign_blob(key: str = "", expires: int = Query(DEFAULT_SIGN_TTL_LIST, ge=1, le=MAX_SIGN_TTL),
                    ctx: AccessContext = Depends(access_context)):
    """Signed URL for a key referenced by a record the caller can view."""
    key = key.strip()
    if not key:
        raise BadRequest("key required")
    require_blob_access(ctx, key)
    return {"url": await sign_url(ctx.storage, key, expires)}


@router.get("/download")
async def download_blob(request: Request, token: str = ""):
    """Proxy for WebDAV-backed stores. The signed token is the only credential."""
    jwt_manager = getattr(request.app.state, 'jwt_manager', None)
    key = jwt_manager.verify_download_token(token) if (jwt_manager is not None and token) else None
    if not key:
        raise Forbidden("Invalid or expired token")
    data = await fetch_blob(getattr(request.app.state, 'storage', None), key)
    return StreamingResponse(BytesIO(data), media_type=guess_content_type(key))
