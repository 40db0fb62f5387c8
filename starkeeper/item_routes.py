"""Items attached directly to a Star: audios, documents and messages."""
from fastapi import APIRouter

from .dependencies import star_scope
from .kinds import AUDIO, DOCUMENT, MESSAGE
from .route_helpers import add_blob_item_routes, add_message_routes

router = APIRouter(prefix="/api/stars", tags=["items"])

add_blob_item_routes(router, "/{star_id}/audios", AUDIO, star_scope)
add_blob_item_routes(router, "/{star_id}/documents", DOCUMENT, star_scope)
add_message_routes(router, "/{star_id}/messages", MESSAGE, star_scope)
