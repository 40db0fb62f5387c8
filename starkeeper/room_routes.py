"""3D rooms, the media placed in them, and owner-only VR rooms.

The room list and room media listings may be served anonymously for
non-private stars when `public_star_listing` is enabled; room messages and
every other endpoint need a token.
"""
from fastapi import APIRouter

from .dependencies import collection_scope
from .kinds import ROOM_AUDIO, ROOM_DOCUMENT, ROOM_MESSAGE, ROOM_PHOTO, ROOM_VIDEO, THREE_D_ROOM, VR_ROOM
from .route_helpers import add_blob_item_routes, add_collection_routes, add_message_routes

router = APIRouter(prefix="/api/stars", tags=["rooms"])

ROOMS = "/{star_id}/three-d-rooms"
ROOM_ITEMS = ROOMS + "/{collection_id}"

add_collection_routes(router, ROOMS, THREE_D_ROOM)
add_blob_item_routes(router, ROOM_ITEMS + "/photos", ROOM_PHOTO, collection_scope)
add_blob_item_routes(router, ROOM_ITEMS + "/videos", ROOM_VIDEO, collection_scope)
add_blob_item_routes(router, ROOM_ITEMS + "/audios", ROOM_AUDIO, collection_scope)
add_blob_item_routes(router, ROOM_ITEMS + "/documents", ROOM_DOCUMENT, collection_scope)
add_message_routes(router, ROOM_ITEMS + "/messages", ROOM_MESSAGE, collection_scope)

add_collection_routes(router, "/{star_id}/vr-rooms", VR_ROOM)
