"""Photo and video albums and the items inside them."""
from fastapi import APIRouter, Depends

from . import lifecycle
from .dependencies import Scope, access_context, collection_scope
from .kinds import PHOTO, PHOTO_ALBUM, VIDEO, VIDEO_ALBUM, ResourceKind
from .lifecycle import AccessContext
from .route_helpers import add_blob_item_routes, add_collection_routes
from .schemas import TransferPayload

router = APIRouter(prefix="/api/stars", tags=["albums"])


def _add_transfer_routes(path: str, kind: ResourceKind) -> None:
    @router.post(path + "/copy", name=f"copy_{kind.name}s")
    def copy_items(payload: TransferPayload, scope: Scope = Depends(collection_scope),
                   ctx: AccessContext = Depends(access_context)):
        created, skipped = lifecycle.copy_items(
            ctx, kind, scope.star_id, scope.collection_id, payload.ids, payload.target_album_id,
        )
        return {
            "message": f"Copied {len(created)}, skipped {len(skipped)}",
            "copied_ids": [c.id for c in created],
            "skipped_ids": skipped,
        }

    @router.post(path + "/move", name=f"move_{kind.name}s")
    def move_items(payload: TransferPayload, scope: Scope = Depends(collection_scope),
                   ctx: AccessContext = Depends(access_context)):
        moved = lifecycle.move_items(
            ctx, kind, scope.star_id, scope.collection_id, payload.ids, payload.target_album_id,
        )
        return {"message": f"Moved {len(moved)}", "moved_ids": [m.id for m in moved]}


for _collection_path, _collection_kind, _item_path, _item_kind in (
    ("photo-albums", PHOTO_ALBUM, "photos", PHOTO),
    ("video-albums", VIDEO_ALBUM, "videos", VIDEO),
):
    add_collection_routes(router, f"/{{star_id}}/{_collection_path}", _collection_kind)
    _items = f"/{{star_id}}/{_collection_path}/{{collection_id}}/{_item_path}"
    _add_transfer_routes(_items, _item_kind)
    add_blob_item_routes(router, _items, _item_kind, collection_scope)
