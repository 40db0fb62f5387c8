"""Builders that attach the standard CRUD endpoints for a resource kind to a router.

Every kind gets the same template (list, create, detail, update, delete);
only the create/update bodies differ between collections, inline messages
and file-backed items.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, File, UploadFile

from . import lifecycle
from .dependencies import Scope, access_context, optional_access_context, star_scope, upload_form
from .kinds import ResourceKind
from .lifecycle import AccessContext
from .schemas import CollectionPayload, MessagePayload
from .storage_helpers import staged_upload

logger = logging.getLogger(__name__)


def _deleted(record) -> Dict[str, Any]:
    return {"status": "deleted", "id": record.id}


def _tmp_dir(ctx: AccessContext) -> Optional[str]:
    return getattr(ctx.settings, "upload_tmp_dir", None)


def _listing_context(kind: ResourceKind) -> Callable:
    return optional_access_context if kind.public_listing else access_context


def add_collection_routes(router: APIRouter, path: str, kind: ResourceKind) -> None:
    """Albums and rooms: JSON bodies, children of a Star."""

    @router.get(path, name=f"list_{kind.name}s")
    def list_collections(scope: Scope = Depends(star_scope), ctx: AccessContext = Depends(_listing_context(kind))):
        return [r.model_dump() for r in lifecycle.list_children(ctx, kind, scope.star_id)]

    @router.post(path, status_code=201, name=f"create_{kind.name}")
    def create_collection(payload: CollectionPayload, scope: Scope = Depends(star_scope),
                          ctx: AccessContext = Depends(access_context)):
        record = lifecycle.create_collection(ctx, kind, scope.star_id, payload.model_dump(exclude_unset=True))
        return record.model_dump()

    @router.get(path + "/{resource_id}", name=f"get_{kind.name}")
    def get_collection(resource_id: str, scope: Scope = Depends(star_scope),
                       ctx: AccessContext = Depends(access_context)):
        return lifecycle.get_resource(ctx, kind, scope.star_id, resource_id).model_dump()

    @router.put(path + "/{resource_id}", name=f"update_{kind.name}")
    def update_collection(resource_id: str, payload: CollectionPayload, scope: Scope = Depends(star_scope),
                          ctx: AccessContext = Depends(access_context)):
        record = lifecycle.update_resource(ctx, kind, scope.star_id, resource_id,
                                           payload.model_dump(exclude_unset=True))
        return record.model_dump()

    @router.delete(path + "/{resource_id}", name=f"delete_{kind.name}")
    async def delete_collection(resource_id: str, scope: Scope = Depends(star_scope),
                                ctx: AccessContext = Depends(access_context)):
        return _deleted(await lifecycle.delete_resource(ctx, kind, scope.star_id, resource_id))


def add_blob_item_routes(router: APIRouter, path: str, kind: ResourceKind, scope_dep: Callable) -> None:
    """File-backed items: multipart upload, signed URLs in every response."""

    @router.get(path, name=f"list_{kind.name}s")
    async def list_items(scope: Scope = Depends(scope_dep),
                         ctx: AccessContext = Depends(_listing_context(kind))):
        records = lifecycle.list_children(ctx, kind, scope.star_id, scope.collection_id)
        return await lifecycle.present_many(ctx, kind, records)

    @router.post(path + "/upload", status_code=201, name=f"upload_{kind.name}")
    async def upload_item(file: UploadFile = File(...), meta: dict = Depends(upload_form),
                          scope: Scope = Depends(scope_dep), ctx: AccessContext = Depends(access_context)):
        with staged_upload(file, _tmp_dir(ctx)) as tmp_path:
            record = await lifecycle.create_blob_item(
                ctx, kind, scope.star_id, tmp_path, file.filename, file.content_type,
                data=meta, collection_id=scope.collection_id,
            )
        return await lifecycle.present(ctx, kind, record, detail=True)

    @router.get(path + "/{item_id}", name=f"get_{kind.name}")
    async def get_item(item_id: str, scope: Scope = Depends(scope_dep),
                       ctx: AccessContext = Depends(access_context)):
        record = lifecycle.get_resource(ctx, kind, scope.star_id, item_id, scope.collection_id)
        return await lifecycle.present(ctx, kind, record, detail=True)

    @router.put(path + "/{item_id}", name=f"update_{kind.name}")
    async def update_item(item_id: str, file: Optional[UploadFile] = File(None), meta: dict = Depends(upload_form),
                          scope: Scope = Depends(scope_dep), ctx: AccessContext = Depends(access_context)):
        if file is not None and file.filename:
            with staged_upload(file, _tmp_dir(ctx)) as tmp_path:
                record = await lifecycle.replace_blob(
                    ctx, kind, scope.star_id, item_id, tmp_path, file.filename, file.content_type,
                    patch=meta, collection_id=scope.collection_id,
                )
        else:
            record = lifecycle.update_resource(ctx, kind, scope.star_id, item_id, meta, scope.collection_id)
        return await lifecycle.present(ctx, kind, record, detail=True)

    @router.delete(path + "/{item_id}", name=f"delete_{kind.name}")
    async def delete_item(item_id: str, scope: Scope = Depends(scope_dep),
                          ctx: AccessContext = Depends(access_context)):
        return _deleted(await lifecycle.delete_resource(ctx, kind, scope.star_id, item_id, scope.collection_id))


def add_message_routes(router: APIRouter, path: str, kind: ResourceKind, scope_dep: Callable) -> None:
    """Inline text items; the creating principal is recorded as sender."""

    @router.get(path, name=f"list_{kind.name}s")
    def list_messages(scope: Scope = Depends(scope_dep),
                      ctx: AccessContext = Depends(_listing_context(kind))) -> List[dict]:
        records = lifecycle.list_children(ctx, kind, scope.star_id, scope.collection_id)
        return [r.model_dump() for r in records]

    @router.post(path, status_code=201, name=f"create_{kind.name}")
    def create_message(payload: MessagePayload, scope: Scope = Depends(scope_dep),
                       ctx: AccessContext = Depends(access_context)):
        record = lifecycle.create_record(ctx, kind, scope.star_id, payload.model_dump(exclude_unset=True),
                                         scope.collection_id)
        return record.model_dump()

    @router.get(path + "/{item_id}", name=f"get_{kind.name}")
    def get_message(item_id: str, scope: Scope = Depends(scope_dep), ctx: AccessContext = Depends(access_context)):
        return lifecycle.get_resource(ctx, kind, scope.star_id, item_id, scope.collection_id).model_dump()

    @router.put(path + "/{item_id}", name=f"update_{kind.name}")
    def update_message(item_id: str, payload: MessagePayload, scope: Scope = Depends(scope_dep),
                       ctx: AccessContext = Depends(access_context)):
        record = lifecycle.update_resource(ctx, kind, scope.star_id, item_id,
                                           payload.model_dump(exclude_unset=True), scope.collection_id)
        return record.model_dump()

    @router.delete(path + "/{item_id}", name=f"delete_{kind.name}")
    async def delete_message(item_id: str, scope: Scope = Depends(scope_dep),
                             ctx: AccessContext = Depends(access_context)):
        return _deleted(await lifecycle.delete_resource(ctx, kind, scope.star_id, item_id, scope.collection_id))
