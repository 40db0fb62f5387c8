"""Create/read/update/delete template shared by every resource kind.

Every operation resolves the parent Star live, checks existence before
capability, and only then reads or mutates. Blob-backed deletes commit the
database change first and release the blob afterwards, so a crash in between
can orphan a blob but never leave a record pointing at a missing one.
"""
import asyncio
import datetime
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from .authorization import (
    Capability,
    can_access_chain,
    filter_listing,
    require_access,
    require_delete,
    require_owner,
)
from .config import parse_interval
from .constants import (
    DEFAULT_SIGN_TTL_DETAIL,
    DEFAULT_SIGN_TTL_LIST,
    MAX_SIGN_TTL,
    _get_extension,
    guess_content_type,
    is_image,
)
from .db_helpers import persist
from .errors import BadRequest, Forbidden, NotFound, ServerError, Unauthorized
from .kinds import ACL_FIELDS, KINDS, ResourceKind, children_of, resolve_policies
from .models import DeathCertificate, Star
from .storage_helpers import (
    build_blob_key,
    compress_image,
    read_staged,
    release_blob_if_unreferenced,
    sign_url,
    store_blob,
)

logger = logging.getLogger(__name__)


@dataclass
class AccessContext:
    """Everything an operation needs about the current request."""
    session: Session
    principal_id: Optional[str]
    settings: Any = None
    storage: Any = None

    @property
    def conceal(self) -> bool:
        return bool(getattr(self.settings, "conceal_forbidden", False))

    def sign_ttl(self, detail: bool = False) -> int:
        raw = getattr(self.settings, "sign_ttl_detail" if detail else "sign_ttl_list", None)
        default = DEFAULT_SIGN_TTL_DETAIL if detail else DEFAULT_SIGN_TTL_LIST
        if not raw:
            return default
        try:
            return min(parse_interval(raw), MAX_SIGN_TTL)
        except ValueError:
            logger.warning("Invalid sign TTL %r; using %ss", raw, default)
            return default


def normalize_ids(value: Any) -> List[str]:
    """Accept a list, a comma-separated string or nothing; drop empty entries."""
    if value is None:
        return []
    if isinstance(value, str):
        entries: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        entries = []
        for v in value:
            if isinstance(v, str) and "," in v:
                entries.extend(v.split(","))
            else:
                entries.append(v)
    else:
        entries = [value]
    ids = []
    for entry in entries:
        if not entry:
            continue
        text = str(entry).strip()
        if text:
            ids.append(text)
    return ids


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _writable(kind: ResourceKind, data: Optional[dict], partial: bool = False) -> dict:
    """Writable fields of `data`. On a partial update an explicit null leaves the stored value alone."""
    values = {}
    for name, value in (data or {}).items():
        if name not in kind.writable_fields:
            continue
        if partial and value is None:
            continue
        if name in ACL_FIELDS:
            values[name] = normalize_ids(value)
        elif value is not None:
            values[name] = value
    return values


def load_star(ctx: AccessContext, star_id: str) -> Star:
    star = ctx.session.get(Star, star_id) if star_id else None
    if star is None:
        raise NotFound("Star not found")
    return star


def _require(ctx: AccessContext, kind: ResourceKind, chain: list, star: Star, capability: Capability,
             label: str) -> None:
    if kind.owner_only:
        require_owner(chain, star, ctx.principal_id, conceal=ctx.conceal, label=label)
    else:
        require_access(chain, star, ctx.principal_id, capability, conceal=ctx.conceal, label=label)


def _load_parents(ctx: AccessContext, kind: ResourceKind, star: Star, collection_id: Optional[str]) -> list:
    if kind.parent is None:
        return []
    parent_kind = KINDS[kind.parent]
    collection = ctx.session.get(parent_kind.model, collection_id) if collection_id else None
    if collection is None or collection.star_id != star.id:
        raise NotFound(f"{parent_kind.label} not found")
    return [collection]


def _parent_link(kind: ResourceKind, star: Star, parents: Sequence[Any]) -> dict:
    link = {kind.parent_field: parents[-1].id if parents else star.id}
    if parents and "star_id" in kind.model.model_fields:
        link["star_id"] = star.id
    return link


def load_resource(ctx: AccessContext, kind: ResourceKind, star_id: str, resource_id: str,
                  collection_id: Optional[str] = None) -> Tuple[Star, list]:
    """Return the Star and the chain ``[collection?, resource]``, or raise NotFound."""
    star = load_star(ctx, star_id)
    parents = _load_parents(ctx, kind, star, collection_id)
    resource = ctx.session.get(kind.model, resource_id) if resource_id else None
    expected_parent = parents[-1].id if parents else star.id
    if resource is None or getattr(resource, kind.parent_field) != expected_parent:
        raise NotFound(f"{kind.label} not found")
    return star, parents + [resource]


def _descendants(session: Session, kind_name: Optional[str], parent_id: str) -> List[Tuple[ResourceKind, Any]]:
    found = []
    for child_kind in children_of(kind_name):
        field = getattr(child_kind.model, child_kind.parent_field)
        for row in session.exec(select(child_kind.model).where(field == parent_id)).all():
            found.append((child_kind, row))
            found.extend(_descendants(session, child_kind.name, row.id))
    return found


def _blob_keys(rows: Iterable[Tuple[ResourceKind, Any]]) -> List[str]:
    keys = []
    for kind, row in rows:
        key = getattr(row, "key", None) if kind.is_blob else None
        if key and key not in keys:
            keys.append(key)
    return keys


async def _release_all(ctx: AccessContext, keys: Iterable[str]) -> None:
    for key in keys:
        await release_blob_if_unreferenced(ctx.session, ctx.storage, key)


def create_collection(ctx: AccessContext, kind: ResourceKind, star_id: str, data: Optional[dict] = None):
    """Create an album or room under a Star. Requires edit on the Star."""
    if not kind.is_collection:
        raise ValueError(f"{kind.name} is not a collection kind")
    star = load_star(ctx, star_id)
    _require(ctx, kind, [], star, Capability.EDIT, "Star")
    record = kind.model(**_writable(kind, data), **_parent_link(kind, star, []))
    record = persist(ctx.session, record)
    logger.info("Created %s %s on star %s by %s", kind.name, record.id, star.id, ctx.principal_id)
    return record


def create_record(ctx: AccessContext, kind: ResourceKind, star_id: str, data: Optional[dict] = None,
                  collection_id: Optional[str] = None):
    """Create an inline (non-blob) item such as a message."""
    star = load_star(ctx, star_id)
    parents = _load_parents(ctx, kind, star, collection_id)
    label = KINDS[kind.parent].label if kind.parent else "Star"
    require_access(parents, star, ctx.principal_id, Capability.EDIT, conceal=ctx.conceal, label=label)

    values = _writable(kind, data)
    if kind.has_sender:
        if not str(values.get("message") or "").strip():
            raise BadRequest("message is required")
        values["sender"] = ctx.principal_id
    record = kind.model(**values, **_parent_link(kind, star, parents))
    record = persist(ctx.session, record)
    logger.info("Created %s %s on star %s by %s", kind.name, record.id, star.id, ctx.principal_id)
    return record


def _prepare_blob(ctx: AccessContext, kind: ResourceKind, file_path: str, filename: str,
                  content_type: Optional[str]) -> Tuple[bytes, str, str]:
    data = read_staged(file_path)
    if not data:
        raise BadRequest("Uploaded file is empty")
    compress = kind.compress_images and bool(getattr(ctx.settings, "compress_photos", True))
    if compress and is_image(filename):
        data = compress_image(data)
        stem = os.path.splitext(filename)[0] or "photo"
        return data, f"{stem}.jpg", "image/jpeg"
    return data, filename, guess_content_type(filename, content_type)


def _file_fields(kind: ResourceKind, filename: str, original_name: Optional[str]) -> dict:
    if "original_name" not in kind.model.model_fields:
        return {}
    return {
        "original_name": original_name or filename,
        "doc_type": _get_extension(filename) or "pdf",
    }


async def create_blob_item(ctx: AccessContext, kind: ResourceKind, star_id: str, file_path: str, filename: str,
                           content_type: Optional[str] = None, data: Optional[dict] = None,
                           collection_id: Optional[str] = None):
    """Upload a file and create the record pointing at it.

    The blob is written before the record; if the commit fails the fresh blob
    is released again.
    """
    if not kind.is_blob:
        raise ValueError(f"{kind.name} is not blob-backed")
    star = load_star(ctx, star_id)
    parents = _load_parents(ctx, kind, star, collection_id)
    label = KINDS[kind.parent].label if kind.parent else "Star"
    require_access(parents, star, ctx.principal_id, Capability.EDIT, conceal=ctx.conceal, label=label)

    body, stored_name, ctype = _prepare_blob(ctx, kind, file_path, filename, content_type)
    key = build_blob_key(star.id, kind.blob_segment, stored_name, collection_id=parents[-1].id if parents else None)
    await store_blob(ctx.storage, key, body, ctype)

    values = _writable(kind, data)
    values.update(_file_fields(kind, filename, values.pop("original_name", None)))
    record = kind.model(key=key, **values, **_parent_link(kind, star, parents))
    try:
        record = persist(ctx.session, record)
    except ServerError:
        await release_blob_if_unreferenced(ctx.session, ctx.storage, key)
        raise
    logger.info("Created %s %s on star %s by %s", kind.name, record.id, star.id, ctx.principal_id)
    return record


def list_children(ctx: AccessContext, kind: ResourceKind, star_id: str, collection_id: Optional[str] = None) -> list:
    """Records of `kind` under a Star (or a collection), filtered per list policy."""
    star = load_star(ctx, star_id)
    parents = _load_parents(ctx, kind, star, collection_id)
    parent_id = parents[-1].id if parents else star.id
    field = getattr(kind.model, kind.parent_field)
    children = ctx.session.exec(
        select(kind.model).where(field == parent_id).order_by(kind.model.created_at)
    ).all()

    public = (
        kind.public_listing
        and bool(getattr(ctx.settings, "public_star_listing", False))
        and not star.is_private
    )
    if public:
        return list(children)
    if ctx.principal_id is None:
        raise Unauthorized("Missing bearer token")

    list_policy, _ = resolve_policies(kind, ctx.settings)
    label = KINDS[kind.parent].label if kind.parent else "Star"
    return filter_listing(children, parents, star, ctx.principal_id, list_policy, conceal=ctx.conceal, label=label)


def get_resource(ctx: AccessContext, kind: ResourceKind, star_id: str, resource_id: str,
                 collection_id: Optional[str] = None):
    star, chain = load_resource(ctx, kind, star_id, resource_id, collection_id)
    _require(ctx, kind, chain, star, Capability.VIEW, kind.label)
    return chain[-1]


def update_resource(ctx: AccessContext, kind: ResourceKind, star_id: str, resource_id: str,
                    patch: Optional[dict] = None, collection_id: Optional[str] = None):
    """Apply the writable fields of `patch`. Requires edit on the resource or a parent."""
    star, chain = load_resource(ctx, kind, star_id, resource_id, collection_id)
    _require(ctx, kind, chain, star, Capability.EDIT, kind.label)
    record = chain[-1]
    for name, value in _writable(kind, patch, partial=True).items():
        setattr(record, name, value)
    record.updated_at = _now()
    record = persist(ctx.session, record)
    logger.info("Updated %s %s by %s", kind.name, record.id, ctx.principal_id)
    return record


async def replace_blob(ctx: AccessContext, kind: ResourceKind, star_id: str, resource_id: str, file_path: str,
                       filename: str, content_type: Optional[str] = None, patch: Optional[dict] = None,
                       collection_id: Optional[str] = None):
    """Swap the file behind a blob-backed record for a freshly uploaded one.

    The new blob gets a new key; the old key is released once the swap is
    committed and no other record still points at it.
    """
    if not kind.is_blob:
        raise ValueError(f"{kind.name} is not blob-backed")
    star, chain = load_resource(ctx, kind, star_id, resource_id, collection_id)
    require_access(chain, star, ctx.principal_id, Capability.EDIT, conceal=ctx.conceal, label=kind.label)
    record = chain[-1]
    parents = chain[:-1]

    body, stored_name, ctype = _prepare_blob(ctx, kind, file_path, filename, content_type)
    new_key = build_blob_key(star.id, kind.blob_segment, stored_name, collection_id=parents[-1].id if parents else None)
    await store_blob(ctx.storage, new_key, body, ctype)

    old_key = record.key
    values = _writable(kind, patch, partial=True)
    values.update(_file_fields(kind, filename, values.pop("original_name", None)))
    for name, value in values.items():
        setattr(record, name, value)
    record.key = new_key
    record.updated_at = _now()
    try:
        record = persist(ctx.session, record)
    except ServerError:
        await release_blob_if_unreferenced(ctx.session, ctx.storage, new_key)
        raise
    logger.info("Replaced file of %s %s (%s -> %s)", kind.name, record.id, old_key, new_key)
    if old_key != new_key:
        await release_blob_if_unreferenced(ctx.session, ctx.storage, old_key)
    return record


async def delete_resource(ctx: AccessContext, kind: ResourceKind, star_id: str, resource_id: str,
                          collection_id: Optional[str] = None):
    """Delete a record and everything under it, then release orphaned blobs."""
    star, chain = load_resource(ctx, kind, star_id, resource_id, collection_id)
    _, delete_policy = resolve_policies(kind, ctx.settings)
    require_delete(delete_policy, chain, star, ctx.principal_id, conceal=ctx.conceal, label=kind.label)
    record = chain[-1]

    doomed = [(kind, record)] + _descendants(ctx.session, kind.name, record.id)
    keys = _blob_keys(doomed)
    persist(ctx.session, deleted=[row for _, row in doomed])
    logger.info("Deleted %s %s (%d record(s)) by %s", kind.name, resource_id, len(doomed), ctx.principal_id)
    await _release_all(ctx, keys)
    return record


async def delete_star(ctx: AccessContext, star_id: str) -> Star:
    """Owner-only. Cascades to every collection and item under the Star."""
    star = load_star(ctx, star_id)
    require_owner([], star, ctx.principal_id, conceal=ctx.conceal, label="Star")

    doomed = _descendants(ctx.session, None, star.id)
    keys = _blob_keys(doomed)
    persist(ctx.session, deleted=[row for _, row in doomed] + [star])
    logger.info("Deleted star %s with %d descendant record(s)", star_id, len(doomed))
    await _release_all(ctx, keys)
    return star


def _target_collection(ctx: AccessContext, kind: ResourceKind, star: Star, target_id: Optional[str]):
    if not target_id:
        raise BadRequest("targetAlbumId is required")
    parent_kind = KINDS[kind.parent]
    target = ctx.session.get(parent_kind.model, target_id)
    if target is None or target.star_id != star.id:
        raise NotFound(f"{parent_kind.label} not found")
    require_access([target], star, ctx.principal_id, Capability.EDIT, conceal=ctx.conceal, label=parent_kind.label)
    return target


def _items_in(ctx: AccessContext, kind: ResourceKind, collection, item_ids: Sequence[str]) -> list:
    items = []
    for item_id in dict.fromkeys(normalize_ids(item_ids)):
        item = ctx.session.get(kind.model, item_id)
        if item is None or getattr(item, kind.parent_field) != collection.id:
            logger.debug("Skipping %s %s: not in %s", kind.name, item_id, collection.id)
            continue
        items.append(item)
    return items


def copy_items(ctx: AccessContext, kind: ResourceKind, star_id: str, source_id: str,
               item_ids: Sequence[str], target_id: str) -> Tuple[list, List[str]]:
    """Copy items into another collection of the same Star.

    Copies share the source blob key. Items whose key is already present in
    the target are skipped. Returns ``(created, skipped_ids)``.
    """
    if not normalize_ids(item_ids):
        raise BadRequest("No items given")
    star = load_star(ctx, star_id)
    source = _load_parents(ctx, kind, star, source_id)
    label = KINDS[kind.parent].label
    require_access(source, star, ctx.principal_id, Capability.VIEW, conceal=ctx.conceal, label=label)
    target = _target_collection(ctx, kind, star, target_id)

    field = getattr(kind.model, kind.parent_field)
    existing = set(ctx.session.exec(select(kind.model.key).where(field == target.id)).all())
    created, skipped = [], []
    for item in _items_in(ctx, kind, source[0], item_ids):
        if item.key in existing:
            skipped.append(item.id)
            continue
        existing.add(item.key)
        created.append(kind.model(key=item.key, **_parent_link(kind, star, [target])))
    if created:
        persist(ctx.session, *created)
    logger.info("Copied %d %s(s) into %s, skipped %d", len(created), kind.name, target.id, len(skipped))
    return created, skipped


def move_items(ctx: AccessContext, kind: ResourceKind, star_id: str, source_id: str,
               item_ids: Sequence[str], target_id: str) -> list:
    """Move items between collections of the same Star. Requires edit on both."""
    if not normalize_ids(item_ids):
        raise BadRequest("No items given")
    star = load_star(ctx, star_id)
    source = _load_parents(ctx, kind, star, source_id)
    label = KINDS[kind.parent].label
    require_access(source, star, ctx.principal_id, Capability.EDIT, conceal=ctx.conceal, label=label)
    target = _target_collection(ctx, kind, star, target_id)

    moved = []
    if target.id == source[0].id:
        return moved
    for item in _items_in(ctx, kind, source[0], item_ids):
        setattr(item, kind.parent_field, target.id)
        item.updated_at = _now()
        moved.append(item)
    if moved:
        persist(ctx.session, *moved)
    logger.info("Moved %d %s(s) from %s to %s", len(moved), kind.name, source[0].id, target.id)
    return moved


def _reference_chain(ctx: AccessContext, kind: ResourceKind, row) -> Tuple[Optional[Star], list]:
    if kind.parent is None:
        return ctx.session.get(Star, row.star_id), [row]
    collection = ctx.session.get(KINDS[kind.parent].model, getattr(row, kind.parent_field))
    if collection is None:
        return None, []
    return ctx.session.get(Star, collection.star_id), [collection, row]


def require_blob_access(ctx: AccessContext, key: str) -> None:
    """Allow signing `key` only if some record the principal can view points at it."""
    referenced = False
    for kind in KINDS.values():
        if not kind.is_blob:
            continue
        for row in ctx.session.exec(select(kind.model).where(kind.model.key == key)).all():
            referenced = True
            star, chain = _reference_chain(ctx, kind, row)
            if star is not None and can_access_chain(chain, star, ctx.principal_id, False):
                return
    certificate = ctx.session.exec(select(DeathCertificate).where(DeathCertificate.file_key == key)).first()
    if certificate is not None:
        referenced = True
        if certificate.user_id == ctx.principal_id:
            return
    if not referenced or ctx.conceal:
        raise NotFound("File not found")
    logger.debug("Signing %s refused for principal %s", key, ctx.principal_id)
    raise Forbidden()


async def present(ctx: AccessContext, kind: ResourceKind, record, detail: bool = False) -> dict:
    """Serialize a record; blob-backed kinds get a time-limited `url`."""
    payload = record.model_dump()
    if kind.is_blob:
        payload["url"] = await sign_url(ctx.storage, record.key, ctx.sign_ttl(detail))
    return payload


async def present_many(ctx: AccessContext, kind: ResourceKind, records: Sequence[Any]) -> list:
    return list(await asyncio.gather(*(present(ctx, kind, r) for r in records)))
