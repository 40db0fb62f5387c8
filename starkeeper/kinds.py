"""Registry of the resource kinds hanging off a Star.

Each `ResourceKind` describes where a record lives in the hierarchy and which
policies govern it, so `lifecycle` can run one create/read/update/delete
template for every entity type.
"""
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .authorization import DeletePolicy, ListPolicy
from .models import (
    Audio,
    Document,
    Message,
    Photo,
    PhotoAlbum,
    RoomAudio,
    RoomDocument,
    RoomMessage,
    RoomPhoto,
    RoomVideo,
    ThreeDRoom,
    Video,
    VideoAlbum,
    VRRoom,
)

ACL_FIELDS = frozenset({"can_view", "can_edit"})


@dataclass(frozen=True)
class ResourceKind:
    name: str
    model: Any
    label: str
    parent_field: str
    # Name of the collection kind this lives in; None for direct children of a Star.
    parent: Optional[str] = None
    has_acl: bool = True
    # Key segment for blob-backed kinds; None for inline records.
    blob_segment: Optional[str] = None
    list_policy: ListPolicy = ListPolicy.PARENT
    delete_policy: DeletePolicy = DeletePolicy.EDITOR
    fields: FrozenSet[str] = frozenset()
    has_sender: bool = False
    compress_images: bool = False
    # Listed without a credential on non-private stars when `public_star_listing` is on.
    public_listing: bool = False
    # Every operation, not just list and delete, is reserved to the star owner.
    owner_only: bool = False

    @property
    def is_collection(self) -> bool:
        return self.parent is None and self.blob_segment is None and not self.has_sender

    @property
    def is_blob(self) -> bool:
        return self.blob_segment is not None

    @property
    def writable_fields(self) -> FrozenSet[str]:
        return self.fields | ACL_FIELDS if self.has_acl else self.fields


KINDS: Dict[str, ResourceKind] = {}


def register(kind: ResourceKind) -> ResourceKind:
    KINDS[kind.name] = kind
    return kind


PHOTO_ALBUM = register(ResourceKind(
    name="photo_album", model=PhotoAlbum, label="Photo album", parent_field="star_id",
    list_policy=ListPolicy.GRANTS, fields=frozenset({"name"}),
))
VIDEO_ALBUM = register(ResourceKind(
    name="video_album", model=VideoAlbum, label="Video album", parent_field="star_id",
    list_policy=ListPolicy.GRANTS, fields=frozenset({"name"}),
))
THREE_D_ROOM = register(ResourceKind(
    name="three_d_room", model=ThreeDRoom, label="Room", parent_field="star_id",
    fields=frozenset({"name", "room_type"}), public_listing=True,
))
VR_ROOM = register(ResourceKind(
    name="vr_room", model=VRRoom, label="VR room", parent_field="star_id",
    list_policy=ListPolicy.OWNER, delete_policy=DeletePolicy.OWNER, owner_only=True,
    fields=frozenset({"name", "room_type"}),
))

PHOTO = register(ResourceKind(
    name="photo", model=Photo, label="Photo", parent="photo_album", parent_field="photo_album_id",
    has_acl=False, blob_segment="photos", compress_images=True,
))
VIDEO = register(ResourceKind(
    name="video", model=Video, label="Video", parent="video_album", parent_field="video_album_id",
    has_acl=False, blob_segment="videos",
))

AUDIO = register(ResourceKind(
    name="audio", model=Audio, label="Audio", parent_field="star_id", blob_segment="audios",
    list_policy=ListPolicy.OWNER, fields=frozenset({"title", "description"}),
))
DOCUMENT = register(ResourceKind(
    name="document", model=Document, label="Document", parent_field="star_id", blob_segment="documents",
    list_policy=ListPolicy.OWNER, delete_policy=DeletePolicy.OWNER, fields=frozenset({"original_name"}),
))
MESSAGE = register(ResourceKind(
    name="message", model=Message, label="Message", parent_field="star_id",
    fields=frozenset({"message"}), has_sender=True,
))

ROOM_PHOTO = register(ResourceKind(
    name="room_photo", model=RoomPhoto, label="Photo", parent="three_d_room", parent_field="room_id",
    has_acl=False, blob_segment="room-photos", compress_images=True, public_listing=True,
))
ROOM_VIDEO = register(ResourceKind(
    name="room_video", model=RoomVideo, label="Video", parent="three_d_room", parent_field="room_id",
    has_acl=False, blob_segment="room-videos", public_listing=True,
))
ROOM_AUDIO = register(ResourceKind(
    name="room_audio", model=RoomAudio, label="Audio", parent="three_d_room", parent_field="room_id",
    has_acl=False, blob_segment="room-audios", fields=frozenset({"title"}), public_listing=True,
))
ROOM_DOCUMENT = register(ResourceKind(
    name="room_document", model=RoomDocument, label="Document", parent="three_d_room", parent_field="room_id",
    blob_segment="room-documents", list_policy=ListPolicy.OWNER, delete_policy=DeletePolicy.OWNER,
    fields=frozenset({"original_name"}), public_listing=True,
))
ROOM_MESSAGE = register(ResourceKind(
    name="room_message", model=RoomMessage, label="Message", parent="three_d_room", parent_field="room_id",
    fields=frozenset({"message"}), has_sender=True,
))


def children_of(kind_name: Optional[str]) -> Tuple[ResourceKind, ...]:
    """Kinds whose parent is `kind_name` (None: direct children of a Star)."""
    return tuple(k for k in KINDS.values() if k.parent == kind_name)


def resolve_policies(kind: ResourceKind, settings: Any = None) -> Tuple[ListPolicy, DeletePolicy]:
    """Effective list and delete policy for `kind`, honouring settings overrides."""
    list_overrides = getattr(settings, "list_policy_overrides", None) or {}
    delete_overrides = getattr(settings, "delete_policy_overrides", None) or {}
    list_policy = ListPolicy(list_overrides.get(kind.name, kind.list_policy))
    delete_policy = DeletePolicy(delete_overrides.get(kind.name, kind.delete_policy))
    return list_policy, delete_policy
