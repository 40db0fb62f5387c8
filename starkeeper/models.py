import datetime
import uuid
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _id_list():
    # One Column per table; SQLAlchemy columns cannot be shared between tables.
    return Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class User(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    country: Optional[str] = None
    dob: Optional[datetime.date] = None
    dod: Optional[datetime.date] = None
    is_alive: bool = Field(default=True)
    plan: str = Field(default="EXPLORER")
    contacts: List[str] = _id_list()
    activation_code: Optional[str] = Field(default=None, index=True, unique=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Star(SQLModel, table=True):
    """Root of the ownership hierarchy.

    `user_id` and the x/y/z placement are fixed at creation; `can_view` and
    `can_edit` only change through `rights.update_rights`.
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    is_private: bool = Field(default=False)
    star_for: str = Field(default="myself")
    color: Optional[str] = None
    word: Optional[str] = None
    activation_date: Optional[datetime.datetime] = None
    long_term_maintenance: bool = Field(default=False)
    x: Optional[float] = Field(default=None, index=True)
    y: Optional[float] = Field(default=None, index=True)
    z: Optional[float] = Field(default=None, index=True)
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class PhotoAlbum(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    name: Optional[str] = None
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class VideoAlbum(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    name: Optional[str] = None
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class VRRoom(SQLModel, table=True):
    """Owner-only room; its grant lists are stored but every operation is reserved to the star owner."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    room_type: str = Field(default="basic")
    name: Optional[str] = None
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class ThreeDRoom(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    room_type: str = Field(default="basic")
    name: Optional[str] = None
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Photo(SQLModel, table=True):
    """Album photo; access is inherited from the album and its star only."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    photo_album_id: str = Field(index=True)
    key: str = Field(index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Video(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    video_album_id: str = Field(index=True)
    key: str = Field(index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Audio(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    key: str = Field(index=True)
    title: str = Field(default="Untitled")
    description: str = Field(default="")
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Document(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    key: str = Field(index=True)
    original_name: str
    doc_type: str = Field(default="pdf")
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Message(SQLModel, table=True):
    """Inline text item. `sender` is an implicit editor of the message."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    star_id: str = Field(index=True)
    message: str
    sender: str = Field(index=True)
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class RoomPhoto(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    room_id: str = Field(index=True)
    star_id: str = Field(index=True)
    key: str = Field(index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class RoomVideo(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    room_id: str = Field(index=True)
    star_id: str = Field(index=True)
    key: str = Field(index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class RoomAudio(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    room_id: str = Field(index=True)
    star_id: str = Field(index=True)
    key: str = Field(index=True)
    title: str = Field(default="Untitled")
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class RoomDocument(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    room_id: str = Field(index=True)
    star_id: str = Field(index=True)
    key: str = Field(index=True)
    original_name: str
    doc_type: str = Field(default="pdf")
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class RoomMessage(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    room_id: str = Field(index=True)
    star_id: str = Field(index=True)
    message: str
    sender: str = Field(index=True)
    can_view: List[str] = _id_list()
    can_edit: List[str] = _id_list()
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class DeathCertificate(SQLModel, table=True):
    """Evidence uploaded during the deceased-activation workflow. Append-only."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    file_key: str = Field(index=True)
    verified: bool = Field(default=False)
    uploaded_at: datetime.datetime = Field(default_factory=_utcnow)


# Tables whose rows point at a blob through their `key` column.
BLOB_MODELS = (Photo, Video, Audio, Document, RoomPhoto, RoomVideo, RoomAudio, RoomDocument)
