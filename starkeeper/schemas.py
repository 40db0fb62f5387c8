"""Request bodies. Clients send camelCase; snake_case is accepted as well."""
import datetime
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

IdList = Union[List[str], str, None]


class StarPayload(BaseModel):
    """Star create/update body. Unknown fields (x, y, z, canView...) are kept so
    they can be logged and dropped by `rights.apply_star_patch`."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    is_private: Optional[bool] = Field(None, alias="isPrivate")
    star_for: Optional[str] = Field(None, alias="starFor")
    color: Optional[str] = None
    word: Optional[str] = None
    activation_date: Optional[datetime.datetime] = Field(None, alias="activationDate")
    long_term_maintenance: Optional[bool] = Field(None, alias="longTermMaintenance")


class RightsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_user_id: Optional[str] = Field(None, alias="targetUserId")
    mode: Optional[str] = None
    action: Optional[str] = None


class CollectionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    room_type: Optional[str] = Field(None, alias="roomType")
    can_view: IdList = Field(None, alias="canView")
    can_edit: IdList = Field(None, alias="canEdit")


class MessagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    can_view: IdList = Field(None, alias="canView")
    can_edit: IdList = Field(None, alias="canEdit")


class TransferPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices("ids", "photoIds", "videoIds"))
    target_album_id: Optional[str] = Field(None, alias="targetAlbumId")


class ActivatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activation_code: Optional[str] = Field(None, alias="activationCode")
    dod: Optional[str] = None
