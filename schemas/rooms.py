from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class CreateRoomRequest(BaseModel):
    name: Optional[str] = None

class UserSummary(BaseModel):
    id: str
    username: str

class RoomResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    created_by: str = Field(alias="createdBy")
    members: list[str]
    created_at: str = Field(alias="createdAt")

class RoomDetailsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    created_by: Optional[UserSummary] = Field(None, alias="createdBy")
    members: list[UserSummary]
    created_at: str = Field(alias="createdAt")
