"""
schemas/group.py
----------------
Groups of the connected account and sending to them.
"""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class GroupRead(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    name: str
    participants: int
    creation: Optional[datetime] = None
    owner: Optional[str] = None


class GroupListResponse(BaseModel):
    total: int
    groups: list[GroupRead]


class GroupSendRequest(BaseModel):
    group_id: str = Field(..., min_length=1, max_length=128, examples=["120363025246125486@g.us"])
    text: str = Field(
        ..., min_length=1, max_length=65536, validation_alias=AliasChoices("text", "message")
    )


class GroupSendResult(BaseModel):
    group_id: str
    message_id: str
    timestamp: datetime
    response_time_ms: int
