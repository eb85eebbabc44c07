"""
schemas/message.py
------------------
Pydantic models for sending messages and reading the audit log.

Request bodies accept the field aliases existing API clients use:
phonenumber/phone and text/message.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator

_PHONE = AliasChoices("phonenumber", "phone")
_TEXT = AliasChoices("text", "message")


class SendRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=64, validation_alias=_PHONE)
    text: Optional[str] = Field(default=None, max_length=65536, validation_alias=_TEXT)
    url: Optional[str] = Field(default=None, max_length=2048, description="File to attach")
    filename: Optional[str] = Field(default=None, max_length=255)
    caption: Optional[str] = Field(default=None, max_length=4096)

    @model_validator(mode="after")
    def require_content(self) -> "SendRequest":
        if not self.text and not self.url:
            raise ValueError("Either text or url is required")
        return self


class SendResult(BaseModel):
    phone: str
    message_id: str
    timestamp: datetime
    response_time_ms: int


class BulkSendRequest(BaseModel):
    phones: list[str] | str = Field(..., description="List or comma-separated string")
    text: Optional[str] = Field(default=None, max_length=65536, validation_alias=_TEXT)
    url: Optional[str] = Field(default=None, max_length=2048)
    filename: Optional[str] = Field(default=None, max_length=255)
    caption: Optional[str] = Field(default=None, max_length=4096)
    delay: Optional[float] = Field(
        default=None, ge=0, le=60, description="Seconds between messages"
    )

    @model_validator(mode="after")
    def require_content(self) -> "BulkSendRequest":
        if isinstance(self.phones, str):
            self.phones = [p.strip() for p in self.phones.split(",") if p.strip()]
        if not self.phones:
            raise ValueError("phones must not be empty")
        if not self.text and not self.url:
            raise ValueError("Either text or url is required")
        return self


class BulkItemResult(BaseModel):
    phone: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class BulkSendResponse(BaseModel):
    total: int
    sent: int
    failed: int
    results: list[BulkItemResult]


class VerifyRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=64, validation_alias=_PHONE)


class VerifyResponse(BaseModel):
    phone: str
    exists: bool
    jid: Optional[str] = None


class MessageLogRead(BaseModel):
    id: int
    tenant_id: str
    phone_number: str
    message_type: str
    message_text: Optional[str] = None
    file_url: Optional[str] = None
    caption: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    message_id: Optional[str] = None
    timestamp_sent: Optional[datetime] = None
    response_time_ms: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[MessageLogRead]


class PhoneHistoryResponse(BaseModel):
    phone: str
    count: int
    page: int
    page_count: int
    items: list[MessageLogRead]


class DailyCount(BaseModel):
    date: date
    count: int


class StatsResponse(BaseModel):
    period_days: int
    total: int
    sent: int
    failed: int
    success_rate: float  # percent, 2 decimals
    avg_response_time_ms: int
    daily: list[DailyCount]


class ProfilePictureResponse(BaseModel):
    phone: str
    profile_picture: Optional[str] = None
