"""
schemas/webhook.py
------------------
Webhook registration request and response.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator


class WebhookCreate(BaseModel):
    url: HttpUrl
    events: Optional[list[str]] = Field(default=None, examples=[["message"]])

    @field_validator("events")
    @classmethod
    def clean_events(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return None
        cleaned = [e.strip() for e in v if e and e.strip()]
        return cleaned or None


class WebhookRead(BaseModel):
    model_config = {"from_attributes": True}

    tenant_id: str
    url: str
    events: list[str]
    status: str
    updated_at: datetime
