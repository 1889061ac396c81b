from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, Field, computed_field


class PixelGenerateRequest(BaseModel):
    subject: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("subject", "emailSubject"),
    )
    recipient: Optional[str] = None

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class PixelGenerateResponse(BaseModel):
    success: bool = True
    tracking_id: str = Field(serialization_alias="trackingId")
    pixel_url: str = Field(serialization_alias="pixelUrl")
    pixel_src: Optional[str] = Field(default=None, serialization_alias="pixelSrc")
    message: str = "Tracking pixel generated successfully"


class OpenEventResponse(BaseModel):
    timestamp: datetime
    user_agent: str = Field(serialization_alias="userAgent")
    ip: str
    is_self: bool = Field(default=False, serialization_alias="isSelf")


class TrackedMessageResponse(BaseModel):
    tracking_id: str = Field(serialization_alias="trackingId")
    subject: str
    recipient: str
    sent_at: datetime = Field(serialization_alias="sentAt")
    sender_ip: str = Field(serialization_alias="senderIp")
    opens: list[OpenEventResponse] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @computed_field(alias="openCount")
    @property
    def open_count(self) -> int:
        return len(self.opens)

    @computed_field(alias="firstOpenAt")
    @property
    def first_open_at(self) -> Optional[datetime]:
        return self.opens[0].timestamp if self.opens else None

    @computed_field(alias="lastOpenAt")
    @property
    def last_open_at(self) -> Optional[datetime]:
        return self.opens[-1].timestamp if self.opens else None

    def recipient_opens(self) -> list[OpenEventResponse]:
        """Opens that were not attributed to the sender."""
        return [event for event in self.opens if not event.is_self]


class TrackingStats(BaseModel):
    total_emails: int = Field(serialization_alias="totalEmails")
    total_opens: int = Field(serialization_alias="totalOpens")
    opened_emails: int = Field(serialization_alias="openedEmails")
    unopened_emails: int = Field(serialization_alias="unopenedEmails")
    # One-decimal percentage string, or the integer 0 when nothing has been tracked
    open_rate: Union[str, int] = Field(serialization_alias="openRate")


class RemoveSelfOpensResponse(BaseModel):
    success: bool = True
    removed_count: int = Field(serialization_alias="removedCount")
    remaining_opens: int = Field(serialization_alias="remainingOpens")
