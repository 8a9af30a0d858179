from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

AlertFrequency = Literal["immediate", "daily", "weekly"]
DevicePlatform = Literal["ios", "android", "web"]


class AlertSubscription(BaseModel):
    id: str
    device_token: str
    name: str = "My Job Alert"
    categories: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    organizations: list[str] = Field(default_factory=list)
    experience_levels: list[str] = Field(default_factory=list)
    frequency: AlertFrequency = "immediate"
    is_active: bool = True
    last_notified_at: datetime | None = None
    notification_count: int = 0

    @property
    def has_filters(self) -> bool:
        return bool(
            self.categories or self.locations or self.keywords or self.organizations or self.experience_levels
        )


class Device(BaseModel):
    push_token: str
    platform: DevicePlatform = "android"
    is_active: bool = True


class PushMessage(BaseModel):
    to: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    sound: str = "default"


class PushTicket(BaseModel):
    status: str
    id: str | None = None
    message: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def device_not_registered(self) -> bool:
        return self.error == "DeviceNotRegistered"
