from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .domain import Widget, WidgetType

# range of a SQLite INTEGER column
SQLITE_INT_MIN = -(2 ** 63)
SQLITE_INT_MAX = 2 ** 63 - 1


class Credentials(BaseModel):
    username: str
    password: str


class AuthStatusResponse(BaseModel):
    registered: bool


class AuthResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    username: Optional[str] = None
    token: Optional[str] = None


class WidgetData(BaseModel):
    """A widget as sent by the browser client. ``content`` is stored untouched."""
    id: str = Field(min_length=1)
    type: WidgetType
    title: str
    cols: int = Field(default=1, ge=1, le=SQLITE_INT_MAX)
    position: int = Field(default=0, ge=SQLITE_INT_MIN, le=SQLITE_INT_MAX)
    isActive: bool = True
    content: Any = None

    def to_widget(self) -> Widget:
        return Widget(
            id=self.id,
            type=self.type,
            title=self.title,
            cols=self.cols,
            position=self.position,
            is_active=self.isActive,
            content=self.content,
        )


class WidgetResponse(BaseModel):
    id: str
    type: WidgetType
    title: str
    cols: int
    position: int
    isActive: bool
    content: Any = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class StatusResponse(BaseModel):
    status: str


class WikiPageResponse(BaseModel):
    id: str
    title: str
    content: str
    isPublic: bool
    publicId: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys


class SendTestRequest(BaseModel):
    message: Optional[str] = None


class SendTestResponse(BaseModel):
    success: bool
    sent: int
    failed: int
    expired: List[str] = []


class VapidKeyResponse(BaseModel):
    publicKey: str


class MessageResponse(BaseModel):
    success: bool
    message: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: bool


