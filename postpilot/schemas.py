from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Any, Literal

# --- auth ---

class UserCreate(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=8)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v

class LoginIn(BaseModel):
    email: EmailStr
    password: str

class VerifyCodeIn(BaseModel):
    email: EmailStr
    code: str = Field(min_length=6, max_length=6)

class ForgotPasswordIn(BaseModel):
    email: EmailStr

class ResetPasswordIn(BaseModel):
    token: str
    password: str = Field(min_length=8)

class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class AuthOut(BaseModel):
    token: str
    user: UserOut

# --- clients ---

class ClientCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    platform: Literal["manual", "instagram", "facebook"] = "manual"
    social_media_link: str | None = None
    ig_user_id: str | None = None
    page_id: str | None = None
    page_access_token: str | None = None

class ClientUpdate(BaseModel):
    name: str | None = None
    email: EmailStr | None = None
    platform: Literal["manual", "instagram", "facebook"] | None = None
    social_media_link: str | None = None
    ig_user_id: str | None = None
    page_id: str | None = None
    page_access_token: str | None = None

    # Explicit nulls only; omitted fields never reach the validator
    @field_validator("name", "email", "platform")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty")
        return v

class ClientOut(BaseModel):
    id: int
    name: str
    email: str
    platform: str
    social_media_link: str | None = None
    ig_user_id: str | None = None
    page_id: str | None = None
    social_media_id: str | None = None
    follower_count: int | None = 0
    follower_count_updated_at: datetime | None = None
    has_page_access_token: bool = False
    has_instagram: bool = False
    has_facebook: bool = False
    created_at: datetime | None = None

    class Config:
        from_attributes = True

    @classmethod
    def from_client(cls, client) -> "ClientOut":
        out = cls.model_validate(client)
        out.has_page_access_token = bool(client.page_access_token)
        out.has_instagram = bool(client.ig_user_id and client.page_access_token)
        out.has_facebook = bool(client.page_id or client.page_access_token)
        return out

class OAuthClientCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    platform: Literal["instagram", "facebook"]
    page_id: str | None = None
    ig_user_id: str | None = None
    page_access_token: str
    social_media_link: str | None = None

class AccountRef(BaseModel):
    client_id: int

# --- posts ---

class TagIn(BaseModel):
    name: str = Field(min_length=1)
    color: str | None = None

class PostCreate(BaseModel):
    client_id: int
    platform: str
    post_type: str = "post"
    content: str = ""
    caption: str | None = None
    hashtags: list[str] = Field(default_factory=list)
    tags: list[TagIn] = Field(default_factory=list)
    location: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    scheduled_time: datetime | None = None
    publish_immediately: bool = False
    is_draft: bool = False

class PostUpdate(BaseModel):
    """Only fields that are present in the request body are applied (exclude_unset)."""
    client_id: int | None = None
    platform: str | None = None
    post_type: str | None = None
    content: str | None = None
    caption: str | None = None
    hashtags: list[str] | None = None
    tags: list[TagIn] | None = None
    location: str | None = None
    media_urls: list[str] | None = None
    scheduled_time: datetime | None = None

    @field_validator("platform", "post_type", "content")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v

class PostOut(BaseModel):
    id: int
    client_id: int | None = None
    platform: str
    post_type: str
    format: str | None = None
    content: str
    caption: str | None = None
    hashtags: list[str] | None = None
    tags: list[dict[str, Any]] | None = None
    location: str | None = None
    media_urls: list[str] | None = None
    status: str
    scheduled_time: datetime | None = None
    published_time: datetime | None = None
    error_message: str | None = None
    publishing_errors: list[dict[str, Any]] | None = None
    instagram_post_id: str | None = None
    instagram_url: str | None = None
    facebook_post_id: str | None = None
    facebook_url: str | None = None
    likes: int | None = 0
    comments: int | None = 0
    shares: int | None = 0
    saves: int | None = 0
    views: int | None = 0
    reach: int | None = 0
    impressions: int | None = 0
    metrics_updated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True

class PostListOut(BaseModel):
    posts: list[PostOut]
    total: int

class ValidateRequest(BaseModel):
    client_id: int
    platform: str | None = None
    post_type: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    scheduled_time: datetime | None = None

class HashtagRequest(BaseModel):
    caption: str = ""
    existing: list[str] = Field(default_factory=list)
    category: str | None = None

# --- media ---

class MediaAssetOut(BaseModel):
    id: int
    url: str
    original_filename: str | None = None
    kind: str
    mime_type: str | None = None
    size_bytes: int
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class CropRequest(BaseModel):
    aspect_ratio: Literal["1:1", "4:5", "1.91:1", "9:16"] | None = None
    x: int | None = Field(default=None, ge=0)
    y: int | None = Field(default=None, ge=0)
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)

    def box(self) -> tuple[int, int, int, int] | None:
        if None in (self.x, self.y, self.width, self.height):
            return None
        return (self.x, self.y, self.x + self.width, self.y + self.height)

# --- reports ---

class ReportDownload(BaseModel):
    format: Literal["json", "html", "pdf"] = "json"
    start_date: datetime | None = None
    end_date: datetime | None = None
    client_id: int | None = None
    template_name: str | None = None

class ReportSchedule(BaseModel):
    enabled: bool
    day_of_month: int = Field(default=1, ge=1, le=28)
    email: EmailStr | None = None

class SendTestReport(BaseModel):
    template_name: str | None = None

class SendToClients(BaseModel):
    client_ids: list[int] = Field(default_factory=list)
    start_date: datetime | None = None
    end_date: datetime | None = None
    template_name: str | None = None
