# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Boolean, Float
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

ROLE_ADMIN = "admin"
ROLE_MANAGER = "social media manager"
ROLES = (ROLE_ADMIN, ROLE_MANAGER)

CLIENT_PLATFORMS = ("manual", "instagram", "facebook")
POST_PLATFORMS = ("instagram", "facebook", "both")
POST_TYPES = ("post", "story", "reel", "carousel")
POST_STATUSES = ("draft", "scheduled", "published", "failed")

DEFAULT_TAG_COLOR = "#8b5cf6"

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default=ROLE_MANAGER, nullable=False)
    is_active = Column(Boolean, default=True)

    # Monthly report delivery
    report_enabled = Column(Boolean, default=False)
    report_day_of_month = Column(Integer, default=1)
    report_email = Column(String, nullable=True)
    report_last_sent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    clients = relationship("Client", back_populates="owner", cascade="all, delete-orphan")

class Client(Base):
    __tablename__ = "clients"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    platform = Column(String, default="manual", nullable=False)
    social_media_link = Column(String, nullable=True)

    ig_user_id = Column(String, nullable=True)
    # Fernet ciphertext, see security/crypto.py
    page_access_token = Column(Text, nullable=True)
    page_id = Column(String, nullable=True)
    social_media_id = Column(String, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    follower_count = Column(Integer, default=0)
    follower_count_updated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="clients")
    posts = relationship("Post", back_populates="client")

class Post(Base):
    __tablename__ = "posts"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    platform = Column(String, nullable=False)
    post_type = Column(String, default="post", nullable=False)
    format = Column(String, default="text")  # image | video | mixed | text
    content = Column(Text, nullable=False)
    caption = Column(Text, nullable=True)
    hashtags = Column(JSON, default=list)
    tags = Column(JSON, default=list)  # [{"name": ..., "color": ...}]
    location = Column(String, nullable=True)
    media_urls = Column(JSON, default=list)

    status = Column(String, default="draft", index=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=True, index=True)
    published_time = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    publishing_errors = Column(JSON, default=list)

    instagram_post_id = Column(String, nullable=True)
    instagram_url = Column(String, nullable=True)
    facebook_post_id = Column(String, nullable=True)
    facebook_url = Column(String, nullable=True)

    likes = Column(Integer, default=0)
    comments = Column(Integer, default=0)
    shares = Column(Integer, default=0)
    saves = Column(Integer, default=0)
    views = Column(Integer, default=0)
    reach = Column(Integer, default=0)
    impressions = Column(Integer, default=0)
    metrics_updated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    client = relationship("Client", back_populates="posts")

class MediaAsset(Base):
    __tablename__ = "media_assets"
    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    storage_path = Column(String, nullable=False)
    original_filename = Column(String, nullable=True)
    kind = Column(String, nullable=False)  # image | video | unsupported
    mime_type = Column(String, nullable=True)
    size_bytes = Column(Integer, default=0)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class VerificationCode(Base):
    __tablename__ = "verification_codes"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class PasswordReset(Base):
    __tablename__ = "password_resets"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class OAuthState(Base):
    __tablename__ = "oauth_states"
    id = Column(Integer, primary_key=True, index=True)
    state = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
