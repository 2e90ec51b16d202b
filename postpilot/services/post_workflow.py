from datetime import datetime
from sqlalchemy.orm import Session

from ..errors import ValidationFailed
from ..models import Client, MediaAsset, POST_PLATFORMS, POST_TYPES
from .capabilities import validate_selection
from .media_rules import MediaInfo, build_media_info, describe_files, detect_media_kind, guess_mime_type, validate_for_post_type
from .scheduling import validate_scheduled_time

def validate_post_data(data: dict, client: Client | None, is_draft: bool = False) -> dict:
    """
    Server-side checks run before a post is stored.
    Drafts skip the media checks so half-finished posts can be saved.
    """
    errors: list[str] = []

    if client is None:
        return {"is_valid": False, "errors": ["Client is required"]}

    platform = data.get("platform")
    post_type = data.get("post_type")
    media_urls = data.get("media_urls") or []

    if not platform:
        errors.append("Platform is required")
    elif platform not in POST_PLATFORMS:
        errors.append(f"Invalid platform. Must be one of: {', '.join(POST_PLATFORMS)}")

    if not post_type:
        errors.append("Post type is required")
    elif post_type not in POST_TYPES:
        errors.append(f"Invalid post type. Must be one of: {', '.join(POST_TYPES)}")

    if platform in ("instagram", "both"):
        if not client.ig_user_id:
            errors.append("Instagram User ID is missing for this client")
        if not client.page_access_token:
            errors.append("Instagram Page Access Token is missing for this client")

    if platform in ("facebook", "both"):
        if not client.page_id and not client.page_access_token:
            errors.append("Facebook Page ID or Access Token is missing for this client")

    if not is_draft:
        if not media_urls:
            errors.append("At least one media file is required")
        if post_type == "reel" and len(media_urls) > 1:
            errors.append("Reels can only have one video file")
        if post_type == "carousel":
            if len(media_urls) < 2:
                errors.append("Carousels require at least 2 images")
            if len(media_urls) > 10:
                errors.append("Carousels can have maximum 10 images")
        if post_type == "story" and platform == "instagram" and data.get("scheduled_time"):
            errors.append("Instagram stories cannot be scheduled")

    return {"is_valid": not errors, "errors": errors}

def require_valid_post(data: dict, client: Client | None, is_draft: bool = False) -> None:
    validation = validate_post_data(data, client, is_draft=is_draft)
    if not validation["is_valid"]:
        raise ValidationFailed(validation["errors"])

def media_infos(db: Session, owner_id: int, media_urls: list[str]) -> list[MediaInfo]:
    """
    Resolves media URLs to MediaInfo. Uploaded assets carry probed size and dimensions;
    foreign URLs are classified by extension only.
    """
    if not media_urls:
        return []
    assets = {
        a.url: a
        for a in db.query(MediaAsset).filter(MediaAsset.owner_id == owner_id, MediaAsset.url.in_(media_urls)).all()
    }

    infos = []
    for url in media_urls:
        asset = assets.get(url)
        if asset:
            infos.append(build_media_info(
                asset.kind,
                size_bytes=asset.size_bytes or 0,
                duration=asset.duration_seconds,
                width=asset.width,
                height=asset.height,
                url=url,
            ))
        else:
            path = url.split("?", 1)[0]
            infos.append(build_media_info(detect_media_kind(guess_mime_type(path), path), url=url))
    return infos

def validate_composer(db: Session, owner_id: int, client: Client | None, data: dict,
                      now: datetime | None = None) -> dict:
    """Dry run of everything the composer checks: capability, media and schedule."""
    platform = data.get("platform")
    post_type = data.get("post_type") or "post"

    selection = validate_selection(client, platform, post_type)
    errors = list(selection["errors"])
    warnings = list(selection["warnings"])

    media = media_infos(db, owner_id, data.get("media_urls") or [])
    errors += describe_files(media)
    media_check = validate_for_post_type(post_type, platform or "", media)
    errors += [e for e in media_check["errors"] if e not in errors]

    schedule = None
    if data.get("scheduled_time"):
        schedule = validate_scheduled_time(data["scheduled_time"], post_type, platform, now=now)
        if not schedule["is_valid"]:
            errors.append(schedule["error"])
        elif schedule.get("warning"):
            warnings.append(schedule["warning"])

    return {
        "is_valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "media": [
            {"url": m.url, "kind": m.kind, "size": m.size_formatted, "aspect_ratio": m.aspect_ratio, "duration": m.duration}
            for m in media
        ],
        "schedule": schedule,
    }
