# Copyright (c) 2026 Mohammed Hassan. All rights reserved.
# Proprietary and confidential. Unauthorized copying, modification, distribution, or use is prohibited.

import json
import time
from datetime import datetime, timezone
from urllib.parse import urlparse
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import GraphAPIError, PublishError
from ..logging_setup import log_event
from ..models import Client, Post
from ..security.crypto import decrypt_token
from .graph import graph_get, graph_post
from .hashtags import build_caption
from .media_rules import is_video_url

STORY_POLL_SECONDS, STORY_POLL_ATTEMPTS = 5, 24
VIDEO_POLL_SECONDS, VIDEO_POLL_ATTEMPTS = 10, 60
PUBLISH_RETRY_SECONDS, PUBLISH_ATTEMPTS = 3, 5

MEDIA_NOT_READY_CODE = 9007
MEDIA_NOT_READY_SUBCODE = 2207027
ASPECT_RATIO_CODE = 36003
ASPECT_RATIO_SUBCODE = 2207009
MEDIA_FETCH_CODE = 9004
MEDIA_FETCH_SUBCODE = 2207052

def _utcnow():
    return datetime.now(timezone.utc)

def _is_local(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host in ("localhost", "127.0.0.1")

def public_media_url(url: str | None) -> str | None:
    """Rewrites our own /uploads/ URLs onto the public base URL so Graph can fetch them."""
    if not url:
        return url
    path = urlparse(url).path
    if "/uploads/" not in path:
        return url

    filename = path.split("/uploads/", 1)[1]
    base = settings.public_base_url.rstrip("/")
    # Instagram only fetches media over HTTPS
    if base.startswith("http://") and not _is_local(base):
        base = "https://" + base[len("http://"):]
    return f"{base}/uploads/{filename}"

def _aspect_ratio_message(post_type: str, media_url: str, original: str) -> str:
    kind = {"story": "stories", "reel": "reels"}.get(post_type, "posts")
    lines = [
        "Instagram rejected the image due to invalid aspect ratio.",
        "",
        f"Instagram requirements for {kind}:",
    ]
    if post_type in ("story", "reel"):
        lines.append(f"- {kind.capitalize()}: Must be 9:16 aspect ratio (vertical, 1080x1920px recommended)")
    else:
        lines.append("- Regular Posts: Aspect ratio must be between 0.8 and 1.91")
        lines.append("  (Examples: 4:5 portrait, 1:1 square, 1.91:1 landscape)")
        lines.append("  Minimum dimensions: 600x315px for landscape, 600x750px for portrait")
    lines += [
        "",
        "Crop the media to one of these ratios and try again.",
        "",
        f"Media URL used: {media_url}",
        f"Original error: {original}",
    ]
    return "\n".join(lines)

def _is_aspect_ratio_error(err: GraphAPIError) -> bool:
    text = (err.message or "").lower()
    user_msg = str((err.response.get("error") or {}).get("error_user_msg") or "").lower()
    return (
        err.code == ASPECT_RATIO_CODE
        or err.subcode == ASPECT_RATIO_SUBCODE
        or "aspect ratio" in text
        or "aspect ratio" in user_msg
    )

def _is_media_not_ready(err: GraphAPIError) -> bool:
    return err.code == MEDIA_NOT_READY_CODE or err.subcode == MEDIA_NOT_READY_SUBCODE

def _container_error(err: GraphAPIError, post_type: str, media_url: str) -> PublishError:
    if _is_aspect_ratio_error(err):
        return PublishError(
            "instagram",
            _aspect_ratio_message(post_type, media_url, err.message),
            is_aspect_ratio_error=True,
            media_url=media_url,
            post_type=post_type,
        )
    if err.code == MEDIA_FETCH_CODE or err.subcode == MEDIA_FETCH_SUBCODE:
        return PublishError(
            "instagram",
            "Instagram cannot fetch the media from the provided URL. "
            f"Make sure it is publicly reachable over HTTPS. Original error: {err.message}",
            media_url=media_url,
            post_type=post_type,
        )
    return PublishError("instagram", f"Instagram container creation failed: {err.message}",
                        media_url=media_url, post_type=post_type)

def _create_container(ig_user_id: str, access_token: str, params: dict, post_type: str, media_url: str) -> str:
    try:
        payload = graph_post(f"{ig_user_id}/media", {**params, "access_token": access_token})
    except GraphAPIError as e:
        log_event("ig_media_create_fail", level="warning", ig_user_id=ig_user_id,
                  meta_error_code=e.code, fbtrace_id=e.fbtrace_id)
        raise _container_error(e, post_type, media_url) from e
    if "id" not in payload:
        raise PublishError("instagram", "No creation ID returned from Instagram", post_type=post_type)
    return payload["id"]

def _wait_until_ready(creation_id: str, access_token: str, post_type: str, is_video: bool):
    if post_type == "story":
        wait, attempts = STORY_POLL_SECONDS, STORY_POLL_ATTEMPTS
    else:
        wait, attempts = VIDEO_POLL_SECONDS, VIDEO_POLL_ATTEMPTS
    label = "Video" if is_video else "Image"

    status_code = None
    for attempt in range(attempts):
        if attempt > 0:
            time.sleep(wait)
        try:
            payload = graph_get(creation_id, {"fields": "status_code,status", "access_token": access_token})
        except GraphAPIError as e:
            log_event("ig_status_check_fail", level="warning", creation_id=creation_id, attempt=attempt + 1,
                      meta_error_code=e.code)
            continue
        status_code = (payload.get("status_code") or "").upper()
        if status_code == "FINISHED":
            return
        if status_code == "ERROR":
            detail = payload.get("status") or "Unknown error during media processing"
            raise PublishError("instagram", f"{label} processing failed: {detail}", post_type=post_type)

    raise PublishError(
        "instagram",
        f"{label} processing timed out after {attempts} attempts. Final status: {status_code or 'UNKNOWN'}",
        post_type=post_type,
    )

def _publish_container(ig_user_id: str, access_token: str, creation_id: str, post_type: str, media_url: str) -> str:
    for attempt in range(PUBLISH_ATTEMPTS):
        try:
            payload = graph_post(f"{ig_user_id}/media_publish", {
                "creation_id": creation_id,
                "access_token": access_token,
            })
        except GraphAPIError as e:
            # Media not ready yet → retry
            if _is_media_not_ready(e) and attempt < PUBLISH_ATTEMPTS - 1:
                if attempt == 0:
                    log_event("ig_media_publish_retry", ig_user_id=ig_user_id, creation_id=creation_id,
                              fbtrace_id=e.fbtrace_id)
                time.sleep(PUBLISH_RETRY_SECONDS)
                continue
            log_event("ig_media_publish_fail", level="warning", ig_user_id=ig_user_id, creation_id=creation_id,
                      meta_error_code=e.code, fbtrace_id=e.fbtrace_id)
            if _is_aspect_ratio_error(e):
                raise _container_error(e, post_type, media_url) from e
            raise PublishError("instagram", f"Instagram {post_type} publishing failed: {e.message}",
                               post_type=post_type) from e
        log_event("ig_media_publish_success", ig_user_id=ig_user_id, creation_id=creation_id,
                  attempts=attempt + 1, remote_id=payload.get("id"))
        return payload["id"]

    raise PublishError("instagram", f"Failed to publish after {PUBLISH_ATTEMPTS} attempts", post_type=post_type)

def instagram_permalink(post_type: str, ig_user_id: str, media_id: str) -> str:
    if post_type == "story":
        return f"https://instagram.com/stories/{ig_user_id}/{media_id}"
    if post_type == "reel":
        return f"https://instagram.com/reel/{media_id}"
    return f"https://instagram.com/p/{media_id}"

def publish_to_instagram(*, caption: str, media_urls: list[str], post_type: str, ig_user_id: str,
                         access_token: str) -> dict:
    if not ig_user_id or not access_token:
        raise PublishError("instagram", "Instagram credentials not found. Client must be connected via OAuth.")
    if not media_urls:
        raise PublishError("instagram", "Instagram posts require at least one media file", post_type=post_type)

    urls = [public_media_url(u) for u in media_urls]
    if any(_is_local(u) for u in urls):
        raise PublishError(
            "instagram",
            "Instagram cannot fetch media from 'localhost'. Set BASE_URL to a public HTTPS URL.",
            post_type=post_type,
        )

    media_url = urls[0]
    is_video = is_video_url(media_url)
    if post_type == "reel" and not is_video:
        raise PublishError("instagram", "Reels must be video files. Please upload a video file for reels.",
                           media_url=media_url, post_type=post_type)

    log_event("ig_media_create_start", ig_user_id=ig_user_id, post_type=post_type, media_count=len(urls))

    if post_type == "carousel":
        children = []
        for url in urls:
            children.append(_create_container(ig_user_id, access_token, {
                "image_url": url,
                "is_carousel_item": "true",
            }, post_type, url))
        creation_id = _create_container(ig_user_id, access_token, {
            "media_type": "CAROUSEL",
            "children": ",".join(children),
            "caption": caption,
        }, post_type, media_url)
    else:
        params: dict = {}
        if post_type == "story":
            params["media_type"] = "STORIES"
        elif post_type == "reel":
            params["media_type"] = "REELS"
        elif is_video:
            params["media_type"] = "VIDEO"
        params["video_url" if is_video else "image_url"] = media_url
        # Stories ignore captions at container creation
        if caption and post_type != "story":
            params["caption"] = caption
        creation_id = _create_container(ig_user_id, access_token, params, post_type, media_url)

    log_event("ig_media_create_success", ig_user_id=ig_user_id, creation_id=creation_id)

    if is_video or post_type == "story":
        _wait_until_ready(creation_id, access_token, post_type, is_video)

    media_id = _publish_container(ig_user_id, access_token, creation_id, post_type, media_url)
    return {
        "ok": True,
        "platform": "instagram",
        "post_type": post_type,
        "post_id": media_id,
        "url": instagram_permalink(post_type, ig_user_id, media_id),
        "published_at": _utcnow().isoformat(),
    }

def publish_to_facebook(*, message: str, media_urls: list[str], page_id: str, access_token: str) -> dict:
    if not page_id:
        raise PublishError("facebook", "Facebook Page ID not found. Client must be connected via OAuth.")
    if not access_token:
        raise PublishError("facebook", "Facebook access token not found")

    urls = [public_media_url(u) for u in media_urls or []]
    try:
        if not urls:
            payload = graph_post(f"{page_id}/feed", {"message": message, "access_token": access_token})
        elif len(urls) == 1 and is_video_url(urls[0]):
            payload = graph_post(f"{page_id}/videos", {
                "file_url": urls[0],
                "description": message,
                "access_token": access_token,
            })
        elif len(urls) == 1:
            payload = graph_post(f"{page_id}/photos", {
                "url": urls[0],
                "message": message,
                "access_token": access_token,
            })
        else:
            data = {"message": message, "access_token": access_token}
            for i, url in enumerate(urls):
                photo = graph_post(f"{page_id}/photos", {
                    "url": url,
                    "published": "false",
                    "access_token": access_token,
                })
                data[f"attached_media[{i}]"] = json.dumps({"media_fbid": photo["id"]})
            payload = graph_post(f"{page_id}/feed", data)
    except GraphAPIError as e:
        log_event("fb_publish_fail", level="warning", page_id=page_id, meta_error_code=e.code,
                  fbtrace_id=e.fbtrace_id)
        raise PublishError("facebook", f"Facebook posting failed: {e.message}") from e

    post_id = payload.get("post_id") or payload.get("id")
    log_event("fb_publish_success", page_id=page_id, remote_id=post_id)
    return {
        "ok": True,
        "platform": "facebook",
        "post_id": post_id,
        "url": f"https://facebook.com/{post_id}",
        "published_at": _utcnow().isoformat(),
    }

def requested_platforms(platform: str) -> list[str]:
    return ["instagram", "facebook"] if platform == "both" else [platform]

def publish_post(post: Post, client: Client) -> dict:
    """Publishes to every platform the post targets; per-platform failures are collected, not raised."""
    results = {"instagram": None, "facebook": None, "errors": []}
    caption = build_caption(post.caption or post.content, post.hashtags)
    access_token = decrypt_token(client.page_access_token)
    media_urls = list(post.media_urls or [])

    for platform in requested_platforms(post.platform):
        if client.platform not in (platform, "manual"):
            results["errors"].append({
                "platform": platform,
                "error": f"Client platform ({client.platform}) does not support {platform.capitalize()} posting. "
                         f"Please connect a {platform.capitalize()} account.",
            })
            continue
        try:
            if platform == "instagram":
                results["instagram"] = publish_to_instagram(
                    caption=caption,
                    media_urls=media_urls,
                    post_type=post.post_type or "post",
                    ig_user_id=client.ig_user_id,
                    access_token=access_token,
                )
            else:
                results["facebook"] = publish_to_facebook(
                    message=caption,
                    media_urls=media_urls,
                    page_id=client.page_id or client.social_media_id,
                    access_token=access_token,
                )
        except PublishError as e:
            results["errors"].append(e.to_dict())

    return results

def apply_publish_results(post: Post, results: dict) -> None:
    """Maps platform results onto the post; it only fails when every requested platform failed."""
    if results.get("instagram"):
        post.instagram_post_id = results["instagram"]["post_id"]
        post.instagram_url = results["instagram"]["url"]
    if results.get("facebook"):
        post.facebook_post_id = results["facebook"]["post_id"]
        post.facebook_url = results["facebook"]["url"]

    errors = results.get("errors") or []
    post.publishing_errors = errors
    error_text = "; ".join(f"{e['platform']}: {e['error']}" for e in errors) or None

    if any(results.get(p) for p in requested_platforms(post.platform)):
        post.status = "published"
        post.published_time = _utcnow()
        post.error_message = error_text
    else:
        post.status = "failed"
        post.error_message = error_text or "Publishing failed"

def publish_and_record(db: Session, post: Post) -> Post:
    log_event("post_publish_start", post_id=post.id, platform=post.platform, post_type=post.post_type)
    client = db.get(Client, post.client_id) if post.client_id else None
    if client is None:
        post.status = "failed"
        post.error_message = "Client not found"
        post.publishing_errors = [{"platform": post.platform, "error": "Client not found"}]
    else:
        apply_publish_results(post, publish_post(post, client))
    db.commit()
    db.refresh(post)

    if post.status == "published":
        log_event("post_publish_success", post_id=post.id, partial_errors=len(post.publishing_errors or []))
    else:
        log_event("post_publish_fail", level="warning", post_id=post.id, error=post.error_message)
    return post
