from datetime import datetime, timezone
from sqlalchemy.orm import Session

from ..logging_setup import log_event
from ..models import Client, Post, POST_TYPES
from ..security.crypto import decrypt_token
from .scheduling import as_utc
from .insights import (
    fetch_instagram_post_metrics,
    fetch_facebook_post_metrics,
    fetch_instagram_follower_count,
    fetch_facebook_follower_count,
    instagram_media_type,
)

TREND_DAYS = 30
RECENT_POSTS = 10
REFRESH_CLIENT_LIMIT = 5
REFRESH_POST_LIMIT = 10
REFRESH_CLIENT_POST_LIMIT = 20

METRIC_FIELDS = ("likes", "comments", "shares", "saves", "views", "reach", "impressions")

def _utcnow():
    return datetime.now(timezone.utc)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

def created_sort_key(post: Post):
    return (as_utc(post.created_at) or _EPOCH, post.id or 0)

def engagement_of(post: Post) -> dict:
    metrics = {field: getattr(post, field) or 0 for field in METRIC_FIELDS}
    metrics["engagements"] = metrics["likes"] + metrics["comments"] + metrics["shares"] + metrics["saves"]
    return metrics

def engagement_rate(engagements: int, views: int) -> str:
    if views <= 0:
        return "0.00"
    return f"{engagements / views * 100:.2f}"

def status_counts(posts: list[Post]) -> dict:
    return {
        "total_posts": len(posts),
        "published_posts": sum(1 for p in posts if p.status == "published"),
        "scheduled_posts": sum(1 for p in posts if p.status == "scheduled"),
        "draft_posts": sum(1 for p in posts if p.status == "draft"),
        "failed_posts": sum(1 for p in posts if p.status == "failed"),
    }

def posts_by_platform(posts: list[Post]) -> dict:
    # "both" counts toward each platform
    return {
        "instagram": sum(1 for p in posts if p.platform in ("instagram", "both")),
        "facebook": sum(1 for p in posts if p.platform in ("facebook", "both")),
    }

def posts_by_type(posts: list[Post]) -> dict:
    counts = {t: 0 for t in POST_TYPES}
    for p in posts:
        post_type = p.post_type or "post"
        counts[post_type] = counts.get(post_type, 0) + 1
    return counts

def posts_by_month(posts: list[Post]) -> dict:
    counts: dict[str, int] = {}
    for p in sorted(posts, key=created_sort_key):
        if p.created_at:
            month = p.created_at.strftime("%Y-%m")
            counts[month] = counts.get(month, 0) + 1
    return counts

def engagement_totals(posts: list[Post]) -> dict:
    totals = {f"total_{field}": 0 for field in METRIC_FIELDS}
    totals["total_engagements"] = 0
    for p in posts:
        metrics = engagement_of(p)
        for field in METRIC_FIELDS:
            totals[f"total_{field}"] += metrics[field]
        totals["total_engagements"] += metrics["engagements"]
    totals["engagement_rate"] = engagement_rate(totals["total_engagements"], totals["total_views"])
    return totals

def engagement_trend(posts: list[Post]) -> list[dict]:
    daily: dict[str, dict] = {}
    for p in posts:
        if p.status != "published" or not p.created_at:
            continue
        day = p.created_at.date().isoformat()
        row = daily.setdefault(day, {"date": day, "engagements": 0, "views": 0})
        metrics = engagement_of(p)
        row["engagements"] += metrics["engagements"]
        row["views"] += metrics["views"]
    return [daily[d] for d in sorted(daily)][-TREND_DAYS:]

def _client_name(post: Post) -> str:
    return post.client.name if post.client else "Unknown"

def top_post(posts: list[Post]) -> dict | None:
    ranked = [
        (engagement_of(p), p) for p in posts
        if p.status == "published"
    ]
    ranked = [(m, p) for m, p in ranked if m["engagements"] > 0]
    if not ranked:
        return None
    metrics, post = max(ranked, key=lambda pair: pair[0]["engagements"])
    return {
        "id": post.id,
        "caption": post.caption or post.content or "",
        "media_urls": post.media_urls or [],
        "platform": post.platform,
        "post_type": post.post_type or "post",
        "client_name": _client_name(post),
        "engagement": metrics,
        "created_at": post.created_at,
    }

def recent_posts(posts: list[Post], limit: int = RECENT_POSTS) -> list[dict]:
    ordered = sorted(posts, key=created_sort_key, reverse=True)
    return [
        {
            "id": p.id,
            "caption": p.caption or "",
            "status": p.status,
            "platform": p.platform,
            "post_type": p.post_type or "post",
            "created_at": p.created_at,
            "published_time": p.published_time,
            "client_name": _client_name(p),
        }
        for p in ordered[:limit]
    ]

def client_rows(clients: list[Client], posts: list[Post]) -> list[dict]:
    rows = []
    for client in clients:
        mine = [p for p in posts if p.client_id == client.id]
        rows.append({
            "client_id": client.id,
            "client_name": client.name,
            "platform": client.platform,
            "follower_count": client.follower_count or 0,
            "total_posts": len(mine),
            "published_posts": sum(1 for p in mine if p.status == "published"),
            "scheduled_posts": sum(1 for p in mine if p.status == "scheduled"),
        })
    return rows

def build_overview(clients: list[Client], posts: list[Post]) -> dict:
    data = status_counts(posts)
    data["posts_by_platform"] = posts_by_platform(posts)
    data["posts_by_type"] = posts_by_type(posts)
    data.update(engagement_totals(posts))
    data["total_followers"] = sum(c.follower_count or 0 for c in clients)
    data["engagement_trend"] = engagement_trend(posts)
    data["top_post"] = top_post(posts)
    data["client_analytics"] = client_rows(clients, posts)
    data["recent_posts"] = recent_posts(posts)
    return data

def build_client_overview(client: Client, posts: list[Post]) -> dict:
    data = {"client_id": client.id, "client_name": client.name, "platform": client.platform}
    data.update(status_counts(posts))
    data["posts_by_type"] = posts_by_type(posts)
    data["posts_by_month"] = posts_by_month(posts)
    data.update(engagement_totals(posts))
    data["total_followers"] = client.follower_count or 0
    data["engagement_trend"] = engagement_trend(posts)
    data["top_post"] = top_post(posts)
    data["recent_posts"] = recent_posts(posts)
    return data

def fetch_post_metrics(post: Post, client: Client) -> dict | None:
    """Sums Instagram and Facebook metrics for a published post; None when nothing could be read."""
    if post.status != "published" or client is None:
        return None
    token = decrypt_token(client.page_access_token)
    if not token:
        return None

    merged = None
    if post.platform in ("instagram", "both") and post.instagram_post_id:
        merged = fetch_instagram_post_metrics(post.instagram_post_id, token, instagram_media_type(post.post_type))
        merged = dict(merged) if merged else None
    if post.platform in ("facebook", "both") and post.facebook_post_id:
        fb = fetch_facebook_post_metrics(post.facebook_post_id, token)
        if fb and merged:
            for field in ("likes", "comments", "shares", "views"):
                merged[field] += fb[field]
        elif fb:
            merged = dict(fb)
    return merged

def fetch_follower_count(client: Client) -> int | None:
    token = decrypt_token(client.page_access_token)
    if not token:
        return None
    if client.platform == "instagram" and client.ig_user_id:
        return fetch_instagram_follower_count(client.ig_user_id, token)
    if client.platform == "facebook" and client.page_id:
        return fetch_facebook_follower_count(client.page_id, token)
    return None

def refresh_followers(db: Session, clients: list[Client], limit: int = REFRESH_CLIENT_LIMIT) -> int:
    updated = 0
    for client in clients[:limit]:
        count = fetch_follower_count(client)
        if count is not None:
            client.follower_count = count
            client.follower_count_updated_at = _utcnow()
            updated += 1
    db.commit()
    return updated

def refresh_post_metrics(db: Session, posts: list[Post], limit: int = REFRESH_POST_LIMIT) -> int:
    candidates = [p for p in posts if p.status == "published" and (p.instagram_post_id or p.facebook_post_id)]
    updated = 0
    for post in candidates[:limit]:
        metrics = fetch_post_metrics(post, post.client)
        if not metrics:
            continue
        for field in METRIC_FIELDS:
            setattr(post, field, metrics.get(field, 0))
        post.metrics_updated_at = _utcnow()
        updated += 1
    db.commit()
    log_event("analytics_refresh", posts_updated=updated, candidates=len(candidates))
    return updated
