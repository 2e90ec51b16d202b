import threading
import time

from ..errors import GraphAPIError
from ..logging_setup import log_event
from .graph import graph_get

CACHE_TTL_SECONDS = 300
METRIC_NOT_SUPPORTED = 100

REEL_METRICS = "plays,likes,comments,saved,shares,reach"
FEED_METRICS = "likes,comments,saved,shares"

_cache: dict[str, tuple[float, object]] = {}
_cache_lock = threading.Lock()

def _cached(key: str):
    with _cache_lock:
        hit = _cache.get(key)
        if hit and time.monotonic() - hit[0] < CACHE_TTL_SECONDS:
            return hit[1]
        _cache.pop(key, None)
    return None

def _store(key: str, value):
    now = time.monotonic()
    with _cache_lock:
        for stale in [k for k, (at, _) in _cache.items() if now - at >= CACHE_TTL_SECONDS]:
            del _cache[stale]
        _cache[key] = (now, value)
    return value

def clear_cache():
    with _cache_lock:
        _cache.clear()

def _empty_metrics() -> dict:
    return {"likes": 0, "comments": 0, "shares": 0, "saves": 0, "views": 0, "reach": 0, "impressions": 0}

def instagram_media_type(post_type: str | None) -> str:
    return {"reel": "REELS", "story": "STORY", "carousel": "CAROUSEL_ALBUM"}.get(post_type or "", "IMAGE")

def fetch_instagram_post_metrics(media_id: str, access_token: str, media_type: str = "IMAGE") -> dict | None:
    """Reels report plays as views and their reach; other media types only expose interactions."""
    if not media_id or not access_token:
        return None

    key = f"ig_media_{media_id}_{media_type}"
    cached = _cached(key)
    if cached is not None:
        return cached

    is_reel = media_type in ("REEL", "REELS")
    metrics = REEL_METRICS if is_reel else FEED_METRICS
    try:
        payload = graph_get(f"{media_id}/insights", {"metric": metrics, "access_token": access_token})
    except GraphAPIError as e:
        if e.code == METRIC_NOT_SUPPORTED:
            return _store(key, _empty_metrics())
        log_event("ig_insights_fail", level="warning", media_id=media_id, meta_error_code=e.code)
        return None

    values = {}
    for metric in payload.get("data", []):
        series = metric.get("values") or []
        if series:
            values[metric.get("name")] = series[-1].get("value") or 0

    result = _empty_metrics()
    result.update({
        "likes": values.get("likes", 0),
        "comments": values.get("comments", 0),
        "shares": values.get("shares", 0),
        "saves": values.get("saved", 0),
        "views": values.get("plays", 0) if is_reel else 0,
        "reach": values.get("reach", 0) if is_reel else 0,
    })
    return _store(key, result)

def fetch_facebook_post_metrics(post_id: str, access_token: str) -> dict | None:
    if not post_id or not access_token:
        return None

    key = f"fb_post_{post_id}"
    cached = _cached(key)
    if cached is not None:
        return cached

    try:
        data = graph_get(post_id, {
            "fields": "likes.summary(true),comments.summary(true),shares,reactions.summary(true)",
            "access_token": access_token,
        })
    except GraphAPIError as e:
        log_event("fb_insights_fail", level="warning", post_id=post_id, meta_error_code=e.code)
        return None

    def _total(field):
        return ((data.get(field) or {}).get("summary") or {}).get("total_count") or 0

    result = _empty_metrics()
    result.update({
        "likes": _total("likes") or _total("reactions"),
        "comments": _total("comments"),
        "shares": (data.get("shares") or {}).get("count") or 0,
    })
    return _store(key, result)

def fetch_instagram_follower_count(ig_user_id: str, access_token: str) -> int | None:
    if not ig_user_id or not access_token:
        return None
    try:
        data = graph_get(ig_user_id, {"fields": "followers_count", "access_token": access_token})
    except GraphAPIError as e:
        log_event("ig_followers_fail", level="warning", ig_user_id=ig_user_id, meta_error_code=e.code)
        return None
    return data.get("followers_count") or 0

def fetch_facebook_follower_count(page_id: str, access_token: str) -> int | None:
    if not page_id or not access_token:
        return None
    try:
        data = graph_get(page_id, {"fields": "fan_count", "access_token": access_token})
    except GraphAPIError as e:
        log_event("fb_followers_fail", level="warning", page_id=page_id, meta_error_code=e.code)
        return None
    return data.get("fan_count") or 0
