import math
import mimetypes
import os
from dataclasses import dataclass
from urllib.parse import urlparse

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".bmp"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"}
AUDIO_EXTENSIONS = {".mp3", ".wav", ".aac", ".m4a", ".ogg"}

IG_MAX_VIDEO_BYTES = 100 * 1024 * 1024
IG_MAX_IMAGE_BYTES = 8 * 1024 * 1024
REEL_MAX_SECONDS = 90
REEL_MIN_SECONDS = 3
IG_STORY_MAX_SECONDS = 15
CAROUSEL_MIN_ITEMS = 2
CAROUSEL_MAX_ITEMS = 10

@dataclass
class MediaInfo:
    kind: str  # image | video | unsupported
    size_bytes: int = 0
    duration: float | None = None
    width: int | None = None
    height: int | None = None
    url: str | None = None

    @property
    def aspect_ratio(self) -> str | None:
        if self.width and self.height:
            return f"{self.width}:{self.height}"
        return None

    @property
    def size_formatted(self) -> str:
        return format_file_size(self.size_bytes)

def detect_media_kind(mime_type: str | None, filename: str | None = None) -> str:
    """Returns image, video, audio or unknown; the MIME prefix wins over the extension."""
    if mime_type:
        for kind in ("image", "video", "audio"):
            if mime_type.startswith(f"{kind}/"):
                return kind

    ext = os.path.splitext(filename or "")[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    if ext in AUDIO_EXTENSIONS:
        return "audio"
    return "unknown"

def is_video_url(url: str) -> bool:
    path = urlparse(url or "").path.lower()
    return os.path.splitext(path)[1] in VIDEO_EXTENSIONS or "/video" in path

def guess_mime_type(filename: str) -> str | None:
    return mimetypes.guess_type(filename)[0]

def format_file_size(size_bytes: int) -> str:
    if not size_bytes:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(units) - 1)
    value = round(size_bytes / (1024 ** i), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"

def build_media_info(kind: str, **kwargs) -> MediaInfo:
    if kind not in ("image", "video"):
        kind = "unsupported"
    return MediaInfo(kind=kind, **kwargs)

def describe_files(media: list[MediaInfo]) -> list[str]:
    """Per-file errors, mirroring what the composer shows next to each upload."""
    return [
        f"File {i + 1}: Unsupported file type. Only images and videos are allowed."
        for i, item in enumerate(media)
        if item.kind == "unsupported"
    ]

def validate_for_post_type(post_type: str, platform: str, media: list[MediaInfo]) -> dict:
    errors: list[str] = []

    if not media:
        return {"is_valid": False, "errors": ["At least one media file is required"]}

    if post_type == "reel":
        if len(media) != 1:
            errors.append("Reels must have exactly one video file")
        else:
            item = media[0]
            if item.kind != "video":
                errors.append("Reels require a video file")
            elif item.duration and item.duration > REEL_MAX_SECONDS:
                errors.append(f"Reel videos must be 90 seconds or less (current: {round(item.duration)}s)")
            elif item.duration and item.duration < REEL_MIN_SECONDS:
                errors.append("Reel videos must be at least 3 seconds")

    elif post_type == "story":
        if any(item.kind == "unsupported" for item in media):
            errors.append("Stories only support images and videos")
        if platform in ("instagram", "both"):
            if any(item.kind == "video" and item.duration and item.duration > IG_STORY_MAX_SECONDS for item in media):
                errors.append("Instagram story videos must be 15 seconds or less")

    elif post_type == "carousel":
        if len(media) < CAROUSEL_MIN_ITEMS:
            errors.append("Carousels require at least 2 images")
        if len(media) > CAROUSEL_MAX_ITEMS:
            errors.append("Carousels can have maximum 10 images")
        if any(item.kind != "image" for item in media):
            errors.append("Carousels only support images")

    else:
        if any(item.kind == "unsupported" for item in media):
            errors.append("Posts only support images and videos")

    if platform in ("instagram", "both"):
        for index, item in enumerate(media, start=1):
            if item.kind == "video" and item.size_bytes > IG_MAX_VIDEO_BYTES:
                errors.append(f"Instagram video {index} exceeds 100MB limit ({item.size_formatted})")
            if item.kind == "image" and item.size_bytes > IG_MAX_IMAGE_BYTES:
                errors.append(f"Instagram image {index} exceeds 8MB limit ({item.size_formatted})")

    return {"is_valid": not errors, "errors": errors}

def derive_post_format(media: list[MediaInfo]) -> str:
    kinds = {item.kind for item in media}
    if not kinds:
        return "text"
    if kinds == {"image"}:
        return "image"
    if kinds == {"video"}:
        return "video"
    return "mixed"
