import re

TRENDING_HASHTAGS = {
    "business": ["business", "entrepreneur", "startup", "marketing", "success"],
    "food": ["foodie", "delicious", "yum", "cooking", "recipe"],
    "travel": ["travel", "wanderlust", "adventure", "vacation", "explore"],
    "fitness": ["fitness", "workout", "health", "gym", "motivation"],
    "fashion": ["fashion", "style", "outfit", "beauty", "model"],
    "tech": ["technology", "innovation", "coding", "programming", "ai"],
    "nature": ["nature", "photography", "landscape", "outdoor", "beautiful"],
    "lifestyle": ["lifestyle", "life", "happiness", "inspiration", "motivation"],
}

# Checked in order; first category with a keyword hit wins
CATEGORY_KEYWORDS = {
    "business": ["business", "work", "office", "company", "meeting", "professional"],
    "food": ["food", "eat", "drink", "restaurant", "cooking", "recipe", "delicious"],
    "travel": ["travel", "trip", "vacation", "destination", "explore", "adventure"],
    "fitness": ["fitness", "workout", "gym", "exercise", "health", "training"],
    "fashion": ["fashion", "style", "outfit", "dress", "beauty", "model"],
    "tech": ["tech", "coding", "programming", "software", "computer", "digital"],
    "nature": ["nature", "outdoor", "landscape", "mountain", "beach", "park"],
    "lifestyle": ["life", "happiness", "inspiration", "motivation", "success"],
}

GENERAL_HASHTAGS = ["love", "instagood", "photooftheday", "beautiful", "happy", "cute", "tbt", "followme"]

CATEGORY_RELEVANCE = 90
CAPTION_RELEVANCE = 70
GENERAL_RELEVANCE = 40
MAX_CAPTION_TAGS = 5
MAX_SUGGESTIONS = 20

def _words(text: str) -> list[str]:
    cleaned = re.sub(r"[^\w\s]", "", (text or "").lower())
    return [w for w in cleaned.split() if len(w) > 2]

def detect_category(caption: str) -> str | None:
    words = set(_words(caption))
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(k in words for k in keywords):
            return category
    return None

def format_hashtags(hashtags: list[str] | None) -> str:
    """Renders stored hashtags as '#a #b', prefixing '#' where missing."""
    tags = [t.strip() for t in (hashtags or []) if t and t.strip()]
    return " ".join(t if t.startswith("#") else f"#{t}" for t in tags)

def build_caption(caption: str | None, hashtags: list[str] | None) -> str:
    text = caption or ""
    rendered = format_hashtags(hashtags)
    if rendered:
        text = f"{text}\n\n{rendered}" if text else rendered
    return text

def suggest_hashtags(caption: str, existing: list[str] | None = None, category: str | None = None) -> dict:
    words = _words(caption)
    if category not in TRENDING_HASHTAGS:
        category = detect_category(caption)

    candidates: list[tuple[str, int]] = []
    if category:
        candidates += [(tag, CATEGORY_RELEVANCE) for tag in TRENDING_HASHTAGS[category]]

    caption_tags = [w.capitalize() for w in words if 3 <= len(w) <= 15][:MAX_CAPTION_TAGS]
    candidates += [(tag, CAPTION_RELEVANCE) for tag in caption_tags]
    candidates += [(tag, GENERAL_RELEVANCE) for tag in GENERAL_HASHTAGS]

    taken = {t.lstrip("#").lower() for t in (existing or [])}
    suggestions = []
    for tag, relevance in candidates:
        key = tag.lower()
        if key in taken:
            continue
        taken.add(key)
        suggestions.append({"tag": tag, "category": category or "general", "relevance": relevance})

    # Stable sort keeps dictionary order within a relevance band
    suggestions.sort(key=lambda s: s["relevance"], reverse=True)
    return {"category": category or "general", "suggestions": suggestions[:MAX_SUGGESTIONS]}
