import html
import io
import os
import random
import re
import time
from datetime import datetime, timezone
from PIL import Image, ImageDraw, ImageFont
from pypdf import PdfReader, PdfWriter

from ..config import settings
from ..errors import TemplateError
from ..models import Client, Post
from .analytics import created_sort_key, engagement_of, engagement_totals, posts_by_platform, posts_by_type, status_counts
from .scheduling import as_utc

ALLOWED_TEMPLATE_EXTENSIONS = (".html", ".htm", ".pdf")
MAX_TEMPLATE_BYTES = 10 * 1024 * 1024
TEMPLATE_PREFIX = "template-"
TOP_CLIENTS = 5
RECENT_POSTS = 10
CAPTION_PREVIEW = 100

DEFAULT_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Social Media Report</title></head>
<body style="font-family: Arial, sans-serif; color: #1f2937;">
  <h1>Social Media Report: {{clientName}}</h1>
  <p>Period: {{startDate}} to {{endDate}}</p>
  <h2>Summary</h2>
  <ul>
    <li>Total posts: {{totalPosts}}</li>
    <li>Published: {{publishedPosts}}</li>
    <li>Scheduled: {{scheduledPosts}}</li>
    <li>Drafts: {{draftPosts}}</li>
    <li>Success rate: {{successRate}}</li>
    <li>Instagram posts: {{instagramPosts}}</li>
    <li>Facebook posts: {{facebookPosts}}</li>
  </ul>
  <h2>Engagement</h2>
  <ul>
    <li>Engagements: {{totalEngagements}}</li>
    <li>Views: {{totalViews}}</li>
    <li>Likes: {{totalLikes}}</li>
    <li>Comments: {{totalComments}}</li>
    <li>Shares: {{totalShares}}</li>
    <li>Saves: {{totalSaves}}</li>
    <li>Followers: {{totalFollowers}}</li>
    <li>Engagement rate: {{engagementRate}}</li>
  </ul>
  <h2>Top clients</h2>
  <ul>{{topClients}}</ul>
  <h2>Recent posts</h2>
  <ul>{{recentPosts}}</ul>
  <p style="color: #6b7280;">Generated {{generatedAt}}</p>
</body>
</html>
"""

PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")

def _utcnow():
    return datetime.now(timezone.utc)

def _percent(part: int, whole: int) -> str:
    if whole <= 0:
        return "0%"
    return f"{part / whole * 100:.2f}%"

def _month_rows(posts: list[Post]) -> list[dict]:
    monthly: dict[str, dict] = {}
    for p in posts:
        created = as_utc(p.created_at)
        if not created:
            continue
        key = created.strftime("%Y-%m")
        row = monthly.setdefault(key, {"month": key, "total": 0, "published": 0, "scheduled": 0, "draft": 0})
        row["total"] += 1
        if p.status in ("published", "scheduled", "draft"):
            row[p.status] += 1
    return [monthly[k] for k in sorted(monthly)]

def _client_row(client: Client, posts: list[Post]) -> dict:
    mine = [p for p in posts if p.client_id == client.id]
    totals = engagement_totals(mine)
    return {
        "client_id": client.id,
        "client_name": client.name or "Unknown Client",
        "client_email": client.email,
        "platform": client.platform,
        "follower_count": client.follower_count or 0,
        **status_counts(mine),
        "engagement_metrics": {
            "total_engagements": totals["total_engagements"],
            "total_views": totals["total_views"],
            "total_likes": totals["total_likes"],
            "total_comments": totals["total_comments"],
            "total_shares": totals["total_shares"],
            "total_saves": totals["total_saves"],
            "engagement_rate": totals["engagement_rate"],
        },
    }

def generate_report(posts: list[Post], clients: list[Client], start: datetime | None = None,
                    end: datetime | None = None) -> dict:
    counts = status_counts(posts)
    totals = engagement_totals(posts)

    summary = {
        **counts,
        "success_rate": _percent(counts["published_posts"], counts["total_posts"]),
        "total_engagements": totals["total_engagements"],
        "total_views": totals["total_views"],
        "total_likes": totals["total_likes"],
        "total_comments": totals["total_comments"],
        "total_shares": totals["total_shares"],
        "total_saves": totals["total_saves"],
        "total_reach": totals["total_reach"],
        "total_impressions": totals["total_impressions"],
        "total_followers": sum(c.follower_count or 0 for c in clients),
        "engagement_rate": f"{totals['engagement_rate']}%",
    }

    by_client = [_client_row(c, posts) for c in clients]
    top_clients = sorted(by_client, key=lambda row: row["total_posts"], reverse=True)[:TOP_CLIENTS]

    recent = sorted(posts, key=created_sort_key, reverse=True)[:RECENT_POSTS]
    recent_rows = [
        {
            "id": p.id,
            "caption": (p.caption or p.content or "")[:CAPTION_PREVIEW],
            "status": p.status,
            "platform": p.platform,
            "post_type": p.post_type or "post",
            "created_at": p.created_at,
            "client_name": p.client.name if p.client else "Unknown Client",
            "engagement": engagement_of(p),
        }
        for p in recent
    ]

    return {
        "generated_at": _utcnow().isoformat(),
        "period": {
            "start_date": start.isoformat() if start else None,
            "end_date": end.isoformat() if end else None,
        },
        "summary": summary,
        "breakdown": {
            "by_platform": posts_by_platform(posts),
            "by_type": posts_by_type(posts),
            "by_client": by_client,
            "by_month": _month_rows(posts),
        },
        "top_clients": top_clients,
        "recent_posts": recent_rows,
    }

def _display_date(value: str | None) -> str:
    if not value:
        return "All Time"
    return datetime.fromisoformat(value).strftime("%Y-%m-%d")

def placeholder_values(report: dict, client: Client | None = None) -> dict:
    summary = report["summary"]
    by_platform = report["breakdown"]["by_platform"]
    by_type = report["breakdown"]["by_type"]

    top_clients = "".join(
        f"<li>{i}. {html.escape(row['client_name'])}: {row['total_posts']} posts "
        f"({row['published_posts']} published)</li>"
        for i, row in enumerate(report["top_clients"], start=1)
    ) or "<li>No clients</li>"
    recent = "".join(
        f"<li>{html.escape(row['caption'] or 'No caption')} - {row['status']} ({row['platform']})</li>"
        for row in report["recent_posts"]
    ) or "<li>No posts</li>"

    return {
        "totalPosts": summary["total_posts"],
        "publishedPosts": summary["published_posts"],
        "scheduledPosts": summary["scheduled_posts"],
        "draftPosts": summary["draft_posts"],
        "failedPosts": summary["failed_posts"],
        "successRate": summary["success_rate"],
        "instagramPosts": by_platform["instagram"],
        "facebookPosts": by_platform["facebook"],
        "postTypePosts": by_type.get("post", 0),
        "storyTypePosts": by_type.get("story", 0),
        "reelTypePosts": by_type.get("reel", 0),
        "carouselTypePosts": by_type.get("carousel", 0),
        "totalEngagements": summary["total_engagements"],
        "totalViews": summary["total_views"],
        "totalLikes": summary["total_likes"],
        "totalComments": summary["total_comments"],
        "totalShares": summary["total_shares"],
        "totalSaves": summary["total_saves"],
        "totalFollowers": summary["total_followers"],
        "engagementRate": summary["engagement_rate"],
        "startDate": _display_date(report["period"]["start_date"]),
        "endDate": _display_date(report["period"]["end_date"]),
        "generatedAt": datetime.fromisoformat(report["generated_at"]).strftime("%Y-%m-%d %H:%M UTC"),
        "clientName": html.escape(client.name) if client else "All Clients",
        "clientEmail": html.escape(client.email or "") if client else "",
        "topClients": top_clients,
        "recentPosts": recent,
    }

def render_html(report: dict, template: str | None = None, client: Client | None = None) -> str:
    """Fills {{placeholders}}; unknown placeholders are left untouched."""
    values = placeholder_values(report, client)

    def _sub(match):
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)

    return PLACEHOLDER_RE.sub(_sub, template if template is not None else DEFAULT_HTML_TEMPLATE)

def fill_pdf_template(template_bytes: bytes, report: dict, client: Client | None = None) -> bytes:
    try:
        reader = PdfReader(io.BytesIO(template_bytes))
    except Exception as e:
        raise TemplateError(f"Template is not a readable PDF: {e}") from e
    if not reader.pages:
        raise TemplateError("Template PDF has no pages")

    writer = PdfWriter()
    writer.append(reader)

    fields = reader.get_fields() or {}
    if fields:
        values = placeholder_values(report, client)
        # Only plain-text fields; list placeholders carry HTML
        fill = {name: str(values[name]) for name in fields if name in values and name not in ("topClients", "recentPosts")}
        for page in writer.pages:
            writer.update_page_form_field_values(page, fill, auto_regenerate=False)
        writer.set_need_appearances_writer(True)

    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()

def _load_font(size: int):
    font_paths = [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/System/Library/Fonts/Supplemental/Arial.ttf",
    ]
    for p in font_paths:
        if os.path.exists(p):
            try:
                return ImageFont.truetype(p, size)
            except OSError:
                continue
    return ImageFont.load_default()

def render_summary_pdf(report: dict, client: Client | None = None) -> bytes:
    """Renders the report summary onto an A4-sized page with Pillow and saves it as a PDF."""
    values = placeholder_values(report, client)
    width, height = 1240, 1754
    img = Image.new("RGB", (width, height), color=(255, 255, 255))
    draw = ImageDraw.Draw(img)
    title_font = _load_font(48)
    body_font = _load_font(30)

    lines = [
        ("Period", f"{values['startDate']} to {values['endDate']}"),
        ("Total posts", values["totalPosts"]),
        ("Published", values["publishedPosts"]),
        ("Scheduled", values["scheduledPosts"]),
        ("Drafts", values["draftPosts"]),
        ("Failed", values["failedPosts"]),
        ("Success rate", values["successRate"]),
        ("Instagram posts", values["instagramPosts"]),
        ("Facebook posts", values["facebookPosts"]),
        ("Engagements", values["totalEngagements"]),
        ("Views", values["totalViews"]),
        ("Likes", values["totalLikes"]),
        ("Comments", values["totalComments"]),
        ("Shares", values["totalShares"]),
        ("Saves", values["totalSaves"]),
        ("Followers", values["totalFollowers"]),
        ("Engagement rate", values["engagementRate"]),
    ]

    y = 120
    name = html.unescape(str(values["clientName"]))
    draw.text((100, y), f"Social Media Report: {name}", font=title_font, fill=(17, 24, 39))
    y += 110
    for label, value in lines:
        draw.text((100, y), f"{label}:", font=body_font, fill=(75, 85, 99))
        draw.text((600, y), str(value), font=body_font, fill=(17, 24, 39))
        y += 56

    y += 40
    draw.text((100, y), "Top clients", font=body_font, fill=(17, 24, 39))
    y += 56
    for i, row in enumerate(report["top_clients"], start=1):
        draw.text((120, y), f"{i}. {row['client_name']}: {row['total_posts']} posts ({row['published_posts']} published)",
                  font=body_font, fill=(75, 85, 99))
        y += 48

    draw.text((100, height - 120), f"Generated {values['generatedAt']}", font=body_font, fill=(156, 163, 175))

    out = io.BytesIO()
    img.save(out, format="PDF", resolution=150.0)
    return out.getvalue()

def _templates_dir() -> str:
    os.makedirs(settings.templates_dir, exist_ok=True)
    return os.path.abspath(settings.templates_dir)

def template_path(filename: str) -> str:
    base = _templates_dir()
    path = os.path.abspath(os.path.join(base, filename))
    if os.path.dirname(path) != base:
        raise TemplateError("Invalid file path")
    return path

def save_template(original_name: str, content: bytes) -> dict:
    ext = os.path.splitext(original_name or "")[1].lower()
    if ext not in ALLOWED_TEMPLATE_EXTENSIONS:
        raise TemplateError("Only HTML and PDF templates are allowed")
    if len(content) > MAX_TEMPLATE_BYTES:
        raise TemplateError("Template exceeds the 10MB limit")
    if ext != ".pdf":
        try:
            content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TemplateError("HTML templates must be UTF-8 encoded") from e

    stored = f"{TEMPLATE_PREFIX}{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"
    with open(template_path(stored), "wb") as f:
        f.write(content)
    return {"filename": stored, "original_name": original_name, "size": len(content)}

def list_templates() -> list[dict]:
    base = _templates_dir()
    templates = []
    for name in os.listdir(base):
        if not name.startswith(TEMPLATE_PREFIX):
            continue
        stat = os.stat(os.path.join(base, name))
        templates.append({
            "filename": name,
            "size": stat.st_size,
            "created_at": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            "type": "pdf" if name.lower().endswith(".pdf") else "html",
        })
    return sorted(templates, key=lambda t: t["created_at"], reverse=True)

def read_template(filename: str) -> bytes:
    path = template_path(filename)
    if not os.path.exists(path):
        raise TemplateError(f"Template not found: {filename}")
    with open(path, "rb") as f:
        return f.read()

def read_html_template(filename: str) -> str:
    try:
        return read_template(filename).decode("utf-8")
    except UnicodeDecodeError as e:
        raise TemplateError(f"Template is not valid UTF-8: {filename}") from e

def delete_template(filename: str) -> bool:
    path = template_path(filename)
    if not os.path.exists(path):
        return False
    os.remove(path)
    return True

def build_report_document(report: dict, fmt: str, template_name: str | None = None,
                          client: Client | None = None) -> tuple[bytes, str]:
    """Returns (body, media type) for json, html or pdf output."""
    if fmt == "pdf":
        if template_name and template_name.lower().endswith(".pdf"):
            return fill_pdf_template(read_template(template_name), report, client), "application/pdf"
        return render_summary_pdf(report, client), "application/pdf"
    if fmt == "html":
        if template_name and template_name.lower().endswith(".pdf"):
            raise TemplateError("HTML output needs an HTML template")
        template = read_html_template(template_name) if template_name else None
        return render_html(report, template, client).encode("utf-8"), "text/html; charset=utf-8"
    raise TemplateError(f"Unsupported report format: {fmt}")
