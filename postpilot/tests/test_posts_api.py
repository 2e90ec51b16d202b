from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from postpilot.errors import PublishError
from postpilot.models import Post

IMG = "https://cdn.example.com/media/photo.jpg"

def _future(hours=24):
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()

@pytest.fixture
def draft(db, user, ig_client):
    post = Post(owner_id=user.id, client_id=ig_client.id, platform="instagram", post_type="post",
                content="Spring menu", caption="Spring menu", media_urls=[IMG], status="draft")
    db.add(post)
    db.commit()
    db.refresh(post)
    return post

def test_post_without_schedule_is_a_draft(api, auth_headers, ig_client):
    res = api.post("/api/posts", headers=auth_headers, json={
        "client_id": ig_client.id, "platform": "instagram", "content": "Idea for later",
        "hashtags": ["#bread", "sourdough"], "tags": [{"name": " Promo "}],
    })
    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "draft"
    assert body["format"] == "text"
    assert body["hashtags"] == ["bread", "sourdough"]
    assert body["tags"][0]["name"] == "Promo"

def test_scheduled_post(api, auth_headers, ig_client):
    res = api.post("/api/posts", headers=auth_headers, json={
        "client_id": ig_client.id, "platform": "instagram", "post_type": "post",
        "content": "Fresh loaves tomorrow", "media_urls": [IMG], "scheduled_time": _future(),
    })
    assert res.status_code == 201
    assert res.json()["status"] == "scheduled"
    assert res.json()["format"] == "image"

    countdown = api.get(f"/api/posts/{res.json()['id']}/countdown", headers=auth_headers).json()
    assert countdown["status"] == "scheduled"
    assert countdown["time_until"].startswith("23h") or countdown["time_until"].startswith("1d")

def test_content_is_required(api, auth_headers, ig_client):
    res = api.post("/api/posts", headers=auth_headers, json={"client_id": ig_client.id, "platform": "instagram"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Content is required"

def test_past_schedule_is_rejected(api, auth_headers, ig_client):
    res = api.post("/api/posts", headers=auth_headers, json={
        "client_id": ig_client.id, "platform": "instagram", "content": "Too late",
        "media_urls": [IMG], "scheduled_time": _future(hours=-1),
    })
    assert res.status_code == 400
    assert res.json()["detail"] == "Scheduled time must be in the future"

def test_missing_credentials_are_validation_errors(api, auth_headers, manual_client):
    res = api.post("/api/posts", headers=auth_headers, json={
        "client_id": manual_client.id, "platform": "instagram", "content": "Hello",
        "media_urls": [IMG], "scheduled_time": _future(),
    })
    assert res.status_code == 422
    assert "Instagram User ID is missing for this client" in res.json()["detail"]["errors"]

def test_publish_immediately(api, db, auth_headers, ig_client):
    result = {"post_id": "1790001", "url": "https://instagram.com/p/1790001"}
    with patch("postpilot.services.publisher.publish_to_instagram", return_value=result) as ig:
        res = api.post("/api/posts", headers=auth_headers, json={
            "client_id": ig_client.id, "platform": "instagram", "content": "Now!",
            "hashtags": ["bakery"], "media_urls": [IMG], "publish_immediately": True,
        })

    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "published"
    assert body["instagram_url"] == "https://instagram.com/p/1790001"
    assert body["published_time"] is not None
    assert ig.call_args.kwargs["caption"] == "Now!\n\n#bakery"
    assert ig.call_args.kwargs["access_token"] == "EAAG-page-token"

def test_publish_endpoint_reports_failure(api, db, auth_headers, draft):
    with patch("postpilot.services.publisher.publish_to_instagram",
               side_effect=PublishError("instagram", "Invalid OAuth access token")):
        res = api.post(f"/api/posts/{draft.id}/publish", headers=auth_headers)

    assert res.status_code == 502
    assert res.json()["detail"]["error"] == "instagram: Invalid OAuth access token"
    db.expire_all()
    assert db.get(Post, draft.id).status == "failed"

def test_published_post_only_accepts_metadata(api, db, auth_headers, draft):
    draft.status = "published"
    db.commit()

    res = api.put(f"/api/posts/{draft.id}", headers=auth_headers, json={"content": "Rewritten"})
    assert res.status_code == 400

    res = api.put(f"/api/posts/{draft.id}", headers=auth_headers,
                  json={"content": "Rewritten", "location": "Harbor St", "tags": [{"name": "Launch"}]})
    assert res.status_code == 200
    assert res.json()["content"] == "Spring menu"
    assert res.json()["location"] == "Harbor St"
    assert res.json()["tags"][0]["name"] == "Launch"

    assert api.post(f"/api/posts/{draft.id}/publish", headers=auth_headers).status_code == 400
    assert api.delete(f"/api/posts/{draft.id}", headers=auth_headers).status_code == 400

def test_schedule_then_unschedule(api, auth_headers, draft):
    res = api.put(f"/api/posts/{draft.id}", headers=auth_headers, json={"scheduled_time": _future(48)})
    assert res.status_code == 200
    assert res.json()["status"] == "scheduled"

    res = api.put(f"/api/posts/{draft.id}", headers=auth_headers, json={"scheduled_time": None})
    assert res.json()["status"] == "draft"
    assert res.json()["scheduled_time"] is None

def test_list_filters_and_stats(api, db, user, auth_headers, draft, ig_client):
    db.add(Post(owner_id=user.id, client_id=ig_client.id, platform="facebook", post_type="post",
                content="Done", status="published"))
    db.commit()

    listed = api.get("/api/posts", headers=auth_headers, params={"status": "draft"}).json()
    assert listed["total"] == 1
    assert listed["posts"][0]["id"] == draft.id

    page = api.get("/api/posts", headers=auth_headers, params={"limit": 1, "skip": 1}).json()
    assert page["total"] == 2
    assert len(page["posts"]) == 1

    stats = api.get("/api/posts/stats/count", headers=auth_headers).json()
    assert stats == {"total": 2, "scheduled": 0, "published": 1, "draft": 1, "failed": 0}

def test_delete_draft(api, db, auth_headers, draft):
    assert api.delete(f"/api/posts/{draft.id}", headers=auth_headers).status_code == 200
    assert api.get(f"/api/posts/{draft.id}", headers=auth_headers).status_code == 404

def test_validate_endpoint(api, auth_headers, ig_client, manual_client):
    ok = api.post("/api/posts/validate", headers=auth_headers, json={
        "client_id": ig_client.id, "platform": "instagram", "post_type": "post", "media_urls": [IMG],
    }).json()
    assert ok["is_valid"] is True
    assert ok["media"][0]["kind"] == "image"

    bad = api.post("/api/posts/validate", headers=auth_headers, json={
        "client_id": manual_client.id, "platform": "instagram", "post_type": "reel", "media_urls": [IMG],
    }).json()
    assert bad["is_valid"] is False
    assert "Reels require a video file" in bad["errors"]

def test_capabilities_endpoint(api, auth_headers, ig_client):
    res = api.get(f"/api/posts/clients/{ig_client.id}/capabilities", headers=auth_headers)
    assert res.status_code == 200
    body = res.json()
    assert "instagram" in body["available_platforms"]
    assert body["validation"]["is_valid"] is True

    perms = api.get(f"/api/posts/clients/{ig_client.id}/permissions", headers=auth_headers).json()
    assert perms["can_access_instagram"] is True

def test_hashtag_and_time_suggestions(api, auth_headers):
    tags = api.post("/api/posts/hashtags/suggest", headers=auth_headers,
                    json={"caption": "Morning workout at the gym"}).json()
    assert tags["category"] == "fitness"

    times = api.get("/api/posts/scheduling/suggestions", headers=auth_headers, params={"tz": "UTC"}).json()
    assert [s["label"] for s in times["suggestions"]][:2] == ["Next Business Hour", "Tomorrow 10 AM"]

def test_update_rejects_null_and_blank_content(api, db, auth_headers, draft):
    for body in ({"content": None}, {"platform": None}, {"post_type": None}):
        assert api.put(f"/api/posts/{draft.id}", headers=auth_headers, json=body).status_code == 422

    res = api.put(f"/api/posts/{draft.id}", headers=auth_headers, json={"content": "   "})
    assert res.status_code == 400
    assert res.json()["detail"] == "Content is required"

    db.expire_all()
    assert db.get(Post, draft.id).content == "Spring menu"
