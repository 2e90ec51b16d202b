import pytest
from types import SimpleNamespace
from unittest.mock import patch

from postpilot.errors import GraphAPIError, PublishError
from postpilot.security.crypto import encrypt_token
from postpilot.services.publisher import (
    apply_publish_results,
    public_media_url,
    publish_post,
    publish_to_facebook,
    publish_to_instagram,
)

IMG = "https://cdn.example.com/media/photo.jpg"
VIDEO = "https://cdn.example.com/media/clip.mp4"

@pytest.fixture(autouse=True)
def no_sleep():
    with patch("postpilot.services.publisher.time.sleep") as sleep:
        yield sleep

def test_public_media_url_rewrites_uploads():
    with patch("postpilot.services.publisher.settings.public_base_url", "http://posts.example.com"):
        assert public_media_url("http://localhost:8000/uploads/a.jpg") == "https://posts.example.com/uploads/a.jpg"
    assert public_media_url(IMG) == IMG

def test_instagram_rejects_localhost_media():
    with pytest.raises(PublishError) as exc:
        publish_to_instagram(caption="hi", media_urls=["http://localhost:9000/a.jpg"], post_type="post",
                             ig_user_id="1784", access_token="tok")
    assert "localhost" in exc.value.message

def test_instagram_feed_image():
    calls = []

    def fake_post(path, data):
        calls.append((path, data))
        return {"id": "creation-1"} if path.endswith("/media") else {"id": "media-9"}

    with patch("postpilot.services.publisher.graph_post", side_effect=fake_post):
        result = publish_to_instagram(caption="Fresh bread", media_urls=[IMG], post_type="post",
                                      ig_user_id="1784", access_token="tok")

    assert result["post_id"] == "media-9"
    assert result["url"] == "https://instagram.com/p/media-9"
    assert calls[0][1]["image_url"] == IMG
    assert calls[0][1]["caption"] == "Fresh bread"
    assert calls[1] == ("1784/media_publish", {"creation_id": "creation-1", "access_token": "tok"})

def test_instagram_reel_polls_until_finished():
    statuses = iter([{"status_code": "IN_PROGRESS"}, {"status_code": "FINISHED"}])
    with patch("postpilot.services.publisher.graph_post", side_effect=[{"id": "c1"}, {"id": "reel-1"}]) as post, \
            patch("postpilot.services.publisher.graph_get", side_effect=lambda *a, **k: next(statuses)):
        result = publish_to_instagram(caption="", media_urls=[VIDEO], post_type="reel",
                                      ig_user_id="1784", access_token="tok")

    container = post.call_args_list[0].args[1]
    assert container["media_type"] == "REELS"
    assert container["video_url"] == VIDEO
    assert result["url"] == "https://instagram.com/reel/reel-1"

def test_instagram_processing_error_fails():
    with patch("postpilot.services.publisher.graph_post", return_value={"id": "c1"}), \
            patch("postpilot.services.publisher.graph_get", return_value={"status_code": "ERROR", "status": "bad codec"}):
        with pytest.raises(PublishError) as exc:
            publish_to_instagram(caption="", media_urls=[VIDEO], post_type="post",
                                 ig_user_id="1784", access_token="tok")
    assert "bad codec" in exc.value.message

def test_instagram_carousel_builds_children():
    ids = iter(["child-1", "child-2", "parent", "published"])
    with patch("postpilot.services.publisher.graph_post", side_effect=lambda p, d: {"id": next(ids)}) as post:
        publish_to_instagram(caption="Two", media_urls=[IMG, IMG.replace("photo", "photo2")], post_type="carousel",
                             ig_user_id="1784", access_token="tok")

    parent = post.call_args_list[2].args[1]
    assert parent["media_type"] == "CAROUSEL"
    assert parent["children"] == "child-1,child-2"
    assert post.call_args_list[0].args[1]["is_carousel_item"] == "true"

def test_media_publish_retries_while_not_ready(no_sleep):
    not_ready = GraphAPIError("Media not ready", code=9007, subcode=2207027)
    with patch("postpilot.services.publisher.graph_post",
               side_effect=[{"id": "c1"}, not_ready, not_ready, {"id": "m1"}]):
        result = publish_to_instagram(caption="x", media_urls=[IMG], post_type="post",
                                      ig_user_id="1784", access_token="tok")
    assert result["post_id"] == "m1"
    assert no_sleep.call_count == 2

def test_aspect_ratio_rejection_is_flagged():
    err = GraphAPIError("The aspect ratio is not supported.", code=36003)
    with patch("postpilot.services.publisher.graph_post", side_effect=err):
        with pytest.raises(PublishError) as exc:
            publish_to_instagram(caption="x", media_urls=[IMG], post_type="post",
                                 ig_user_id="1784", access_token="tok")
    assert exc.value.is_aspect_ratio_error is True
    assert exc.value.to_dict()["media_url"] == IMG
    assert "4:5 portrait" in exc.value.message

def test_facebook_multi_photo_uses_attached_media():
    ids = iter([{"id": "p1"}, {"id": "p2"}, {"id": "page_post"}])
    with patch("postpilot.services.publisher.graph_post", side_effect=lambda p, d: next(ids)) as post:
        result = publish_to_facebook(message="Hello", media_urls=[IMG, IMG], page_id="555", access_token="tok")

    assert post.call_args_list[0].args[1]["published"] == "false"
    feed_path, feed_data = post.call_args_list[2].args
    assert feed_path == "555/feed"
    assert feed_data["attached_media[1]"] == '{"media_fbid": "p2"}'
    assert result["url"] == "https://facebook.com/page_post"

def test_facebook_single_video_goes_to_videos_edge():
    with patch("postpilot.services.publisher.graph_post", return_value={"id": "v1"}) as post:
        publish_to_facebook(message="Watch", media_urls=[VIDEO], page_id="555", access_token="tok")
    assert post.call_args.args[0] == "555/videos"

def _client(platform="instagram"):
    return SimpleNamespace(platform=platform, ig_user_id="1784", page_id="555", social_media_id=None,
                           page_access_token=encrypt_token("tok"))

def _post(platform="both"):
    return SimpleNamespace(platform=platform, post_type="post", caption="Hi", content="Hi", hashtags=["sale"],
                           media_urls=[IMG], instagram_post_id=None, instagram_url=None, facebook_post_id=None,
                           facebook_url=None, publishing_errors=None, error_message=None, status="scheduled",
                           published_time=None)

def test_publish_post_skips_platforms_the_client_cannot_serve():
    with patch("postpilot.services.publisher.publish_to_instagram",
               return_value={"post_id": "m1", "url": "https://instagram.com/p/m1"}) as ig:
        results = publish_post(_post("both"), _client("instagram"))

    assert ig.call_args.kwargs["caption"] == "Hi\n\n#sale"
    assert ig.call_args.kwargs["access_token"] == "tok"
    assert results["facebook"] is None
    assert results["errors"][0]["platform"] == "facebook"

def test_partial_success_is_published_with_errors():
    post = _post("both")
    apply_publish_results(post, {
        "instagram": {"post_id": "m1", "url": "https://instagram.com/p/m1"},
        "facebook": None,
        "errors": [{"platform": "facebook", "error": "boom"}],
    })
    assert post.status == "published"
    assert post.instagram_post_id == "m1"
    assert post.error_message == "facebook: boom"

def test_total_failure_marks_post_failed():
    post = _post("instagram")
    apply_publish_results(post, {"instagram": None, "facebook": None,
                                 "errors": [{"platform": "instagram", "error": "expired token"}]})
    assert post.status == "failed"
    assert post.error_message == "instagram: expired token"
    assert post.published_time is None
