from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from ..config import settings
from ..errors import GraphAPIError
from .graph import graph_get

PROVIDERS = ("instagram", "facebook")

SCOPES = {
    "instagram": [
        "instagram_basic",
        "instagram_content_publish",
        "instagram_manage_insights",
        "pages_show_list",
        "pages_read_engagement",
        "business_management",
    ],
    "facebook": [
        "pages_show_list",
        "pages_read_engagement",
        "pages_manage_posts",
        "read_insights",
    ],
}

def redirect_uri(provider: str) -> str:
    return f"{settings.oauth_redirect_base.rstrip('/')}/api/oauth/callback/{provider}"

def _session(provider: str) -> OAuth2Session:
    if not settings.facebook_app_id or not settings.facebook_app_secret:
        raise GraphAPIError("Facebook OAuth is not configured. Set FACEBOOK_APP_ID and FACEBOOK_APP_SECRET.")
    return OAuth2Session(
        settings.facebook_app_id,
        settings.facebook_app_secret,
        scope=",".join(SCOPES[provider]),
        redirect_uri=redirect_uri(provider),
        token_endpoint_auth_method="client_secret_post",
    )

def authorize_url(provider: str, state: str) -> str:
    uri, _ = _session(provider).create_authorization_url(
        f"https://www.facebook.com/{settings.graph_api_version}/dialog/oauth", state=state
    )
    return uri

def exchange_code(provider: str, code: str) -> str:
    try:
        token = _session(provider).fetch_token(f"{settings.graph_url}/oauth/access_token", code=code)
    except AuthlibBaseError as e:
        raise GraphAPIError(f"Code exchange failed: {e}") from e
    access_token = token.get("access_token")
    if not access_token:
        raise GraphAPIError("No access token in OAuth response", response=dict(token))
    return access_token

def long_lived_token(short_token: str) -> dict:
    """Trades a short-lived user token for a ~60 day one; returns {access_token, expires_in}."""
    return graph_get("oauth/access_token", {
        "grant_type": "fb_exchange_token",
        "client_id": settings.facebook_app_id,
        "client_secret": settings.facebook_app_secret,
        "fb_exchange_token": short_token,
    })

def list_pages(user_token: str) -> list[dict]:
    data = graph_get("me/accounts", {
        "fields": "id,name,access_token,link,fan_count,instagram_business_account{id,username,followers_count}",
        "access_token": user_token,
    })
    return data.get("data") or []

def pick_page(pages: list[dict], provider: str) -> dict:
    """Instagram needs a page with a linked business account; Facebook takes the first page."""
    if provider == "instagram":
        for page in pages:
            if page.get("instagram_business_account"):
                return page
        raise GraphAPIError("No Facebook page with a linked Instagram business account was found")
    if not pages:
        raise GraphAPIError("No Facebook pages were found for this account")
    return pages[0]

def instagram_account(ig_user_id: str, access_token: str) -> dict:
    return graph_get(ig_user_id, {"fields": "id,username,followers_count", "access_token": access_token})
