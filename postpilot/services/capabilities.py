"""
Platform and post-type capability lookups for a client account.

Everything here is a pure function of the client record (ig_user_id, page_access_token,
page_id); no Graph API calls are made.
"""

INSTAGRAM_POST_TYPES = ["post", "story", "reel", "carousel"]
FACEBOOK_POST_TYPES = ["post", "carousel"]
SHARED_POST_TYPES = ["post", "carousel"]

def client_permissions(client) -> dict:
    has_token = bool(client.page_access_token)
    has_ig_user = bool(client.ig_user_id)
    has_page = bool(client.page_id)

    permissions = {
        "can_access_instagram": has_ig_user and has_token,
        "can_access_facebook": has_page or has_token,
        "has_instagram_token": has_token,
        "has_instagram_user_id": has_ig_user,
        "has_facebook_page_id": has_page,
        "has_facebook_token": has_token,
        "errors": [],
        "recommendations": [],
    }

    if not has_ig_user:
        permissions["errors"].append({
            "type": "missing_field",
            "field": "ig_user_id",
            "message": "Instagram User ID is missing",
        })
        permissions["recommendations"].append("Connect Instagram account to enable Instagram posting")

    if not has_token:
        permissions["errors"].append({
            "type": "missing_field",
            "field": "page_access_token",
            "message": "Page Access Token is missing",
        })
        permissions["recommendations"].append("Re-authenticate Instagram account to get access token")

    if not has_page and not has_token:
        permissions["errors"].append({
            "type": "missing_field",
            "field": "page_id",
            "message": "Facebook Page ID or Access Token is missing",
        })
        permissions["recommendations"].append("Connect Facebook page to enable Facebook posting")

    return permissions

def available_platforms(client, permissions: dict | None = None) -> list[str]:
    if client is None:
        return ["facebook"]
    permissions = permissions if permissions is not None else client_permissions(client)

    platforms = []
    if client.ig_user_id and client.page_access_token and permissions.get("can_access_instagram"):
        platforms.append("instagram")

    # Facebook is always offered; credentials are checked at publish time
    platforms.append("facebook")

    if "instagram" in platforms:
        platforms.append("both")
    return platforms

def available_post_types(platform: str | None, permissions: dict | None = None) -> list[str]:
    if platform == "instagram":
        if not (permissions or {}).get("can_access_instagram"):
            return ["post"]
        return list(INSTAGRAM_POST_TYPES)
    if platform == "facebook":
        return list(FACEBOOK_POST_TYPES)
    if platform == "both":
        return list(SHARED_POST_TYPES)
    return ["post"]

def validate_selection(client, platform: str | None, post_type: str | None) -> dict:
    errors: list[str] = []
    warnings: list[str] = []

    if client is None:
        errors.append("Please select a client account")
        return {"is_valid": False, "errors": errors, "warnings": warnings}

    if not platform:
        errors.append("Please select a platform")
        return {"is_valid": False, "errors": errors, "warnings": warnings}

    permissions = client_permissions(client)
    if platform not in available_platforms(client, permissions):
        if platform == "instagram":
            errors.append("Instagram is not connected for this client. Please check your access tokens.")
            warnings.append("Missing: ig_user_id or page_access_token")
        else:
            errors.append(f'Platform "{platform}" is not available for this client')
        return {"is_valid": False, "errors": errors, "warnings": warnings}

    if not post_type:
        errors.append("Please select a post type")
        return {"is_valid": False, "errors": errors, "warnings": warnings}

    if post_type not in available_post_types(platform, permissions):
        errors.append(f'Post type "{post_type}" is not available for platform "{platform}"')
        return {"is_valid": False, "errors": errors, "warnings": warnings}

    if platform == "instagram":
        if not client.page_access_token:
            warnings.append("Instagram page_access_token is missing. Publishing may fail.")
        if not client.ig_user_id:
            warnings.append("Instagram ig_user_id is missing. Publishing may fail.")

    if platform == "facebook" and not client.page_id and not client.page_access_token:
        warnings.append("Facebook page credentials may be missing. Publishing may fail.")

    return {"is_valid": not errors, "errors": errors, "warnings": warnings}

def has_required_tokens(client, platform: str) -> bool:
    if client is None:
        return False
    permissions = client_permissions(client)
    instagram_ok = bool(client.ig_user_id and client.page_access_token) and permissions["can_access_instagram"]
    facebook_ok = bool(client.page_id or client.page_access_token)

    if platform == "instagram":
        return instagram_ok
    if platform == "facebook":
        return facebook_ok
    if platform == "both":
        return instagram_ok and facebook_ok
    return False

def connection_status(client) -> dict:
    if client is None:
        return {
            "instagram": {"connected": False, "message": "No client data"},
            "facebook": {"connected": False, "message": "No client data"},
        }

    has_token = bool(client.page_access_token)
    if not client.ig_user_id:
        ig_message = "Instagram User ID missing"
    elif not has_token:
        ig_message = "Instagram Access Token missing"
    else:
        ig_message = "Instagram connected"

    fb_connected = bool(client.page_id or has_token)
    return {
        "instagram": {
            "connected": bool(client.ig_user_id and has_token),
            "has_token": has_token,
            "has_user_id": bool(client.ig_user_id),
            "message": ig_message,
        },
        "facebook": {
            "connected": fb_connected,
            "has_page_id": bool(client.page_id),
            "has_token": has_token,
            "message": "Facebook connected" if fb_connected else "Facebook credentials missing",
        },
    }

def recommendations(permissions: dict | None) -> list[str]:
    if not permissions:
        return []

    recs = []
    for error in permissions.get("errors", []):
        if error.get("type") == "permission_denied":
            recs.append("Request missing permissions from Facebook Developer Console")
        elif error.get("type") == "token_expired":
            recs.append("Re-authenticate your Instagram account")
    recs.extend(permissions.get("recommendations", []))
    return recs
