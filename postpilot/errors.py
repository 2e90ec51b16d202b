class PostPilotError(Exception):
    """Base class for domain errors raised by services."""

class GraphAPIError(PostPilotError):
    """A Graph API call returned an error payload or an unusable response."""

    def __init__(self, message: str, *, code: int | None = None, subcode: int | None = None,
                 fbtrace_id: str | None = None, response: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.fbtrace_id = fbtrace_id
        self.response = response or {}

    @classmethod
    def from_payload(cls, payload: dict, fallback: str = "Graph API request failed") -> "GraphAPIError":
        err = (payload or {}).get("error") or {}
        return cls(
            err.get("message") or fallback,
            code=err.get("code"),
            subcode=err.get("error_subcode"),
            fbtrace_id=err.get("fbtrace_id"),
            response=payload,
        )

class PublishError(PostPilotError):
    def __init__(self, platform: str, message: str, *, is_aspect_ratio_error: bool = False,
                 media_url: str | None = None, post_type: str | None = None):
        super().__init__(message)
        self.platform = platform
        self.message = message
        self.is_aspect_ratio_error = is_aspect_ratio_error
        self.media_url = media_url
        self.post_type = post_type

    def to_dict(self) -> dict:
        data = {"platform": self.platform, "error": self.message}
        if self.is_aspect_ratio_error:
            data["is_aspect_ratio_error"] = True
            data["media_url"] = self.media_url
            data["post_type"] = self.post_type
        return data

class ValidationFailed(PostPilotError):
    """Composer validation rejected a post; carries every collected error."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        super().__init__("; ".join(errors))
        self.errors = errors
        self.warnings = warnings or []

class TemplateError(PostPilotError):
    """A report template is missing, malformed or outside the templates directory."""
