import requests
from ..config import settings
from ..errors import GraphAPIError

GRAPH_TIMEOUT = 30

def graph_endpoint(path: str) -> str:
    return f"{settings.graph_url}/{path.lstrip('/')}"

def _parse(resp: requests.Response) -> dict:
    try:
        payload = resp.json()
    except ValueError:
        payload = {"error": {"message": (resp.text or "")[:500] or f"HTTP {resp.status_code}"}}
    if not isinstance(payload, dict):
        payload = {"data": payload}
    if resp.status_code >= 400 or "error" in payload:
        raise GraphAPIError.from_payload(payload, fallback=f"Graph API returned HTTP {resp.status_code}")
    return payload

def graph_get(path: str, params: dict | None = None) -> dict:
    try:
        resp = requests.get(graph_endpoint(path), params=params or {}, timeout=GRAPH_TIMEOUT)
    except requests.RequestException as e:
        raise GraphAPIError(f"Graph API unreachable: {e}") from e
    return _parse(resp)

def graph_post(path: str, data: dict | None = None) -> dict:
    try:
        resp = requests.post(graph_endpoint(path), data=data or {}, timeout=GRAPH_TIMEOUT)
    except requests.RequestException as e:
        raise GraphAPIError(f"Graph API unreachable: {e}") from e
    return _parse(resp)
