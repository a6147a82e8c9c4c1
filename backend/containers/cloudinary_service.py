import hashlib
import time
from typing import Any, Dict, Iterator, List, Tuple
from urllib.parse import urlparse

import requests
from django.conf import settings


CLOUDINARY_API_BASE_URL = "https://api.cloudinary.com/v1_1"
CLOUDINARY_DELIVERY_BASE_URL = "https://res.cloudinary.com"

# Keys that are sent with a signed request but never part of the signature.
_UNSIGNED_KEYS = {"file", "api_key", "resource_type", "cloud_name"}


class CloudinaryError(Exception):
    pass


def _get_credentials() -> Tuple[str, str, str]:
    """
    Return (cloud_name, api_key, api_secret) from settings.
    Explicit CLOUDINARY_* settings win over the CLOUDINARY_URL shorthand.
    """
    cloud_name = settings.CLOUDINARY_CLOUD_NAME
    api_key = settings.CLOUDINARY_API_KEY
    api_secret = settings.CLOUDINARY_API_SECRET
    if settings.CLOUDINARY_URL:
        parsed = urlparse(settings.CLOUDINARY_URL)
        cloud_name = cloud_name or parsed.netloc.rsplit("@", 1)[-1]
        api_key = api_key or (parsed.username or "")
        api_secret = api_secret or (parsed.password or "")
    if not (cloud_name and api_key and api_secret):
        raise CloudinaryError(
            "Cloudinary credentials are not configured. Set CLOUDINARY_URL or "
            "CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
        )
    return cloud_name, api_key, api_secret


def _error_message(resp: requests.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message") or resp.text
    except ValueError:
        return resp.text


def api_sign_request(params: Dict[str, Any], api_secret: str) -> str:
    """
    Cloudinary request signature: sorted "key=value" pairs joined with "&",
    secret appended, SHA-1 hex digest. Empty values are left out and list
    values are joined with commas.
    """
    parts = []
    for key in sorted(params):
        if key in _UNSIGNED_KEYS:
            continue
        value = params[key]
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        parts.append(f"{key}={value}")
    to_sign = "&".join(parts) + api_secret
    return hashlib.sha1(to_sign.encode("utf-8")).hexdigest()


def _signed_params(options: Dict[str, Any]) -> Dict[str, Any]:
    _, api_key, api_secret = _get_credentials()
    params = {k: v for k, v in options.items() if v is not None}
    for key, value in list(params.items()):
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
    params["timestamp"] = str(int(time.time()))
    params["signature"] = api_sign_request(params, api_secret)
    params["api_key"] = api_key
    return params


def encode_context(context: Dict[str, str]) -> str:
    """Encode a dict as Cloudinary context: "key=value|key=value"."""

    def _escape(text: str) -> str:
        return str(text).replace("\\", "\\\\").replace("=", "\\=").replace("|", "\\|")

    return "|".join(f"{_escape(k)}={_escape(v)}" for k, v in context.items())


def decode_context(resource: Dict[str, Any]) -> Dict[str, str]:
    """
    Return the custom context of a resource returned by the Admin or Search API.
    Search results carry it flat under "context"; the Admin API nests it
    under "context.custom".
    """
    context = resource.get("context") or {}
    if isinstance(context, dict) and isinstance(context.get("custom"), dict):
        context = context["custom"]
    if isinstance(context, str):
        return _parse_context_string(context)
    return {str(k): str(v) for k, v in context.items()} if isinstance(context, dict) else {}


def _parse_context_string(raw: str) -> Dict[str, str]:
    pairs: List[List[str]] = []
    current = [""]
    escaped = False
    for char in raw:
        if escaped:
            current[-1] += char
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == "=" and len(current) == 1:
            current.append("")
        elif char == "|":
            pairs.append(current)
            current = [""]
        else:
            current[-1] += char
    pairs.append(current)
    return {p[0]: p[1] for p in pairs if len(p) == 2 and p[0]}


def upload(file, resource_type: str = "image", filename: str | None = None, **options) -> Dict[str, Any]:
    """
    Signed upload of a file-like object or bytes.
    Returns the Cloudinary response, which includes public_id and secure_url.
    """
    cloud_name, _, _ = _get_credentials()
    url = f"{CLOUDINARY_API_BASE_URL}/{cloud_name}/{resource_type}/upload"
    data = _signed_params(options)
    files = {"file": (filename or "file", file)}
    try:
        resp = requests.post(url, data=data, files=files, timeout=settings.CLOUDINARY_TIMEOUT)
    except requests.RequestException as exc:
        raise CloudinaryError(f"Upload failed: {exc}") from exc
    if resp.status_code != 200:
        raise CloudinaryError(f"Upload failed: {resp.status_code} - {_error_message(resp)}")
    return resp.json()


def destroy(public_id: str, resource_type: str = "image", invalidate: bool = True) -> str:
    """
    Delete a single asset. Returns Cloudinary's result string ("ok", "not found", ...).
    """
    cloud_name, _, _ = _get_credentials()
    url = f"{CLOUDINARY_API_BASE_URL}/{cloud_name}/{resource_type}/destroy"
    data = _signed_params({"public_id": public_id, "invalidate": invalidate})
    try:
        resp = requests.post(url, data=data, timeout=settings.CLOUDINARY_TIMEOUT)
    except requests.RequestException as exc:
        raise CloudinaryError(f"Destroy failed: {exc}") from exc
    if resp.status_code != 200:
        raise CloudinaryError(f"Destroy failed: {resp.status_code} - {_error_message(resp)}")
    return resp.json().get("result", "")


def search(
    expression: str,
    max_results: int = 100,
    next_cursor: str | None = None,
    sort_by: str = "created_at",
    direction: str = "asc",
) -> Dict[str, Any]:
    """
    Run one page of the Search API. Returns {"resources": [...], "next_cursor": ...}.
    """
    cloud_name, api_key, api_secret = _get_credentials()
    url = f"{CLOUDINARY_API_BASE_URL}/{cloud_name}/resources/search"
    body: Dict[str, Any] = {
        "expression": expression,
        "max_results": max_results,
        "sort_by": [{sort_by: direction}],
        "with_field": ["context"],
    }
    if next_cursor:
        body["next_cursor"] = next_cursor
    try:
        resp = requests.post(url, json=body, auth=(api_key, api_secret), timeout=settings.CLOUDINARY_TIMEOUT)
    except requests.RequestException as exc:
        raise CloudinaryError(f"Search failed: {exc}") from exc
    if resp.status_code != 200:
        raise CloudinaryError(f"Search failed: {resp.status_code} - {_error_message(resp)}")
    return resp.json()


def iter_resources_by_prefix(prefix: str, page_size: int = 100) -> Iterator[Dict[str, Any]]:
    """Yield every resource whose public id starts with prefix, oldest first."""
    cursor = None
    while True:
        page = search(f"public_id:{prefix}*", max_results=page_size, next_cursor=cursor)
        for resource in page.get("resources") or []:
            yield resource
        cursor = page.get("next_cursor")
        if not cursor:
            break


def raw_url(public_id: str) -> str:
    """
    Delivery URL of a raw asset with a timestamp query so the CDN never
    serves a stale copy.
    """
    cloud_name, _, _ = _get_credentials()
    timestamp = int(time.time())
    return f"{CLOUDINARY_DELIVERY_BASE_URL}/{cloud_name}/raw/upload/{public_id}?v={timestamp}"


def fetch_bytes(url: str) -> bytes:
    try:
        resp = requests.get(url, timeout=settings.CLOUDINARY_TIMEOUT)
    except requests.RequestException as exc:
        raise CloudinaryError(f"Download failed: {exc}") from exc
    if resp.status_code != 200:
        raise CloudinaryError(f"Download failed: {resp.status_code} - {url}")
    return resp.content


def fetch_text(url: str) -> str:
    return fetch_bytes(url).decode("utf-8")


def ping() -> Dict[str, Any]:
    """Check credentials against the Admin API ping endpoint."""
    cloud_name, api_key, api_secret = _get_credentials()
    url = f"{CLOUDINARY_API_BASE_URL}/{cloud_name}/ping"
    try:
        resp = requests.get(url, auth=(api_key, api_secret), timeout=settings.CLOUDINARY_TIMEOUT)
    except requests.RequestException as exc:
        raise CloudinaryError(f"Ping failed: {exc}") from exc
    if resp.status_code != 200:
        raise CloudinaryError(f"Ping failed: {resp.status_code} - {_error_message(resp)}")
    return resp.json()
