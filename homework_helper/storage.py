"""
Object storage boundary (Aliyun OSS).

Direct browser uploads get a POST policy signed with HMAC-SHA1; server-side
uploads and signed GET URLs for private objects go through the oss2 SDK.
Without OSS credentials, uploads are returned as inline base64 data URLs.
"""
import base64
import hashlib
import hmac
import json
import logging
import mimetypes
import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from urllib.parse import quote, unquote, urlparse

import httpx
import oss2

from . import config
from .errors import UpstreamCallError, UpstreamConfigError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "heic")
ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp", "image/heic")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
SIGNATURE_TTL_SEC = 3600
STORAGE_TIMEOUT_SEC = 30.0

_MIME_BY_EXT = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
}


def file_extension(file_name: str) -> str:
    name = (file_name or "").strip()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def validate_image_name(file_name: str) -> str:
    ext = file_extension(file_name)
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError("Unsupported file type, please upload an image", field="fileName")
    return ext


def validate_image_payload(file_name: str, content_type: Optional[str], size: int) -> str:
    ext = validate_image_name(file_name)
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime and mime != "application/octet-stream" and mime not in ALLOWED_MIME_TYPES:
        raise ValidationError("Unsupported content type, please upload an image", field="file")
    if size <= 0:
        raise ValidationError("Uploaded file is empty", field="file")
    if size > MAX_UPLOAD_BYTES:
        raise ValidationError("File exceeds the 10 MB limit", field="file")
    return ext


def _require_oss() -> Dict[str, str]:
    settings = config.oss_settings()
    if not all(settings.values()):
        raise UpstreamConfigError("Object storage is not configured")
    return settings


def oss_host(settings: Dict[str, str]) -> str:
    return f"https://{settings['bucket']}.{settings['region']}.aliyuncs.com"


def _hmac_sha1_b64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def user_upload_dir(user_id: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"homework/{user_id}/{now.year}/{now.month:02d}/"


def build_object_key(directory: str, ext: str) -> str:
    return f"{directory}{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext or 'jpg'}"


# ==========================================
# SIGNING
# ==========================================

def generate_upload_signature(file_name: str, user_id: str, now: Optional[datetime] = None) -> Dict[str, object]:
    """POST policy for a direct browser upload, confined to the user's monthly directory."""
    settings = _require_oss()
    ext = validate_image_name(file_name)
    now = now or datetime.now(timezone.utc)

    directory = user_upload_dir(user_id, now)
    key = build_object_key(directory, ext)
    expiration = now + timedelta(seconds=SIGNATURE_TTL_SEC)

    policy_data = {
        "expiration": expiration.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        "conditions": [
            ["content-length-range", 0, MAX_UPLOAD_BYTES],
            ["starts-with", "$key", directory],
        ],
    }
    policy_b64 = base64.b64encode(json.dumps(policy_data).encode("utf-8")).decode("ascii")

    return {
        "access_id": settings["access_key_id"],
        "policy": policy_b64,
        "signature": _hmac_sha1_b64(settings["access_key_secret"], policy_b64),
        "dir": directory,
        "host": oss_host(settings),
        "expire": int(expiration.timestamp()),
        "key": key,
    }


def _bucket(settings: Dict[str, str]) -> oss2.Bucket:
    auth = oss2.Auth(settings["access_key_id"], settings["access_key_secret"])
    endpoint = f"https://{settings['region']}.aliyuncs.com"
    return oss2.Bucket(auth, endpoint, settings["bucket"], connect_timeout=STORAGE_TIMEOUT_SEC)


def generate_signed_url(object_key: str, expires_in: int = SIGNATURE_TTL_SEC) -> str:
    settings = _require_oss()
    return _bucket(settings).sign_url("GET", object_key, expires_in)


def is_oss_url(url: str) -> bool:
    host = urlparse(url).netloc
    return host.endswith(".aliyuncs.com")


def object_key_from_url(url: str) -> str:
    return unquote(urlparse(url).path.lstrip("/"))


def is_user_object_url(url: str, user_id: str) -> bool:
    """True for an https URL into the configured bucket under the user's own upload root."""
    if not config.is_oss_configured():
        return False
    settings = config.oss_settings()
    parsed = urlparse(url)
    if parsed.scheme != "https" or f"https://{parsed.netloc}" != oss_host(settings):
        return False
    key = object_key_from_url(url)
    return key.startswith(f"homework/{user_id}/") and ".." not in key.split("/")


# ==========================================
# UPLOAD
# ==========================================

def put_object(object_key: str, data: bytes, content_type: str) -> str:
    """Server-mediated upload through the OSS SDK; returns the object URL."""
    settings = _require_oss()
    try:
        _bucket(settings).put_object(object_key, data, headers={"Content-Type": content_type})
    except oss2.exceptions.OssError as e:
        logger.error(f"OSS upload failed for {object_key}: {e}")
        raise UpstreamCallError(f"Upload to object storage failed: {e}") from e
    return f"{oss_host(settings)}/{quote(object_key)}"


def to_data_url(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def store_upload(user_id: str, file_name: str, content_type: Optional[str], data: bytes) -> Dict[str, str]:
    ext = validate_image_payload(file_name, content_type, len(data))
    mime = _MIME_BY_EXT.get(ext) or content_type or "image/jpeg"

    if config.is_oss_configured():
        key = build_object_key(user_upload_dir(user_id), ext)
        url = put_object(key, data, mime)
        logger.info(f"Stored upload {key} ({len(data)} bytes)")
        return {"mode": "oss", "url": url, "key": key}

    key = f"inline/{uuid.uuid4().hex}.{ext}"
    logger.info(f"Object storage not configured, returning inline upload {key}")
    return {"mode": "inline", "url": to_data_url(data, mime), "key": key}


# ==========================================
# DOWNLOAD
# ==========================================

def _guess_type(url: str) -> str:
    guessed, _ = mimetypes.guess_type(urlparse(url).path)
    return guessed or "image/jpeg"


def fetch_image_as_data_url(image_url: str) -> str:
    """Resolves an image reference into an inline data URL the vision model can read."""
    if image_url.startswith("data:"):
        return image_url

    fetch_url = image_url
    if is_oss_url(image_url) and config.is_oss_configured():
        fetch_url = generate_signed_url(object_key_from_url(image_url))

    try:
        with httpx.Client(timeout=STORAGE_TIMEOUT_SEC, follow_redirects=True) as client:
            with client.stream("GET", fetch_url) as resp:
                if resp.status_code >= 400:
                    raise UpstreamCallError(f"Image download failed: {resp.status_code} {resp.reason_phrase}")
                declared = resp.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > MAX_UPLOAD_BYTES:
                    raise UpstreamCallError("Image download failed: image exceeds the 10 MB limit")
                body = bytearray()
                for chunk in resp.iter_bytes():
                    body.extend(chunk)
                    if len(body) > MAX_UPLOAD_BYTES:
                        raise UpstreamCallError("Image download failed: image exceeds the 10 MB limit")
                content_type = resp.headers.get("content-type", "").split(";")[0].strip()
    except httpx.HTTPError as e:
        logger.error(f"Image download failed for {image_url}: {e}")
        raise UpstreamCallError(f"Image download failed: {e}") from e

    return to_data_url(bytes(body), content_type or _guess_type(image_url))
