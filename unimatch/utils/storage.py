"""Profile photo storage on Google Cloud Storage.

Photos are written under ``photos/{user_id}/`` and referenced from the
profile by their public URL.  The GCS client is blocking; callers on the
event loop should wrap these helpers in ``asyncio.to_thread``.
"""

import mimetypes
import uuid
from typing import Optional

from google.cloud import storage as gcs_storage

from unimatch.config import get_settings
from unimatch.utils.errors import ValidationError

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
PUBLIC_HOST = "https://storage.googleapis.com"


def get_storage_client():
    return gcs_storage.Client(project=get_settings().GCP_PROJECT_ID or None)


def get_bucket():
    client = get_storage_client()
    return client.bucket(get_settings().GCS_BUCKET_NAME)


def photo_path(user_id: uuid.UUID, content_type: str, filename: Optional[str] = None) -> str:
    extension = mimetypes.guess_extension(content_type) or ""
    if not extension and filename and "." in filename:
        extension = "." + filename.rsplit(".", 1)[1].lower()
    return f"photos/{user_id}/{uuid.uuid4().hex}{extension}"


def public_url(bucket_name: str, path: str) -> str:
    return f"{PUBLIC_HOST}/{bucket_name}/{path}"


def path_from_url(url: str) -> Optional[str]:
    """Return the object path for a URL in our bucket, or None for foreign URLs."""
    prefix = f"{PUBLIC_HOST}/{get_settings().GCS_BUCKET_NAME}/"
    if not url.startswith(prefix):
        return None
    return url[len(prefix):]


def upload_photo(
    user_id: uuid.UUID,
    file_bytes: bytes,
    content_type: str,
    filename: Optional[str] = None,
) -> str:
    """Upload one photo and return its public URL."""
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("Only image files are allowed", {"content_type": content_type})
    max_bytes = get_settings().MAX_PHOTO_BYTES
    if len(file_bytes) > max_bytes:
        raise ValidationError("Photo is too large", {"max_bytes": max_bytes})

    bucket = get_bucket()
    path = photo_path(user_id, content_type, filename)
    blob = bucket.blob(path)
    blob.upload_from_string(file_bytes, content_type=content_type)
    return public_url(bucket.name, path)


def delete_photo(url: str) -> bool:
    """Delete a stored photo.  Returns False when the URL is not ours."""
    path = path_from_url(url)
    if path is None:
        return False
    bucket = get_bucket()
    bucket.blob(path).delete()
    return True
