# src/employee_portal_bff/uploads.py
"""
Photo uploads from the portal to S3.

Two key policies:

- stable key    ``{namespace}/{identifier}.jpg``: re-uploading with the same
  identifier overwrites the previous object at the same public URL (profile
  photos).
- generated key ``{namespace}/{uuid4}.{ext}``: every upload gets a fresh key
  and is never overwritten (attendance evidence).

Each upload is a single put_object call. Failures are reported once and not
retried.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile

from .config import Settings
from .errors import StorageError, UploadValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"
DEFAULT_EXTENSION = "jpg"


@dataclass(frozen=True)
class UploadedObject:
    bucket: str
    key: str
    content_type: str
    public_url: str


def stable_key(namespace: str, identifier: str) -> str:
    return f"{namespace}/{identifier}.jpg"


def file_extension(filename: Optional[str]) -> str:
    if not filename or "." not in filename:
        return DEFAULT_EXTENSION
    ext = filename.rsplit(".", 1)[1].strip()
    return ext or DEFAULT_EXTENSION


def generated_key(namespace: str, filename: Optional[str]) -> str:
    return f"{namespace}/{uuid.uuid4()}.{file_extension(filename)}"


def public_url(bucket: str, region: str, key: str) -> str:
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def create_s3_client(settings: Settings) -> Any:
    return boto3.client(
        "s3",
        region_name=settings.AWS_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY.get_secret_value(),
    )


class S3ObjectStore:
    """Thin wrapper over a boto3 S3 client; the client is created once and reused."""

    def __init__(self, client: Any, bucket: str, region: str):
        self.client = client
        self.bucket = bucket
        self.region = region

    async def put(
            self,
            key: str,
            body: bytes,
            content_type: Optional[str] = None,
            acl: Optional[str] = None,
            cache_control: Optional[str] = None,
    ) -> UploadedObject:
        content_type = content_type or DEFAULT_CONTENT_TYPE
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if acl:
            params["ACL"] = acl
        if cache_control:
            params["CacheControl"] = cache_control

        try:
            # boto3 is blocking; keep it off the event loop.
            await run_in_threadpool(self.client.put_object, **params)
        except ClientError as e:
            error = e.response.get("Error", {})
            name = error.get("Code") or type(e).__name__
            message = error.get("Message") or str(e)
            request_id = e.response.get("ResponseMetadata", {}).get("RequestId")
            logger.error(f"UPLOAD: S3 put_object failed for {key}: {name} - {message} (request id: {request_id})")
            raise StorageError(name, message) from e
        except BotoCoreError as e:
            logger.error(f"UPLOAD: S3 put_object failed for {key}: {type(e).__name__} - {e}")
            raise StorageError(type(e).__name__, str(e)) from e

        url = public_url(self.bucket, self.region, key)
        logger.info(f"UPLOAD: Stored {len(body)} bytes at s3://{self.bucket}/{key}")
        return UploadedObject(bucket=self.bucket, key=key, content_type=content_type, public_url=url)


# --- Multipart handling ---

def _file_parts(form: FormData) -> list:
    return [(name, value) for name, value in form.multi_items() if isinstance(value, UploadFile)]


def first_file_part(form: FormData) -> UploadFile:
    if not form or len(form) == 0:
        raise UploadValidationError("No file uploaded")
    files = _file_parts(form)
    if not files:
        raise UploadValidationError("File is missing")
    return files[0][1]


def named_file_part(form: FormData, field: str = "file") -> UploadFile:
    if not form or len(form) == 0:
        raise UploadValidationError("No file uploaded")
    for name, value in _file_parts(form):
        if name == field:
            return value
    raise UploadValidationError("File is missing")


def required_text_field(form: FormData, field: str) -> str:
    value = form.get(field)
    if value is None or isinstance(value, UploadFile) or not value.strip():
        raise UploadValidationError(f"{field} is missing")
    return value.strip()


async def upload_attendance_photo(form: FormData, store: S3ObjectStore, settings: Settings) -> UploadedObject:
    file = first_file_part(form)
    key = generated_key(settings.ATTENDANCE_PREFIX, file.filename)
    body = await file.read()
    return await store.put(
        key,
        body,
        content_type=file.content_type,
        acl="public-read" if settings.S3_PUBLIC_READ_ACL else None,
    )


async def upload_profile_photo(form: FormData, store: S3ObjectStore, settings: Settings) -> UploadedObject:
    file = named_file_part(form, "file")
    kode_user = required_text_field(form, "kode_user")
    key = stable_key(settings.PROFILE_PREFIX, kode_user)
    body = await file.read()
    # Visibility comes from the bucket policy; max-age=0 so a replaced photo shows up at once.
    return await store.put(key, body, content_type=file.content_type, cache_control="max-age=0")
