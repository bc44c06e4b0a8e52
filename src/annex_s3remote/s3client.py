from annex_s3remote.interfaces import IObjectStoreClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from botocore.exceptions import HTTPClientError
from dataclasses import dataclass
from urllib.parse import quote
from zope.interface import implementer

import boto3
import logging


logger = logging.getLogger(__name__)

FATAL = "fatal"
TRANSIENT = "transient"

UPLOAD = "upload"
HIDE = "hide"

SHA1_METADATA_KEY = "sha1"

_TRANSIENT_CODES = frozenset(
    {
        "InternalError",
        "RequestLimitExceeded",
        "RequestTimeout",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "TooManyRequests",
    }
)
_TRANSIENT_STATUSES = frozenset({408, 429})


class ObjectStoreError(Exception):
    """A failed object store call, tagged FATAL or TRANSIENT."""

    def __init__(self, kind, message, operation=None, name=None):
        self.kind = kind
        self.operation = operation
        self.name = name
        super().__init__(message)


def is_retryable(error):
    return error.kind == TRANSIENT


def classify(error):
    """Return the kind of a botocore exception."""
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _TRANSIENT_CODES:
            return TRANSIENT
        if status is not None and (status >= 500 or status in _TRANSIENT_STATUSES):
            return TRANSIENT
        return FATAL
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TRANSIENT
    return FATAL


@dataclass(frozen=True)
class ObjectEntry:
    name: str
    identity: str
    action: str


@dataclass(frozen=True)
class ObjectListing:
    entries: list
    next_start: str = None
    next_version: str = None


@dataclass(frozen=True)
class ObjectInfo:
    name: str
    identity: str
    sha1: str
    length: int


@dataclass(frozen=True)
class ObjectVersion:
    name: str
    identity: str


class DownloadStream:
    """Body of a GET response.

    Network failures while reading surface as ObjectStoreError, like
    failures of the request itself.
    """

    def __init__(self, client, name, body):
        self._client = client
        self.name = name
        self._body = body

    def read(self, size=-1):
        amt = None if size is None or size < 0 else size
        try:
            return self._body.read(amt)
        except (BotoCoreError, ClientError) as e:
            self._client._wrap_error(e, "download", self.name)

    def close(self):
        self._body.close()


@implementer(IObjectStoreClient)
class S3Client:
    """Thin boto3 wrapper for a versioned S3-compatible bucket."""

    def __init__(
        self,
        bucket_name,
        endpoint_url=None,
        region_name=None,
        aws_access_key_id=None,
        aws_secret_access_key=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
    ):
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url

        config = Config(
            s3={"addressing_style": addressing_style},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )

        kwargs = {"config": config}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if region_name:
            kwargs["region_name"] = region_name
        if aws_access_key_id:
            kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        kwargs["use_ssl"] = use_ssl
        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled; data and credentials are transmitted in cleartext"
            )

        self._client = boto3.client("s3", **kwargs)

    def _wrap_error(self, e, operation, name):
        """Re-raise a botocore error as a classified ObjectStoreError."""
        logger.debug("S3 %s failed for name=%s: %s", operation, name, e)
        if isinstance(e, ClientError):
            detail = e.response.get("Error", {}).get("Code", "Unknown")
        else:
            detail = type(e).__name__
        raise ObjectStoreError(
            classify(e),
            f"S3 {operation} failed for name={name}: {detail}",
            operation=operation,
            name=name,
        ) from e

    def list_objects(
        self, start_after="", max_count=1000, prefix="", start_version=""
    ):
        kwargs = {"Bucket": self.bucket_name, "MaxKeys": max_count}
        if prefix:
            kwargs["Prefix"] = prefix
        if start_after:
            kwargs["KeyMarker"] = start_after
            # A page can end between two versions of the same key.
            if start_version:
                kwargs["VersionIdMarker"] = start_version
        try:
            response = self._client.list_object_versions(**kwargs)
        except (BotoCoreError, ClientError) as e:
            self._wrap_error(e, "list", prefix or start_after)

        entries = []
        for version in response.get("Versions", []):
            if version.get("IsLatest"):
                entries.append(
                    ObjectEntry(version["Key"], version.get("VersionId") or "null", UPLOAD)
                )
        for marker in response.get("DeleteMarkers", []):
            if marker.get("IsLatest"):
                entries.append(
                    ObjectEntry(marker["Key"], marker.get("VersionId") or "null", HIDE)
                )
        entries.sort(key=lambda entry: entry.name)

        next_start = next_version = None
        if response.get("IsTruncated"):
            next_start = response.get("NextKeyMarker") or None
            next_version = response.get("NextVersionIdMarker") or None
        return ObjectListing(entries, next_start, next_version)

    def get_object_info(self, name, identity):
        kwargs = {"Bucket": self.bucket_name, "Key": name}
        if identity and identity != "null":
            kwargs["VersionId"] = identity
        try:
            response = self._client.head_object(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NoSuchVersion"):
                return None
            self._wrap_error(e, "head", name)
        except BotoCoreError as e:
            self._wrap_error(e, "head", name)
        metadata = response.get("Metadata", {})
        return ObjectInfo(
            name=name,
            identity=response.get("VersionId") or identity,
            sha1=metadata.get(SHA1_METADATA_KEY) or None,
            length=response.get("ContentLength"),
        )

    def upload_object(self, name, stream, sha1_hex, length):
        try:
            response = self._client.put_object(
                Bucket=self.bucket_name,
                Key=name,
                Body=stream,
                ContentLength=length,
                Metadata={SHA1_METADATA_KEY: sha1_hex},
            )
        except (BotoCoreError, ClientError) as e:
            self._wrap_error(e, "upload", name)
        return ObjectVersion(name, response.get("VersionId") or "null")

    def download_object(self, name):
        try:
            response = self._client.get_object(Bucket=self.bucket_name, Key=name)
        except (BotoCoreError, ClientError) as e:
            self._wrap_error(e, "download", name)
        return DownloadStream(self, name, response["Body"])

    def hide_object(self, name):
        try:
            self._client.delete_object(Bucket=self.bucket_name, Key=name)
        except (BotoCoreError, ClientError) as e:
            self._wrap_error(e, "hide", name)

    def bucket_exists(self):
        try:
            self._client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchBucket"):
                return False
            self._wrap_error(e, "head-bucket", self.bucket_name)
        except BotoCoreError as e:
            self._wrap_error(e, "head-bucket", self.bucket_name)
        return True

    def create_bucket(self):
        kwargs = {"Bucket": self.bucket_name}
        region = self._client.meta.region_name
        if region and region != "us-east-1" and not self.endpoint_url:
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            self._client.create_bucket(**kwargs)
            self._client.put_bucket_versioning(
                Bucket=self.bucket_name,
                VersioningConfiguration={"Status": "Enabled"},
            )
        except (BotoCoreError, ClientError) as e:
            self._wrap_error(e, "create-bucket", self.bucket_name)

    def object_url(self, name, base_url=None):
        if not base_url:
            base_url = f"{self._client.meta.endpoint_url.rstrip('/')}/{self.bucket_name}"
        return f"{base_url.rstrip('/')}/{quote(name)}"
