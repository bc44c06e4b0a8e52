from annex_s3remote.errors import ConfigurationError
from annex_s3remote.s3client import ObjectStoreError
from annex_s3remote.s3client import S3Client
from dataclasses import dataclass

import logging
import re


logger = logging.getLogger(__name__)

ENV_PREFIX = "ANNEX_S3_"
CREDS_SETTING = "appkey"
DEFAULT_RETRIES = 1

_TRUE = frozenset({"1", "t", "true", "yes", "on"})
_FALSE = frozenset({"0", "f", "false", "no", "off"})

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
}
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_bool(value, setting):
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ConfigurationError(f"{setting} must be a boolean, got {value!r}")


def parse_duration(value, setting):
    """Parse seconds from ``"90"`` or unit strings like ``"1h30m"``."""
    text = value.strip()
    if re.fullmatch(r"[+-]?\d+", text):
        seconds = int(text)
    else:
        sign = 1
        if text[:1] in ("+", "-"):
            sign = -1 if text[0] == "-" else 1
            text = text[1:]
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART_RE.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if not text or pos != len(text):
            raise ConfigurationError(f"{setting} is not a valid duration: {value!r}")
        seconds *= sign
    if seconds < 0:
        raise ConfigurationError(f"{setting} must be non-negative, got {value!r}")
    return seconds


def parse_retries(value, setting):
    try:
        retries = int(value.strip())
    except ValueError:
        raise ConfigurationError(
            f"{setting} must be an integer, got {value!r}"
        ) from None
    if retries < 0:
        raise ConfigurationError(f"{setting} must be non-negative, got {value!r}")
    return retries


def normalize_prefix(prefix):
    if prefix and not prefix.endswith("/"):
        return prefix + "/"
    return prefix or ""


@dataclass
class RemoteSettings:
    """Validated settings of one remote."""

    key_id: str
    secret: str
    bucket: str
    prefix: str = ""
    endpoint_url: str = None
    region: str = None
    retries: int = DEFAULT_RETRIES
    cache_enabled: bool = False
    cache_duration: float = 0
    public: bool = False
    public_url: str = None

    @classmethod
    def resolve(cls, host, environ):
        """Read settings from the tracker's config, creds and the environment."""

        def env(name):
            return environ.get(ENV_PREFIX + name, "")

        key_id, secret = host.get_creds(CREDS_SETTING)
        key_id = key_id or host.get_config("appkeyid") or env("KEY_ID")
        secret = secret or host.get_config("appkey") or env("APP_KEY")
        if not key_id:
            raise ConfigurationError(
                f"You must set appkeyid or {ENV_PREFIX}KEY_ID to the access key id"
            )
        if not secret:
            raise ConfigurationError(
                f"You must set appkey or {ENV_PREFIX}APP_KEY to the secret key"
            )

        bucket = host.get_config("bucket")
        if not bucket:
            raise ConfigurationError("You must set bucket to the bucket name")

        settings = cls(
            key_id=key_id,
            secret=secret,
            bucket=bucket,
            prefix=normalize_prefix(host.get_config("prefix")),
            endpoint_url=host.get_config("endpoint") or env("ENDPOINT") or None,
            region=host.get_config("region") or env("REGION") or None,
            public_url=host.get_config("publicurl") or None,
        )

        value = env("RETRY_COUNT") or host.get_config("retry-count")
        if value:
            settings.retries = parse_retries(value, "retry-count")

        value = env("CACHE_FILENAMES") or host.get_config("cache-filenames")
        if value:
            settings.cache_enabled = parse_bool(value, "cache-filenames")

        value = env("CACHE_FILENAMES_DURATION") or host.get_config(
            "cache-filenames-duration"
        )
        if value:
            settings.cache_duration = parse_duration(value, "cache-filenames-duration")

        value = host.get_config("public")
        if value:
            settings.public = parse_bool(value, "public")

        return settings

    def store_credentials(self, host):
        host.set_creds(CREDS_SETTING, self.key_id, self.secret)


def open_client(settings, create_bucket=False, client_factory=S3Client):
    """Build the object store client and make sure the bucket exists."""
    client = client_factory(
        bucket_name=settings.bucket,
        endpoint_url=settings.endpoint_url,
        region_name=settings.region,
        aws_access_key_id=settings.key_id,
        aws_secret_access_key=settings.secret,
    )
    try:
        if client.bucket_exists():
            return client
        if not create_bucket:
            raise ConfigurationError(
                f"bucket {settings.bucket!r} does not exist anymore"
            )
        logger.info("Creating private bucket %r", settings.bucket)
        client.create_bucket()
    except ObjectStoreError as e:
        raise ConfigurationError(
            f"couldn't open bucket {settings.bucket!r}: {e}"
        ) from e
    return client
