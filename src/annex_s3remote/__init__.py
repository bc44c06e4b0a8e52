"""git-annex special remote for versioned S3-compatible buckets."""

from annex_s3remote.errors import ConfigurationError  # noqa: F401
from annex_s3remote.errors import RemoteError  # noqa: F401
from annex_s3remote.errors import UnsupportedRequest  # noqa: F401
from annex_s3remote.remote import S3Remote  # noqa: F401
