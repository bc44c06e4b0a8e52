import pytest

from annex_s3remote.config import open_client
from annex_s3remote.config import parse_bool
from annex_s3remote.config import parse_duration
from annex_s3remote.config import parse_retries
from annex_s3remote.config import RemoteSettings
from annex_s3remote.errors import ConfigurationError
from annex_s3remote.s3client import FATAL
from annex_s3remote.s3client import ObjectStoreError
from conftest import FakeHost
from conftest import FakeObjectStore


def _host(**config):
    config.setdefault("bucket", "test-bucket")
    return FakeHost(config=config, creds={"appkey": ("key-id", "secret")})


class TestParsers:
    @pytest.mark.parametrize("value", ["1", "true", "True", "yes", "on", "t"])
    def test_true(self, value):
        assert parse_bool(value, "x") is True

    @pytest.mark.parametrize("value", ["0", "false", "no", "off", "F"])
    def test_false(self, value):
        assert parse_bool(value, "x") is False

    def test_bad_bool(self):
        with pytest.raises(ConfigurationError, match="must be a boolean"):
            parse_bool("maybe", "cache-filenames")

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("0", 0),
            ("90", 90),
            ("90s", 90),
            ("15m", 900),
            ("1h30m", 5400),
            ("1.5h", 5400),
            ("500ms", 0.5),
        ],
    )
    def test_duration(self, value, expected):
        assert parse_duration(value, "x") == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["-1", "-5m"])
    def test_negative_duration(self, value):
        with pytest.raises(ConfigurationError, match="non-negative"):
            parse_duration(value, "cache-filenames-duration")

    @pytest.mark.parametrize("value", ["soon", "5 minutes", "m", "1h30"])
    def test_bad_duration(self, value):
        with pytest.raises(ConfigurationError, match="not a valid duration"):
            parse_duration(value, "cache-filenames-duration")

    def test_retries(self):
        assert parse_retries("3", "retry-count") == 3

    @pytest.mark.parametrize("value", ["-1", "three"])
    def test_bad_retries(self, value):
        with pytest.raises(ConfigurationError):
            parse_retries(value, "retry-count")


class TestResolve:
    def test_defaults(self):
        settings = RemoteSettings.resolve(_host(), {})
        assert settings.bucket == "test-bucket"
        assert settings.prefix == ""
        assert settings.retries == 1
        assert settings.cache_enabled is False
        assert settings.cache_duration == 0
        assert settings.public is False
        assert settings.endpoint_url is None

    def test_all_options(self):
        host = _host(
            prefix="raw",
            endpoint="http://localhost:9000",
            region="eu-central-1",
            **{
                "retry-count": "4",
                "cache-filenames": "true",
                "cache-filenames-duration": "10m",
                "public": "yes",
                "publicurl": "https://cdn.example.com/bucket",
            },
        )
        settings = RemoteSettings.resolve(host, {})
        assert settings.prefix == "raw/"
        assert settings.endpoint_url == "http://localhost:9000"
        assert settings.region == "eu-central-1"
        assert settings.retries == 4
        assert settings.cache_enabled is True
        assert settings.cache_duration == 600
        assert settings.public is True
        assert settings.public_url == "https://cdn.example.com/bucket"

    def test_prefix_with_separator_is_kept(self):
        settings = RemoteSettings.resolve(_host(prefix="enc/"), {})
        assert settings.prefix == "enc/"

    def test_environment_wins_for_tuning(self):
        host = _host(**{"retry-count": "4", "cache-filenames": "false"})
        environ = {
            "ANNEX_S3_RETRY_COUNT": "7",
            "ANNEX_S3_CACHE_FILENAMES": "1",
            "ANNEX_S3_CACHE_FILENAMES_DURATION": "30",
        }
        settings = RemoteSettings.resolve(host, environ)
        assert settings.retries == 7
        assert settings.cache_enabled is True
        assert settings.cache_duration == 30

    def test_credentials_from_creds(self):
        settings = RemoteSettings.resolve(_host(), {"ANNEX_S3_KEY_ID": "env"})
        assert settings.key_id == "key-id"
        assert settings.secret == "secret"

    def test_credentials_from_config(self):
        host = FakeHost(
            config={"bucket": "b", "appkeyid": "cfg-id", "appkey": "cfg-secret"}
        )
        settings = RemoteSettings.resolve(host, {})
        assert (settings.key_id, settings.secret) == ("cfg-id", "cfg-secret")

    def test_credentials_from_environment(self):
        host = FakeHost(config={"bucket": "b"})
        environ = {"ANNEX_S3_KEY_ID": "env-id", "ANNEX_S3_APP_KEY": "env-secret"}
        settings = RemoteSettings.resolve(host, environ)
        assert (settings.key_id, settings.secret) == ("env-id", "env-secret")

    def test_missing_key_id(self):
        host = FakeHost(config={"bucket": "b", "appkey": "secret"})
        with pytest.raises(ConfigurationError, match="access key id"):
            RemoteSettings.resolve(host, {})

    def test_missing_secret(self):
        host = FakeHost(config={"bucket": "b", "appkeyid": "id"})
        with pytest.raises(ConfigurationError, match="secret key"):
            RemoteSettings.resolve(host, {})

    def test_missing_bucket(self):
        host = FakeHost(creds={"appkey": ("id", "secret")})
        with pytest.raises(ConfigurationError, match="bucket"):
            RemoteSettings.resolve(host, {})

    def test_store_credentials(self):
        host = FakeHost(config={"bucket": "b", "appkeyid": "id", "appkey": "pw"})
        RemoteSettings.resolve(host, {}).store_credentials(host)
        assert host.creds["appkey"] == ("id", "pw")


class _MissingBucketStore(FakeObjectStore):
    def bucket_exists(self):
        self.calls["bucket_exists"] += 1
        return False


class TestOpenClient:
    def _settings(self):
        return RemoteSettings(key_id="id", secret="pw", bucket="test-bucket")

    def test_existing_bucket(self):
        client = open_client(self._settings(), client_factory=FakeObjectStore)
        assert client.calls["create_bucket"] == 0

    def test_factory_receives_settings(self):
        received = {}

        def factory(**kwargs):
            received.update(kwargs)
            return FakeObjectStore(kwargs["bucket_name"])

        open_client(self._settings(), client_factory=factory)
        assert received["aws_access_key_id"] == "id"
        assert received["aws_secret_access_key"] == "pw"
        assert received["bucket_name"] == "test-bucket"

    def test_missing_bucket_without_create(self):
        with pytest.raises(ConfigurationError, match="does not exist"):
            open_client(self._settings(), client_factory=_MissingBucketStore)

    def test_missing_bucket_is_created(self):
        client = open_client(
            self._settings(), create_bucket=True, client_factory=_MissingBucketStore
        )
        assert client.calls["create_bucket"] == 1

    def test_store_error_becomes_configuration_error(self):
        class Denied(FakeObjectStore):
            def bucket_exists(self):
                raise ObjectStoreError(FATAL, "AccessDenied")

        with pytest.raises(ConfigurationError, match="couldn't open bucket"):
            open_client(self._settings(), client_factory=Denied)
