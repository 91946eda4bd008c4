"""
Tests for environment-driven configuration.
"""

import pytest

from gavel import conf

ENGINE_VARS = (
    "GAVEL_MAX_RETRIES",
    "GAVEL_ANTI_SNIPING_ENABLED",
    "GAVEL_ANTI_SNIPING_WINDOW_MINUTES",
    "GAVEL_ENFORCE_BID_INCREMENT",
    "GAVEL_SWEEP_INTERVAL_SECONDS",
    "GAVEL_REMINDER_WINDOW_MINUTES",
    "GAVEL_STORE_BACKEND",
    "GAVEL_SCHEDULER_ENABLED",
    "GAVEL_INTERNAL_API_KEY",
    "COUCHBASE_USERNAME",
    "COUCHBASE_PASSWORD",
    "COUCHBASE_BUCKET",
    "COUCHBASE_HOST",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENGINE_VARS:
        monkeypatch.delenv(name, raising=False)


class TestEngineConf:

    def test_defaults(self):
        engine_conf = conf.get_engine_conf()

        assert engine_conf.max_retries == 5
        assert engine_conf.anti_sniping_enabled is True
        assert engine_conf.anti_sniping_window_minutes == 10
        assert engine_conf.enforce_bid_increment is True
        assert engine_conf.store_backend == "memory"
        assert conf.get_internal_api_key() is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("GAVEL_MAX_RETRIES", "3")
        monkeypatch.setenv("GAVEL_ANTI_SNIPING_ENABLED", "False")
        monkeypatch.setenv("GAVEL_ANTI_SNIPING_WINDOW_MINUTES", "0")
        monkeypatch.setenv("GAVEL_INTERNAL_API_KEY", "s3cret")

        engine_conf = conf.get_engine_conf()

        assert engine_conf.max_retries == 3
        assert engine_conf.anti_sniping_enabled is False
        assert engine_conf.anti_sniping_window_minutes == 1
        assert conf.get_internal_api_key() == "s3cret"


class TestValidate:

    def test_defaults_are_valid(self):
        assert conf.validate() is True

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("GAVEL_MAX_RETRIES", "many")

        assert conf.validate() is False

    def test_couchbase_backend_requires_credentials(self, monkeypatch):
        monkeypatch.setenv("GAVEL_STORE_BACKEND", "couchbase")
        assert conf.validate() is False

        monkeypatch.setenv("COUCHBASE_USERNAME", "gavel")
        monkeypatch.setenv("COUCHBASE_PASSWORD", "secret")
        monkeypatch.setenv("COUCHBASE_BUCKET", "auctions")
        monkeypatch.setenv("COUCHBASE_HOST", "localhost")
        assert conf.validate() is True
