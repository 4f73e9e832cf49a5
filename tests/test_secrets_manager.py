"""Tests for the cached Secrets Manager reader."""
import json

import pytest

from timechat.secrets_manager import SecretsManager, secrets_for


class FakeClient:
    def __init__(self, values):
        self.values = values
        self.calls = 0
        self.fail = False

    def get_secret_value(self, SecretId):
        self.calls += 1
        if self.fail:
            raise ConnectionError("secrets endpoint unreachable")
        return {"SecretString": self.values[SecretId]}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeClient({
        "timechat/jwt-secret": "s3cret",
        "timechat/db": json.dumps({"username": "chat", "password": "pw"}),
    })


@pytest.fixture
def manager(client, clock):
    manager = SecretsManager(region_name="eu-west-1", ttl_seconds=300, clock=clock)
    manager._client = client
    return manager


def test_values_are_cached_until_the_ttl_passes(manager, client, clock):
    assert manager.get_jwt_secret() == "s3cret"
    clock.now = 299
    assert manager.get_jwt_secret() == "s3cret"
    assert client.calls == 1

    client.values["timechat/jwt-secret"] = "rotated"
    clock.now = 301
    assert manager.get_jwt_secret() == "rotated"
    assert client.calls == 2


def test_failed_refresh_serves_the_stale_value(manager, client, clock):
    assert manager.get_db_credentials() == {"username": "chat", "password": "pw"}
    client.fail = True
    clock.now = 1000
    assert manager.get_db_credentials()["password"] == "pw"


def test_failure_without_a_cached_value_propagates(manager, client):
    client.fail = True
    with pytest.raises(ConnectionError):
        manager.get_jwt_secret()


def test_invalidate_forces_a_refetch(manager, client):
    manager.get_jwt_secret()
    manager.invalidate("timechat/jwt-secret")
    manager.get_jwt_secret()
    assert client.calls == 2


def test_one_shared_manager_per_region():
    assert secrets_for("eu-west-1") is secrets_for("eu-west-1")
    assert secrets_for("eu-west-1") is not secrets_for("us-east-1")
