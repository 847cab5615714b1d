"""Shared fixtures for Scan Gateway tests."""

import boto3
import pytest
from moto import mock_aws

from shared.config import Config, reset_config
from shared.secrets import get_shared_secret
from shared.store import MemoryStore, reset_store


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def aws_environment(monkeypatch):
    """Fake AWS credentials and gateway settings for every test."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("API_BASE_URL", "https://analyzer.test")
    monkeypatch.setenv("SHARED_SECRET", "test-secret")
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("PRIVILEGED_ACCOUNT_ID", "owner-1")
    monkeypatch.setenv("PAY_TO", "0xPAYTO")

    reset_config()
    reset_store()
    get_shared_secret.cache_clear()
    yield
    reset_config()
    reset_store()
    get_shared_secret.cache_clear()


@pytest.fixture
def config() -> Config:
    """Config with the documented defaults."""
    return Config(
        api_base_url="https://analyzer.test",
        environment="test",
        log_level="INFO",
        shared_secret="test-secret",
        privileged_account_id="owner-1",
        store_backend="memory",
        pay_to="0xPAYTO",
    )


@pytest.fixture
def store() -> MemoryStore:
    """Empty volatile store."""
    return MemoryStore()


@pytest.fixture
def clock() -> FakeClock:
    """Clock frozen at a fixed instant."""
    return FakeClock()


@pytest.fixture
def dynamodb_table():
    """Create a mocked DynamoDB table with the single-table key schema."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName="scan-gateway-test",
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield table
