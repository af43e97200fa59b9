"""
Pytest configuration and shared fixtures
"""
import asyncio

import pytest

from marketchat.config import Settings
from marketchat.database.backend import memory_backend
from marketchat.services.context import build_context
from marketchat.utils.notifications import QueueNotifier
from marketchat.utils.security import create_access_token


ALICE = "3f0c2f8e-8a61-4c47-9d43-0d1f6f3b8a11"
BOB = "7b8e1c52-1e0d-4f9b-a4a3-2c5d7e9f0b22"
CAROL = "c1d2e3f4-0a1b-4c2d-8e3f-4a5b6c7d8e9f"
TEST_SECRET = "test-secret-key-minimum-32-chars-long"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings(tmp_path):
    """Settings for the in-memory backend, writing nothing outside tmp_path"""
    return Settings(
        environment="testing",
        backend="memory",
        jwt_secret=TEST_SECRET,
        public_base_url="http://testserver",
        log_file="",
        session_storage_dir=str(tmp_path / "sessions"),
        allow_test_identifiers=True,
    )


@pytest.fixture
def backend(settings):
    return memory_backend(settings)


@pytest.fixture
def unprovisioned_backend(settings):
    """Backend whose collections were never migrated"""
    return memory_backend(settings, provisioned=False)


@pytest.fixture
def notifier():
    return QueueNotifier()


@pytest.fixture
def context(settings, backend, notifier):
    return build_context(settings, backend, notifier)


@pytest.fixture
def unprovisioned_context(settings, unprovisioned_backend, notifier):
    return build_context(settings, unprovisioned_backend, notifier)


@pytest.fixture
def profiles(backend):
    """Alice and Bob have local profiles; Carol does not"""
    run(backend.profiles.upsert(ALICE, "Alice Dupont", "http://testserver/files/avatars/alice.png"))
    run(backend.profiles.upsert(BOB, "Bob Martin"))
    return backend.profiles


@pytest.fixture
def token_for():
    def make(user_id, **claims):
        return create_access_token(user_id, TEST_SECRET, extra=claims or None)
    return make
