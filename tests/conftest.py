import pytest
from fastapi.testclient import TestClient

from fakes import FakeDatabase, FakeSupabase
from skillswap.chat.annotations import ChatAnnotations
from skillswap.chat.attachments import AttachmentStore
from skillswap.chat.messages import MessageLog
from skillswap.core.config import Settings, get_settings
from skillswap.core.dependencies import get_current_user_id, get_ws_user_id
from skillswap.core.supabase_client import get_supabase
from skillswap.delivery.events import EventBus
from skillswap.main import create_app
from skillswap.notifications.service import NotificationSink
from skillswap.offers.service import OfferNegotiator
from skillswap.pairing.service import ConversationDirectory


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def client(db):
    return FakeSupabase(db)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def directory(client):
    return ConversationDirectory(client)


@pytest.fixture
def attachments(client):
    return AttachmentStore(client)


@pytest.fixture
def message_log(client, directory, attachments, bus):
    return MessageLog(client, directory, attachments=attachments, bus=bus)


@pytest.fixture
def notifier(client, bus):
    return NotificationSink(client, bus=bus)


@pytest.fixture
def negotiator(client, directory, message_log, notifier, bus):
    return OfferNegotiator(client, directory, message_log, notifier, bus=bus)


@pytest.fixture
def annotations(client):
    return ChatAnnotations(client)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", poll_interval_seconds=0.05)


@pytest.fixture
def app(client, settings):
    app = create_app()
    app.dependency_overrides[get_supabase] = lambda: client
    app.dependency_overrides[get_settings] = lambda: settings
    return app


@pytest.fixture
def api(app):
    """TestClient with an ``as_user`` helper that swaps the authenticated user."""
    def as_user(user_id):
        app.dependency_overrides[get_current_user_id] = lambda: user_id
        app.dependency_overrides[get_ws_user_id] = lambda: user_id
        return test_client

    with TestClient(app) as test_client:
        test_client.as_user = as_user
        yield test_client
