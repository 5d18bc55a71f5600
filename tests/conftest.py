import copy
import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chapterbot.config import settings
from chapterbot.database import Base
from chapterbot.logging_config import request_logger
from chapterbot.models import Checkin, Meeting, Participant, TenantSecret, UserRole
from chapterbot.schemas.line import LineEvent
from chapterbot.services.command_authorization import clear_permission_cache
from chapterbot.services.credential_service import TenantCredential, clear_credential_cache, encrypt_value
from chapterbot.services.kv_store import MemoryKVStore, set_kv_store
from chapterbot.services.line_client import LineClient
from chapterbot.services.llm.base import LLMProvider, LLMResponse, ToolCall

TEST_ENCRYPTION_KEY = "0f1e2d3c4b5a69788796a5b4c3d2e1f00112233445566778899aabbccddeeff0"
BOT_ID = "U0000000000000000000000000000bot"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Real session on an in-memory database with every table created."""
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def kv_store():
    store = MemoryKVStore()
    set_kv_store(store)
    yield store
    set_kv_store(None)


@pytest.fixture(autouse=True)
def _clear_caches():
    clear_credential_cache()
    clear_permission_cache()
    yield
    clear_credential_cache()
    clear_permission_cache()


@pytest.fixture
def encryption_key(monkeypatch):
    monkeypatch.setattr(settings, "line_encryption_key", TEST_ENCRYPTION_KEY)
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def tenant_id():
    return str(uuid.uuid4())


@pytest.fixture
def credential(tenant_id):
    return TenantCredential(
        tenant_id=tenant_id,
        signing_secret="channel-secret",
        send_token="access-token",
        bot_identity=BOT_ID,
    )


@pytest.fixture
def tenant_secret(db, tenant_id, encryption_key):
    """Stored credentials for ``tenant_id``: secret "channel-secret", token "access-token"."""
    row = TenantSecret(
        tenant_id=uuid.UUID(tenant_id),
        line_channel_id=BOT_ID,
        line_access_token_encrypted=encrypt_value("access-token"),
        line_channel_secret_encrypted=encrypt_value("channel-secret"),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def make_participant(db, tenant_id):
    def _make(roles=(), tenant=None, **fields):
        tenant_uuid = uuid.UUID(str(tenant or tenant_id))
        fields.setdefault("status", "member")
        participant = Participant(tenant_id=tenant_uuid, created_at=datetime.now(timezone.utc), **fields)
        db.add(participant)
        db.flush()
        for role in roles:
            db.add(UserRole(tenant_id=tenant_uuid, participant_id=participant.participant_id, role=role))
        db.commit()
        return participant

    return _make


@pytest.fixture
def make_meeting(db, tenant_id):
    def _make(meeting_date: date, tenant=None, **fields):
        meeting = Meeting(tenant_id=uuid.UUID(str(tenant or tenant_id)), meeting_date=meeting_date, **fields)
        db.add(meeting)
        db.commit()
        return meeting

    return _make


@pytest.fixture
def make_checkin(db):
    def _make(meeting, participant, is_late=False):
        checkin = Checkin(
            meeting_id=meeting.meeting_id,
            participant_id=participant.participant_id,
            checkin_time=datetime.now(timezone.utc),
            is_late=is_late,
        )
        db.add(checkin)
        db.commit()
        return checkin

    return _make


class RecordingLineClient(LineClient):
    """LineClient that records outgoing calls instead of hitting the API."""

    def __init__(self):
        super().__init__("access-token", base_url="https://line.test")
        self.calls = []

    def _post(self, path: str, payload: dict) -> bool:
        self.calls.append((path, payload))
        return True

    @property
    def replies(self):
        return [p for path, p in self.calls if path == "/bot/message/reply"]

    @property
    def pushes(self):
        return [p for path, p in self.calls if path == "/bot/message/push"]

    def reply_texts(self):
        return [m["text"] for p in self.replies for m in p["messages"] if m["type"] == "text"]


@pytest.fixture
def line_client():
    return RecordingLineClient()


@pytest.fixture
def log():
    return request_logger("tests", "req-test")


@pytest.fixture
def make_event():
    def _make(text=None, user_id="Uuser", source_type="user", postback=None, event_type=None, reply_token="rt-1"):
        source = {"type": source_type, "userId": user_id}
        if source_type == "group":
            source["groupId"] = "Cgroup"
        raw = {"type": event_type or ("postback" if postback is not None else "message"), "source": source}
        if reply_token:
            raw["replyToken"] = reply_token
        if text is not None:
            raw["message"] = {"type": "text", "id": "m1", "text": text}
        if postback is not None:
            raw["postback"] = {"data": postback}
        return LineEvent.model_validate(raw)

    return _make


class ScriptedProvider(LLMProvider):
    """LLM provider replaying a fixed script.

    Each step is an LLMResponse or a callable taking the message list and
    returning one. The last step repeats once the script runs out.
    """

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = []

    def generate(self, messages, model=None, temperature=0.3, max_tokens=1024, tools=None, tool_choice=None):
        self.calls.append({"messages": copy.deepcopy(messages), "tools": tools})
        step = self.steps[min(len(self.calls), len(self.steps)) - 1]
        return step(messages) if callable(step) else step


def tool_call_response(name, arguments="{}", call_id="call_1"):
    return LLMResponse(content="", model="test", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


def text_response(content):
    return LLMResponse(content=content, model="test")


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def tool_call():
    return tool_call_response


@pytest.fixture
def text_reply():
    return text_response
