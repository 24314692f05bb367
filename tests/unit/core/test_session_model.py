"""Unit tests for the Session domain model."""

from datetime import timedelta

import pytest

from agentweave.core.domain.events import utcnow
from agentweave.core.domain.models import ChatMessage
from agentweave.core.domain.session import Session, SessionConfiguration, SessionStatus


class TestSessionConfiguration:
    def test_defaults(self):
        config = SessionConfiguration()
        assert config.max_messages == 100
        assert config.idle_timeout_minutes == 30

    @pytest.mark.parametrize("field", ["max_messages", "idle_timeout_minutes"])
    def test_rejects_non_positive_limits(self, field):
        with pytest.raises(ValueError):
            SessionConfiguration(**{field: 0})

    def test_dict_uses_camel_case(self):
        record = SessionConfiguration(max_messages=5, persist_to_storage=False).to_dict()

        assert record["maxMessages"] == 5
        assert record["persistToStorage"] is False
        assert SessionConfiguration.from_dict(record).max_messages == 5


class TestExpiry:
    def test_expiry_follows_last_activity(self):
        now = utcnow()
        session = Session(
            agent_name="a",
            configuration=SessionConfiguration(idle_timeout_minutes=10),
            last_active_at=now,
        )

        assert session.expires_at == now + timedelta(minutes=10)
        assert not session.is_expired(now + timedelta(minutes=9))
        assert session.is_expired(now + timedelta(minutes=10))

    def test_touch_extends_expiry(self):
        now = utcnow()
        session = Session(agent_name="a", last_active_at=now)

        session.touch(now + timedelta(minutes=20))

        assert not session.is_expired(now + timedelta(minutes=40))

    def test_expired_status_is_always_expired(self):
        session = Session(agent_name="a", status=SessionStatus.EXPIRED)

        assert session.is_expired()
        assert not session.is_active


class TestMessages:
    def test_oldest_messages_dropped_beyond_limit(self):
        session = Session(agent_name="a", configuration=SessionConfiguration(max_messages=3))

        dropped = [session.add_message(ChatMessage("user", str(i))) for i in range(5)]

        assert dropped == [0, 0, 0, 1, 1]
        assert [m.content for m in session.messages] == ["2", "3", "4"]


class TestSerialization:
    def test_round_trip(self):
        session = Session(
            agent_name="assistant",
            user_id="u-1",
            status=SessionStatus.PAUSED,
            tags=["support"],
            metadata={"channel": "web"},
            state={"counter": 2},
        )
        session.add_message(ChatMessage("user", "hi", metadata={"lang": "en"}))

        restored = Session.from_dict(session.to_dict())

        assert restored == session

    def test_record_keys(self):
        record = Session(agent_name="a").to_dict()

        assert set(record) == {
            "id",
            "agentName",
            "userId",
            "status",
            "messages",
            "configuration",
            "tags",
            "metadata",
            "state",
            "createdAt",
            "lastActiveAt",
            "expiresAt",
        }

    @pytest.mark.parametrize("record", [[], "session", None])
    def test_non_object_record_rejected(self, record):
        with pytest.raises(ValueError):
            Session.from_dict(record)
