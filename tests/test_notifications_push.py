import json
from datetime import datetime, time
from unittest.mock import MagicMock, patch

import pytest
from pywebpush import WebPushException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from src.config import Settings
from src.db.database import Base
from src.models import (
    Alert,
    AlertType,
    Business,
    Competitor,
    NotificationPreferences,
    PushSubscription,
    User,
)
from src.notifications.push import (
    PushPayload,
    send_alert_push,
    send_push_notification,
)

NOW = datetime(2026, 3, 10, 12, 0)


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    Base.metadata.drop_all(engine)


@pytest.fixture
def settings():
    return Settings(
        vapid_public_key="BPublicKey",
        vapid_private_key="private-key",
        vapid_subject="mailto:ops@example.com",
    )


@pytest.fixture
def owner(db_session):
    user = User(email="owner@example.com", name="Owner")
    db_session.add(user)
    db_session.flush()
    for n in (1, 2):
        db_session.add(
            PushSubscription(
                user_id=user.id,
                endpoint=f"https://push.example.com/device-{n}",
                p256dh=f"key-{n}",
                auth=f"auth-{n}",
            )
        )
    db_session.commit()
    return user


@pytest.fixture
def alert(db_session, owner):
    business = Business(user_id=owner.id, name="Bistro")
    db_session.add(business)
    db_session.flush()
    competitor = Competitor(business_id=business.id, name="Burger Barn", url="https://burgerbarn.example.com")
    db_session.add(competitor)
    db_session.flush()
    alert = Alert(
        business_id=business.id,
        competitor_id=competitor.id,
        alert_type=AlertType.price_change,
        message="1 price updated",
        details={"type": "price_change"},
    )
    db_session.add(alert)
    db_session.commit()
    return alert


def _gone(status_code):
    return WebPushException("Push failed", response=MagicMock(status_code=status_code))


class TestSendPushNotification:
    @patch("src.notifications.push.webpush")
    def test_not_configured(self, mock_webpush, db_session, owner):
        result = send_push_notification(
            db_session, owner.id, PushPayload(title="t", body="b"), now=NOW, settings=Settings()
        )

        assert result.sent == 0
        assert result.errors == ["VAPID keys not configured"]
        mock_webpush.assert_not_called()

    @patch("src.notifications.push.webpush")
    def test_sends_to_every_device(self, mock_webpush, db_session, owner, settings):
        payload = PushPayload(title="New Alert", body="price_change: Burger Barn", tag="alert-1")

        result = send_push_notification(db_session, owner.id, payload, now=NOW, settings=settings)

        assert (result.sent, result.failed) == (2, 0)
        assert mock_webpush.call_count == 2
        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"]["keys"]["auth"].startswith("auth-")
        assert kwargs["vapid_private_key"] == "private-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        data = json.loads(kwargs["data"])
        assert data["title"] == "New Alert"
        assert data["tag"] == "alert-1"
        assert data["data"] == {"url": "/dashboard/alerts"}
        for subscription in db_session.scalars(select(PushSubscription)):
            assert subscription.last_used_at == NOW

    @patch("src.notifications.push.webpush")
    def test_expired_subscription_is_removed(self, mock_webpush, db_session, owner, settings):
        mock_webpush.side_effect = [_gone(410), None]

        result = send_push_notification(
            db_session, owner.id, PushPayload(title="t", body="b"), now=NOW, settings=settings
        )
        db_session.commit()

        assert (result.sent, result.failed, result.removed) == (1, 1, 1)
        assert len(db_session.scalars(select(PushSubscription)).all()) == 1

    @patch("src.notifications.push.webpush")
    def test_server_error_keeps_subscription(self, mock_webpush, db_session, owner, settings):
        mock_webpush.side_effect = _gone(500)

        result = send_push_notification(
            db_session, owner.id, PushPayload(title="t", body="b"), now=NOW, settings=settings
        )

        assert (result.sent, result.failed, result.removed) == (0, 2, 0)
        assert len(result.errors) == 2
        assert len(db_session.scalars(select(PushSubscription)).all()) == 2


class TestSendAlertPush:
    @patch("src.notifications.push.webpush")
    def test_pushes_with_default_preferences(self, mock_webpush, db_session, alert, settings):
        result = send_alert_push(db_session, alert, now=NOW, settings=settings)

        assert result.sent == 2
        data = json.loads(mock_webpush.call_args.kwargs["data"])
        assert data["title"] == "New Alert from MarketPulse"
        assert data["body"] == "price_change: Burger Barn"
        assert data["tag"] == f"alert-{alert.id}"

    @patch("src.notifications.push.webpush")
    def test_excluded_alert_type(self, mock_webpush, db_session, owner, alert, settings):
        db_session.add(NotificationPreferences(user_id=owner.id, alert_types=["menu_change"]))
        db_session.commit()

        result = send_alert_push(db_session, alert, now=NOW, settings=settings)

        assert result.sent == 0
        mock_webpush.assert_not_called()

    @patch("src.notifications.push.webpush")
    def test_quiet_hours_drop_push(self, mock_webpush, db_session, owner, alert, settings):
        db_session.add(
            NotificationPreferences(
                user_id=owner.id,
                quiet_hours_start=time(22, 0),
                quiet_hours_end=time(7, 0),
                timezone="UTC",
            )
        )
        db_session.commit()

        quiet = send_alert_push(db_session, alert, now=datetime(2026, 3, 10, 23, 30), settings=settings)
        awake = send_alert_push(db_session, alert, now=datetime(2026, 3, 10, 7, 0), settings=settings)

        assert quiet.sent == 0
        assert awake.sent == 2
        assert mock_webpush.call_count == 2

    @patch("src.notifications.push.webpush")
    def test_not_configured_is_silent(self, mock_webpush, db_session, alert):
        result = send_alert_push(db_session, alert, now=NOW, settings=Settings())

        assert result.sent == 0
        assert result.errors == []
        mock_webpush.assert_not_called()
