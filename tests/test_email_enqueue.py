from datetime import datetime, time

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from src.db.database import Base
from src.models import (
    Alert,
    AlertType,
    Business,
    Competitor,
    EmailFrequency,
    EmailQueueEntry,
    EmailStatus,
    NotificationPreferences,
    User,
)
from src.notifications.enqueue import (
    enqueue_alert_email,
    enqueue_email,
    enqueue_system_email,
    get_preferences,
)

NOW = datetime(2026, 3, 10, 12, 20)


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    Base.metadata.drop_all(engine)


@pytest.fixture
def user(db_session):
    user = User(email="owner@example.com", name="Owner")
    db_session.add(user)
    db_session.commit()
    return user


def _prefs(session, user, **kwargs):
    prefs = NotificationPreferences(user_id=user.id, **kwargs)
    session.add(prefs)
    session.commit()
    return prefs


def _enqueue(session, user, alert_type="price_change", alert_id=None):
    return enqueue_email(
        session,
        user_id=user.id,
        to_email=user.email,
        template_name="alert_notification",
        template_data={"competitor_name": "Burger Barn", "alert_type": alert_type},
        alert_type=alert_type,
        alert_id=alert_id,
        now=NOW,
    )


class TestEnqueueEmail:
    def test_missing_preferences_use_defaults(self, db_session, user):
        prefs = get_preferences(db_session, user.id)
        assert prefs.id is None
        assert prefs.email_enabled is True

        result = _enqueue(db_session, user)
        db_session.commit()

        assert result.success
        entry = db_session.get(EmailQueueEntry, result.queue_id)
        assert entry.status == EmailStatus.pending
        assert entry.scheduled_for == NOW
        assert entry.alert_type == "price_change"

    def test_disabled_email_queues_nothing(self, db_session, user):
        _prefs(db_session, user, email_enabled=False)

        result = _enqueue(db_session, user)

        assert not result.success
        assert db_session.scalars(select(EmailQueueEntry)).all() == []

    def test_excluded_alert_type_queues_nothing(self, db_session, user):
        _prefs(db_session, user, alert_types=["price_change"])

        result = _enqueue(db_session, user, alert_type="menu_change")

        assert not result.success
        assert "menu_change" in result.reason

    def test_quiet_hours_and_frequency_shift_schedule(self, db_session, user):
        _prefs(
            db_session,
            user,
            email_frequency=EmailFrequency.hourly,
            quiet_hours_start=time(13, 0),
            quiet_hours_end=time(15, 30),
            timezone="UTC",
        )

        result = _enqueue(db_session, user)
        db_session.commit()

        entry = db_session.get(EmailQueueEntry, result.queue_id)
        assert entry.scheduled_for == datetime(2026, 3, 10, 15, 30)

    def test_duplicate_alert_email_is_rejected(self, db_session, user):
        business = Business(user_id=user.id, name="Bistro")
        db_session.add(business)
        db_session.flush()
        alert = Alert(
            business_id=business.id,
            alert_type=AlertType.price_change,
            message="1 price updated",
            details={"type": "price_change", "updated": [], "added": [], "removed": []},
        )
        db_session.add(alert)
        db_session.commit()

        first = _enqueue(db_session, user, alert_id=alert.id)
        second = _enqueue(db_session, user, alert_id=alert.id)
        db_session.commit()

        assert first.success
        assert not second.success
        assert len(db_session.scalars(select(EmailQueueEntry)).all()) == 1


class TestEnqueueSystemEmail:
    def test_bypasses_preferences(self, db_session, user):
        _prefs(db_session, user, email_enabled=False, quiet_hours_start=time(0, 0), quiet_hours_end=time(23, 59))

        result = enqueue_system_email(
            db_session, user.id, user.email, "password_reset", {"reset_url": "https://x"}, now=NOW
        )
        db_session.commit()

        entry = db_session.get(EmailQueueEntry, result.queue_id)
        assert entry.alert_type is None
        assert entry.is_system
        assert entry.scheduled_for == NOW


class TestEnqueueAlertEmail:
    def test_builds_template_data(self, db_session, user):
        business = Business(user_id=user.id, name="Bistro")
        db_session.add(business)
        db_session.flush()
        competitor = Competitor(business_id=business.id, name="Taco Truck", url="https://taco.example.com")
        db_session.add(competitor)
        db_session.flush()
        alert = Alert(
            business_id=business.id,
            competitor_id=competitor.id,
            alert_type=AlertType.new_promotion,
            message="New promotion: Taco Tuesday",
            details={"type": "new_promotion", "promotion": {"title": "Taco Tuesday"}},
        )
        db_session.add(alert)
        db_session.flush()

        result = enqueue_alert_email(db_session, alert, now=NOW)
        db_session.commit()

        entry = db_session.get(EmailQueueEntry, result.queue_id)
        assert entry.alert_id == alert.id
        assert entry.to_email == "owner@example.com"
        assert entry.template_data["competitor_name"] == "Taco Truck"
        assert entry.template_data["alert_type"] == "new_promotion"
        assert entry.template_data["details"]["promotion"]["title"] == "Taco Tuesday"
