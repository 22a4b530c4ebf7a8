import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.db.database import Base
from src.models import (
    Alert,
    AlertType,
    Business,
    Competitor,
    CrawlJob,
    CrawlJobStatus,
    EmailFrequency,
    NotificationChannel,
    NotificationLog,
    NotificationPreferences,
    OpsEventType,
    User,
)


@pytest.fixture
def db_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    Base.metadata.drop_all(engine)


@pytest.fixture
def competitor(db_session):
    user = User(email="owner@example.com")
    db_session.add(user)
    db_session.flush()
    business = Business(user_id=user.id, name="Bistro")
    db_session.add(business)
    db_session.flush()
    competitor = Competitor(business_id=business.id, name="Taco Truck", url="https://taco.example.com")
    db_session.add(competitor)
    db_session.commit()
    return competitor


def test_notification_log_repr(db_session):
    log = NotificationLog(
        event_type=OpsEventType.crawl_dead_letter,
        reference_id=42,
        channel=NotificationChannel.discord,
    )
    db_session.add(log)
    db_session.commit()

    assert log.sent_at is not None
    assert "crawl_dead_letter" in repr(log)
    assert "42" in repr(log)
    assert "discord" in repr(log)


def test_notification_log_unique_constraint(db_session):
    for _ in range(2):
        db_session.add(
            NotificationLog(
                event_type=OpsEventType.email_dead_letter,
                reference_id=1,
                channel=NotificationChannel.telegram,
            )
        )
    with pytest.raises(IntegrityError):
        db_session.commit()


def test_notification_log_same_reference_other_channel(db_session):
    db_session.add_all(
        [
            NotificationLog(
                event_type=OpsEventType.email_dead_letter,
                reference_id=1,
                channel=channel,
            )
            for channel in NotificationChannel
        ]
    )
    db_session.commit()
    assert db_session.query(NotificationLog).count() == 2


def test_one_pending_job_per_competitor(db_session, competitor):
    db_session.add(CrawlJob(competitor_id=competitor.id, url=competitor.url))
    db_session.commit()

    db_session.add(CrawlJob(competitor_id=competitor.id, url=competitor.url))
    with pytest.raises(IntegrityError):
        db_session.commit()


def test_failed_jobs_do_not_count_as_pending(db_session, competitor):
    db_session.add_all(
        [
            CrawlJob(competitor_id=competitor.id, url=competitor.url, status=CrawlJobStatus.failed),
            CrawlJob(competitor_id=competitor.id, url=competitor.url, status=CrawlJobStatus.failed),
            CrawlJob(competitor_id=competitor.id, url=competitor.url),
        ]
    )
    db_session.commit()

    jobs = db_session.query(CrawlJob).all()
    assert sorted(j.is_dead_lettered for j in jobs) == [False, True, True]


def test_alert_replay_is_rejected(db_session, competitor):
    def alert(dedup_key=""):
        return Alert(
            business_id=competitor.business_id,
            competitor_id=competitor.id,
            baseline_snapshot_id=7,
            alert_type=AlertType.new_promotion,
            dedup_key=dedup_key,
            message="New promotion",
            details={"type": "new_promotion"},
        )

    db_session.add_all([alert("happy hour"), alert("taco tuesday")])
    db_session.commit()

    db_session.add(alert("happy hour"))
    with pytest.raises(IntegrityError):
        db_session.commit()


def test_preferences_defaults():
    prefs = NotificationPreferences.defaults(user_id=3)

    assert prefs.user_id == 3
    assert prefs.email_enabled is True
    assert prefs.email_frequency == EmailFrequency.instant
    assert prefs.timezone == "UTC"
    assert prefs.quiet_hours_start is None
    assert all(prefs.allows(t.value) for t in AlertType)


def test_preferences_allows(db_session):
    user = User(email="picky@example.com")
    db_session.add(user)
    db_session.flush()
    prefs = NotificationPreferences(user_id=user.id, alert_types=["price_change"])
    db_session.add(prefs)
    db_session.commit()

    assert prefs.allows("price_change")
    assert not prefs.allows("menu_change")
    assert user.preferences is prefs
