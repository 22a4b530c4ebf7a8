from datetime import time

from loguru import logger
from sqlalchemy import select

from src.db.database import Base, get_sync_session, sync_engine
from src.models import (
    Business,
    Competitor,
    EmailFrequency,
    NotificationPreferences,
    Subscription,
    SubscriptionStatus,
    User,
)

DEMO_USER = {"email": "demo@marketpulse.com", "name": "Demo Owner"}
DEMO_BUSINESS = "Demo Bistro"

COMPETITORS = [
    {"name": "Burger Barn", "url": "https://burgerbarn.example.com/menu", "crawl_frequency_minutes": 720},
    {"name": "Pizza Place", "url": "https://pizzaplace.example.com/menu", "crawl_frequency_minutes": 720},
    {"name": "Taco Truck", "url": "https://tacotruck.example.com/", "crawl_frequency_minutes": 1440},
]


def seed_demo_data():
    """Create a demo user, business and competitors."""
    Base.metadata.create_all(sync_engine)

    with get_sync_session() as session:
        user = session.scalar(select(User).where(User.email == DEMO_USER["email"]))
        if user is None:
            user = User(**DEMO_USER)
            session.add(user)
            session.flush()
            session.add(Subscription(user_id=user.id, status=SubscriptionStatus.active))
            session.add(
                NotificationPreferences(
                    user_id=user.id,
                    email_enabled=True,
                    email_frequency=EmailFrequency.instant,
                    quiet_hours_start=time(22, 0),
                    quiet_hours_end=time(7, 0),
                    timezone="America/New_York",
                )
            )
            logger.info(f"Added user: {user.email}")
        else:
            logger.info(f"User already exists: {user.email}")

        business = session.scalar(
            select(Business).where(Business.user_id == user.id, Business.name == DEMO_BUSINESS)
        )
        if business is None:
            business = Business(user_id=user.id, name=DEMO_BUSINESS)
            session.add(business)
            session.flush()

        for data in COMPETITORS:
            existing = session.scalar(
                select(Competitor).where(
                    Competitor.business_id == business.id, Competitor.url == data["url"]
                )
            )
            if existing is None:
                session.add(Competitor(business_id=business.id, **data))
                logger.info(f"Added competitor: {data['name']}")
            else:
                logger.info(f"Competitor already exists: {data['name']}")

        session.commit()

    logger.info("Seed completed")


if __name__ == "__main__":
    seed_demo_data()
