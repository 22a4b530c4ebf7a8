from src.models.account import Business, Subscription, SubscriptionStatus, User
from src.models.alert import Alert, AlertType
from src.models.competitor import Competitor
from src.models.crawl_queue import CrawlJob, CrawlJobStatus
from src.models.email_queue import EmailQueueEntry, EmailStatus
from src.models.notification_log import (
    NotificationChannel,
    NotificationLog,
    OpsEventType,
)
from src.models.notification_preferences import EmailFrequency, NotificationPreferences
from src.models.price_snapshot import PriceSnapshot
from src.models.push_subscription import PushSubscription
from src.models.rate_limit import CrawlRateLimit

__all__ = [
    "Alert",
    "AlertType",
    "Business",
    "Competitor",
    "CrawlJob",
    "CrawlJobStatus",
    "CrawlRateLimit",
    "EmailFrequency",
    "EmailQueueEntry",
    "EmailStatus",
    "NotificationChannel",
    "NotificationLog",
    "NotificationPreferences",
    "OpsEventType",
    "PriceSnapshot",
    "PushSubscription",
    "Subscription",
    "SubscriptionStatus",
    "User",
]
