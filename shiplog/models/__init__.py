from shiplog.models.project import Project
from shiplog.models.changelog_entry import ChangelogEntry
from shiplog.models.webhook_queue import WebhookQueueItem
from shiplog.models.notification_config import NotificationConfig
