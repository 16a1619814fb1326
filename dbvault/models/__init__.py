"""SQLAlchemy models package."""

from .base import Base
from .job import BulkJob, JobAuditEvent
from .schedule import BackupSchedule
from .webhook import WebhookRegistration
