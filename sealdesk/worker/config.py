### sealdesk/worker/config.py

"""
Celery configuration settings

Broker/result backend, serialization, timezone and the beat schedule for
the periodic workflow sweeps. Every sweep is idempotent, so a missed or
duplicated beat is harmless.
"""

# Third party imports
from celery.schedules import crontab

# Local imports
from sealdesk.core.config import settings

# Broker and result backend configurations
broker_url = settings.celery_broker
result_backend = settings.celery_backend

# Task serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task settings
task_track_started = True
task_time_limit = 30 * 60 # 30 minutes
task_soft_time_limit = 25 * 60 # 25 minutes
worker_prefetch_multiplier = 1
task_acks_late = True


# Beat schedule configuration
beat_schedule = {
    "expire-envelopes": {
        "task": "sealdesk.workflow.tasks.expire_envelopes",
        "schedule": crontab(minute=30),  # Hourly at :30
    },
    "process-delayed-signers": {
        "task": "sealdesk.workflow.tasks.process_delayed_signers",
        "schedule": crontab(minute=0),  # Hourly
    },
    "send-reminders": {
        "task": "sealdesk.workflow.tasks.send_reminders",
        "schedule": crontab(minute=15),  # Hourly at :15
    },
    "purge-verification-codes": {
        "task": "sealdesk.identity.tasks.purge_expired_verification_codes",
        "schedule": crontab(minute="*/10"),
    },
}

# Worker configuration
worker_hijack_root_logger = False
worker_log_color = False
