## sealdesk/core/celery_app.py

"""
Main Celery Application Configuration

Sets up the Celery instance that runs the workflow sweeps (expiry,
delayed-signer promotion, reminders, verification code purge) and the
webhook deliveries.
"""

# Third party imports
from celery import Celery

# Create Celery Instance
app = Celery("sealdesk_scheduler")

# Configure celery from separate config file
app.config_from_object("sealdesk.worker.config")

# Auto discover tasks.py modules
app.autodiscover_tasks([
    "sealdesk.workflow",
    "sealdesk.identity",
    "sealdesk.integrations",
])

if __name__ == "__main__":
    app.start()
