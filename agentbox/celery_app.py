"""Celery application configuration."""

import logging

from celery import Celery
from celery.signals import setup_logging

from agentbox.core.config import settings

# Create Celery app
app = Celery("agentbox")

# Configure Celery
app.conf.update(
    # Broker configuration
    broker_url=settings.celery_broker_url,
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,
    # Result backend - disabled (task state lives in the database)
    result_backend=None,
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Task execution
    task_track_started=True,
    task_acks_late=True,  # Acknowledge after task completion
    worker_prefetch_multiplier=1,  # Agent runs are long, fetch one at a time
    # Task routing
    task_routes={
        "agentbox.tasks.agent_execution.*": {"queue": "agent_execution"},
    },
)


@setup_logging.connect
def configure_logging(**kwargs):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# Auto-discover tasks from agentbox.tasks module
app.autodiscover_tasks(["agentbox.tasks"])
