"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging

from agent_engine.core.config import settings
from agent_engine.core.logging import configure_logging

# Create Celery app
app = Celery("agent-engine")

# Configure Celery
app.conf.update(
    # Broker configuration
    broker_url=settings.celery_broker_url,
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,
    # Result backend - disabled (job state tracked in the queue_jobs table)
    result_backend=None,
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Task execution
    task_track_started=True,
    task_acks_late=True,  # Acknowledge after task completion
    worker_prefetch_multiplier=1,  # Only fetch one task at a time
    worker_concurrency=settings.agent_worker_concurrency,
    # Task routing
    task_routes={
        "agent_engine.tasks.agent_execution.*": {"queue": "agent_execution"},
    },
)

# Auto-discover tasks from agent_engine.tasks module
app.autodiscover_tasks(["agent_engine.tasks"])


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()
