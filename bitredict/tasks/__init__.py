"""Celery tasks for Bitredict.

This module configures Celery and registers all periodic tasks.
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from bitredict.config import get_settings
from bitredict.config.logging import configure_logging

settings = get_settings()


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings.log_level)

# Create Celery application
celery_app = Celery(
    "bitredict",
    broker=settings.broker_url,
    backend=settings.broker_url,
    include=[
        "bitredict.tasks.oddyssey",
        "bitredict.tasks.indexer",
        "bitredict.tasks.maintenance",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=settings.lock_ttl_seconds + 300,
    task_soft_time_limit=settings.lock_ttl_seconds + 240,
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Open the daily Oddyssey cycle at 00:05 UTC
    "oddyssey-open-cycle": {
        "task": "bitredict.tasks.oddyssey.oddyssey_open_cycle",
        "schedule": crontab(hour=0, minute=5),
        "options": {"expires": 3540},
    },
    # Ingest results and resolve finished cycles - every 15 minutes
    "unified-results": {
        "task": "bitredict.tasks.oddyssey.unified_results",
        "schedule": 900.0,
        "options": {"expires": 840},
    },
    # Evaluate slips of resolved cycles - every 20 minutes
    "unified-evaluation": {
        "task": "bitredict.tasks.oddyssey.unified_evaluation",
        "schedule": 1200.0,
        "options": {"expires": 1140},
    },
    # Wide-window event replay - every 30 minutes
    "indexer-fallback-reconcile": {
        "task": "bitredict.tasks.indexer.indexer_fallback_reconcile",
        "schedule": 1800.0,
        "options": {"expires": 1740},
    },
    # Expired lock cleanup - every 5 minutes
    "cleanup-expired-locks": {
        "task": "bitredict.tasks.maintenance.cleanup_expired_locks",
        "schedule": 300.0,
        "options": {"expires": 280},
    },
    # Execution log retention - daily at 03:00 UTC
    "prune-execution-log": {
        "task": "bitredict.tasks.maintenance.prune_execution_log",
        "schedule": crontab(hour=3, minute=0),
        "options": {"expires": 3540},
    },
}

# Tasks the admin API may enqueue by short name.
TRIGGERABLE_TASKS = {
    "oddyssey_open_cycle": "bitredict.tasks.oddyssey.oddyssey_open_cycle",
    "unified_results": "bitredict.tasks.oddyssey.unified_results",
    "unified_evaluation": "bitredict.tasks.oddyssey.unified_evaluation",
    "audit_cycle": "bitredict.tasks.oddyssey.audit_cycle",
    "fix_slip": "bitredict.tasks.oddyssey.fix_slip",
    "reevaluate_cycle": "bitredict.tasks.oddyssey.reevaluate_cycle",
    "indexer_fallback_reconcile": "bitredict.tasks.indexer.indexer_fallback_reconcile",
    "fallback_bet_sync": "bitredict.tasks.indexer.fallback_bet_sync",
    "cleanup_expired_locks": "bitredict.tasks.maintenance.cleanup_expired_locks",
    "prune_execution_log": "bitredict.tasks.maintenance.prune_execution_log",
    "repair_legacy_results": "bitredict.tasks.maintenance.repair_legacy_results",
}
