"""
tasks/celery_app.py
Celery application instance — shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.signals import worker_process_init

from config.sentry import init_sentry
from config.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "escrow_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.booking_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose a scan
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    task_routes={
        "tasks.booking_tasks.*": {"queue": "timers"},
    },

    # One scan at a time per worker process
    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────

celery_app.conf.beat_schedule = {
    # Release held funds for bookings whose confirmation window has elapsed
    "auto-complete-due-bookings": {
        "task": "tasks.booking_tasks.auto_complete_due_bookings",
        "schedule": settings.TIMER_SCAN_INTERVAL_SECONDS,
    },

    # Dispute confirmed bookings whose check-in window closed without both parties
    "escalate-stalled-check-ins": {
        "task": "tasks.booking_tasks.escalate_stalled_check_ins",
        "schedule": settings.TIMER_SCAN_INTERVAL_SECONDS,
    },
}


# ── Worker Startup ────────────────────────────────────────────

@worker_process_init.connect
def init_worker_sentry(**kwargs) -> None:
    """Report task failures and audit fallbacks from each worker process."""
    init_sentry(get_settings())
