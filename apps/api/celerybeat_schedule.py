"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Raw activities whose post-processing never completed are re-enqueued
    # once they are older than RECONCILE_GRACE_MINUTES.
    'reconcile-raw-activities': {
        'task': 'tasks.reconcile_raw_activities',
        'schedule': crontab(minute='*/30'),
    },
}
