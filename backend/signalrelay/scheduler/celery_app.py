from celery import Celery

from signalrelay.core.config import settings

app = Celery("signalrelay", include=["signalrelay.tasks.delivery_retry"])
app.conf.broker_url = settings.CELERY_BROKER_URL
app.conf.result_backend = settings.CELERY_RESULT_BACKEND
app.conf.timezone = settings.CELERY_TIMEZONE
app.conf.enable_utc = True

app.conf.beat_schedule = {
    "retry-failed-deliveries": {
        "task": "signalrelay.tasks.delivery_retry.retry_failed_deliveries",
        "schedule": settings.DELIVERY_RETRY_INTERVAL_SEC,
    },
}
