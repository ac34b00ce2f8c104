from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.schedules import crontab
from app.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "casaora",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

# payout days are defined in local time
celery.conf.timezone = settings.PAYOUT_TIMEZONE

celery.conf.beat_schedule = {
    "process-email-queue-every-2-minutes": {
        "task": "app.tasks.jobs.process_email_queue",
        "schedule": 120.0,
        "kwargs": {"limit": 50},
    },
    "process-notification-queue-every-minute": {
        "task": "app.tasks.jobs.process_notification_queue",
        "schedule": 60.0,
        "kwargs": {"limit": 100},
    },
    "clear-balances-hourly": {
        "task": "app.tasks.jobs.clear_balances",
        "schedule": crontab(minute=0),
    },
    "payout-batch-tue-fri": {
        "task": "app.tasks.jobs.run_payout_batch",
        "schedule": crontab(minute=0, hour=settings.PAYOUT_HOUR, day_of_week="tue,fri"),
    },
}
