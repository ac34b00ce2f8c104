from app.tasks.celery_app import celery
from app.tasks import worker_jobs


@celery.task(name="app.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)


@celery.task(name="app.tasks.jobs.process_notification_queue")
def process_notification_queue(limit: int = 100):
    return worker_jobs.process_notification_queue(limit=limit)


@celery.task(name="app.tasks.jobs.clear_balances")
def clear_balances():
    return worker_jobs.clear_balances()


@celery.task(name="app.tasks.jobs.run_payout_batch")
def run_payout_batch():
    return worker_jobs.run_payout_batch()
