import logging

from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app

from models import db, Document, utcnow
from utils import audit

logger = logging.getLogger(__name__)


# ==========================================================
# ⏰ REMINDER FUNCTIONALITY
# ==========================================================
def check_reminders(now=None):
    """Email owners whose document reminders are due. Returns the number sent."""
    now = now or utcnow()
    mailer = current_app.extensions["mailer"]
    due_docs = Document.query.filter(
        Document.reminder_at.isnot(None),
        Document.reminder_at <= now,
        Document.reminder_sent_at.is_(None),
    ).all()

    sent = 0
    for doc in due_docs:
        owner = doc.owner
        success = mailer.send_message(owner.email, "reminder", {
            "name": owner.name,
            "title": doc.title,
            "expiry_date": doc.expiry_date or "N/A",
        })
        if not success:
            continue
        doc.reminder_sent_at = now
        db.session.commit()
        audit(owner.id, "reminder_sent", f"Reminder for {doc.filename}")
        sent += 1
    return sent


def start_scheduler(app):
    scheduler = BackgroundScheduler()

    def run_reminder_job():
        with app.app_context():
            count = check_reminders()
            if count:
                logger.info("Sent %d document reminder(s)", count)

    scheduler.add_job(run_reminder_job, "interval", minutes=1, id="reminder_job", replace_existing=True)
    scheduler.start()
    app.extensions["scheduler"] = scheduler
    return scheduler
