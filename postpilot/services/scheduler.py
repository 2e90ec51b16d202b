from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..logging_setup import log_event
from ..models import Client, Post, User
from .mailer import send_report_email
from .publisher import publish_and_record
from .reports import generate_report, render_html, render_summary_pdf
from .scheduling import as_utc

REPORT_PERIOD_DAYS = 30
REPORT_HOUR_UTC = 8

def publish_due_posts(db_factory: Callable[[], Session], now: datetime | None = None) -> int:
    """
    Publishes every scheduled post whose time has come (scheduled_time <= now).
    Runs every minute across all users; returns how many ended up published.
    """
    db = db_factory()
    try:
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(Post)
            .where(Post.status == "scheduled")
            .where(Post.scheduled_time <= now)
            .order_by(Post.scheduled_time.asc())
        )
        posts = db.execute(stmt).scalars().all()
        if not posts:
            return 0

        log_event("scheduler_tick", due_posts=len(posts))
        published = 0
        for post in posts:
            try:
                publish_and_record(db, post)
            except Exception as e:
                db.rollback()
                log_event("scheduler_publish_error", level="error", post_id=post.id, error=str(e))
                continue
            if post.status == "published":
                published += 1
        return published
    finally:
        db.close()

def _already_sent_this_month(user: User, now: datetime) -> bool:
    last = as_utc(user.report_last_sent_at)
    return bool(last and last.year == now.year and last.month == now.month)

def send_monthly_report(db: Session, user: User, now: datetime) -> bool:
    start = now - timedelta(days=REPORT_PERIOD_DAYS)
    posts = (
        db.query(Post)
        .filter(Post.owner_id == user.id, Post.created_at >= start, Post.created_at <= now)
        .all()
    )
    clients = db.query(Client).filter(Client.owner_id == user.id).all()
    report = generate_report(posts, clients, start, now)
    sent = send_report_email(user.report_email or user.email, render_html(report), render_summary_pdf(report))
    if sent:
        user.report_last_sent_at = now
        db.commit()
    return sent

def send_scheduled_reports(db_factory: Callable[[], Session], now: datetime | None = None) -> int:
    db = db_factory()
    try:
        now = now or datetime.now(timezone.utc)
        users = db.query(User).filter(User.report_enabled == True).all()  # noqa: E712
        sent = 0
        for user in users:
            if (user.report_day_of_month or 1) != now.day or _already_sent_this_month(user, now):
                continue
            if send_monthly_report(db, user, now):
                sent += 1
                log_event("report_sent", user_id=user.id, trigger="schedule")
            else:
                log_event("report_send_fail", level="warning", user_id=user.id, trigger="schedule")
        return sent
    finally:
        db.close()

def start_scheduler(db_factory: Callable[[], Session]) -> BackgroundScheduler:
    """
    Start a BackgroundScheduler that checks for due posts every minute
    and sends monthly reports once a day.
    """
    sched = BackgroundScheduler(timezone="UTC")

    sched.add_job(
        publish_due_posts,
        trigger="interval",
        minutes=1,
        args=[db_factory],
        id="check_due_posts",
        replace_existing=True,
        max_instances=1,
    )

    sched.add_job(
        send_scheduled_reports,
        trigger=CronTrigger(hour=REPORT_HOUR_UTC, minute=0, timezone="UTC"),
        args=[db_factory],
        id="monthly_reports",
        replace_existing=True,
        max_instances=1,
    )

    sched.start()
    log_event("scheduler_started", jobs=len(sched.get_jobs()))
    return sched
