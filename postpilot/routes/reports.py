from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from postpilot.db import get_db
from postpilot.errors import TemplateError
from postpilot.logging_setup import log_event
from postpilot.models import Client, Post, User
from postpilot.schemas import ReportDownload, ReportSchedule, SendTestReport, SendToClients
from postpilot.security.auth import require_user
from postpilot.services.mailer import send_report_email
from postpilot.services import reports as report_service
from .clients import get_owned_client

router = APIRouter(prefix="/api/reports", tags=["reports"])

TEST_REPORT_DAYS = 30

def _utcnow():
    return datetime.now(timezone.utc)

def _load(db: Session, user: User, start: datetime | None, end: datetime | None,
          client_ids: list[int] | None = None) -> tuple[list[Post], list[Client]]:
    clients_q = db.query(Client).filter(Client.owner_id == user.id)
    if client_ids:
        clients_q = clients_q.filter(Client.id.in_(client_ids))
    clients = clients_q.order_by(Client.id).all()

    posts_q = db.query(Post).filter(Post.owner_id == user.id)
    if client_ids:
        posts_q = posts_q.filter(Post.client_id.in_([c.id for c in clients]))
    if start:
        posts_q = posts_q.filter(Post.created_at >= start)
    if end:
        posts_q = posts_q.filter(Post.created_at <= end)
    return posts_q.all(), clients

def _email_parts(report: dict, template_name: str | None, client: Client | None = None) -> tuple[str, bytes]:
    """HTML body plus PDF attachment; a PDF template feeds the attachment, an HTML one the body."""
    html_template = None
    pdf_template = None
    if template_name:
        if template_name.lower().endswith(".pdf"):
            pdf_template = report_service.read_template(template_name)
        else:
            html_template = report_service.read_html_template(template_name)

    body = report_service.render_html(report, html_template, client)
    if pdf_template is not None:
        pdf = report_service.fill_pdf_template(pdf_template, report, client)
    else:
        pdf = report_service.render_summary_pdf(report, client)
    return body, pdf

@router.get("")
def get_report(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    client_id: int | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    if client_id is not None:
        get_owned_client(db, user, client_id)
    posts, clients = _load(db, user, start_date, end_date, [client_id] if client_id else None)
    return report_service.generate_report(posts, clients, start_date, end_date)

@router.post("/download")
def download_report(payload: ReportDownload, db: Session = Depends(get_db), user: User = Depends(require_user)):
    client = get_owned_client(db, user, payload.client_id) if payload.client_id else None
    posts, clients = _load(db, user, payload.start_date, payload.end_date, [client.id] if client else None)
    report = report_service.generate_report(posts, clients, payload.start_date, payload.end_date)

    if payload.format == "json":
        return report

    try:
        body, media_type = report_service.build_report_document(report, payload.format, payload.template_name, client)
    except TemplateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    filename = f"social-media-report-{_utcnow().strftime('%Y-%m-%d')}.{payload.format}"
    log_event("report_download", report_format=payload.format, template=payload.template_name)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.post("/schedule")
def schedule_report(payload: ReportSchedule, db: Session = Depends(get_db), user: User = Depends(require_user)):
    user.report_enabled = payload.enabled
    user.report_day_of_month = payload.day_of_month
    user.report_email = payload.email or user.email
    db.commit()
    log_event("report_schedule_update", user_id=user.id, enabled=payload.enabled, day_of_month=payload.day_of_month)
    return {
        "message": "Report schedule updated",
        "report_schedule": {
            "enabled": user.report_enabled,
            "day_of_month": user.report_day_of_month,
            "email": user.report_email,
        },
    }

@router.post("/send-test")
def send_test_report(payload: SendTestReport, db: Session = Depends(get_db), user: User = Depends(require_user)):
    end = _utcnow()
    start = end - timedelta(days=TEST_REPORT_DAYS)
    posts, clients = _load(db, user, start, end)
    report = report_service.generate_report(posts, clients, start, end)

    try:
        body, pdf = _email_parts(report, payload.template_name)
    except TemplateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not send_report_email(user.report_email or user.email, body, pdf):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to send test report")
    log_event("report_sent", user_id=user.id, trigger="test")
    return {"message": "Test report sent successfully"}

@router.post("/send-to-clients")
def send_to_clients(payload: SendToClients, db: Session = Depends(get_db), user: User = Depends(require_user)):
    posts, clients = _load(db, user, payload.start_date, payload.end_date, payload.client_ids or None)
    if not clients:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No clients found")

    results = []
    for client in clients:
        row = {"client_id": client.id, "client_name": client.name, "email": client.email}
        try:
            client_posts = [p for p in posts if p.client_id == client.id]
            report = report_service.generate_report(client_posts, [client], payload.start_date, payload.end_date)
            body, pdf = _email_parts(report, payload.template_name, client)
            sent = send_report_email(client.email, body, pdf, client_name=client.name)
        except TemplateError as e:
            results.append({**row, "status": "failed", "error": str(e)})
            continue
        if sent:
            results.append({**row, "status": "sent"})
        else:
            results.append({**row, "status": "failed", "error": "Email delivery failed"})

    sent_count = sum(1 for r in results if r["status"] == "sent")
    log_event("report_sent", user_id=user.id, trigger="clients", sent=sent_count, failed=len(results) - sent_count)
    return {"message": f"Reports sent to {sent_count} client(s)", "results": results}

@router.post("/upload-template", status_code=status.HTTP_201_CREATED)
async def upload_template(template: UploadFile = File(...), user: User = Depends(require_user)):
    # One byte past the cap is enough to reject
    content = await template.read(report_service.MAX_TEMPLATE_BYTES + 1)
    try:
        saved = report_service.save_template(template.filename, content)
    except TemplateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    log_event("report_template_upload", template=saved["filename"], size_bytes=saved["size"])
    return saved

@router.get("/templates")
def list_templates(user: User = Depends(require_user)):
    return {"templates": report_service.list_templates()}

@router.delete("/templates/{filename}")
def delete_template(filename: str, user: User = Depends(require_user)):
    try:
        deleted = report_service.delete_template(filename)
    except TemplateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return {"ok": True}
