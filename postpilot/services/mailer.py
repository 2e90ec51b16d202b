import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..config import settings
from ..logging_setup import log_event

def send_email(to: str, subject: str, html_body: str, text_body: str | None = None,
               attachment: bytes | None = None, attachment_name: str = "report.pdf") -> bool:
    """
    Sends one message over SMTP; returns False when delivery fails.
    Without SMTP_HOST configured the message is only logged.
    """
    if not settings.smtp_host:
        log_event("email_logged", recipient=to, subject=subject, has_attachment=attachment is not None)
        return True

    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to

    body = MIMEMultipart("alternative")
    body.attach(MIMEText(text_body or subject, "plain"))
    body.attach(MIMEText(html_body, "html"))
    msg.attach(body)

    if attachment is not None:
        part = MIMEApplication(attachment, _subtype="pdf")
        part.add_header("Content-Disposition", "attachment", filename=attachment_name)
        msg.attach(part)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
            server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.mail_from, [to], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        log_event("email_send_fail", level="error", recipient=to, subject=subject, error=str(e))
        return False

    log_event("email_sent", recipient=to, subject=subject)
    return True

def send_verification_code(to: str, code: str) -> bool:
    html_body = f"""
    <div style="font-family: Arial, sans-serif;">
      <h2>Your login verification code</h2>
      <p style="font-size: 28px; letter-spacing: 6px;"><strong>{code}</strong></p>
      <p>This code expires in 10 minutes.</p>
    </div>
    """
    return send_email(to, "Your PostPilot verification code", html_body,
                      f"Your verification code is {code}. It expires in 10 minutes.")

def send_password_reset(to: str, token: str) -> bool:
    link = f"{settings.frontend_url.rstrip('/')}/reset-password?token={token}"
    html_body = f"""
    <div style="font-family: Arial, sans-serif;">
      <h2>Reset your password</h2>
      <p><a href="{link}">Choose a new password</a></p>
      <p>The link expires in 1 hour. If you did not ask for this, ignore this email.</p>
    </div>
    """
    return send_email(to, "Reset your PostPilot password", html_body, f"Reset your password: {link}")

def send_report_email(to: str, report_html: str, pdf: bytes | None = None, client_name: str | None = None) -> bool:
    subject = f"Social media report for {client_name}" if client_name else "Your social media report"
    return send_email(to, subject, report_html, "Your social media report is attached.", attachment=pdf,
                      attachment_name="social-media-report.pdf")
