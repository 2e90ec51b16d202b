import smtplib
from email import message_from_string
from unittest.mock import patch

from postpilot.services import mailer

def test_without_smtp_host_mail_is_only_logged():
    with patch("postpilot.services.mailer.smtplib.SMTP") as smtp:
        assert mailer.send_email("a@example.com", "Hi", "<p>Hi</p>") is True
    smtp.assert_not_called()

def test_report_email_carries_pdf_attachment():
    with patch.object(mailer.settings, "smtp_host", "smtp.example.com"), \
            patch.object(mailer.settings, "smtp_user", "mailer"), \
            patch.object(mailer.settings, "smtp_password", "pw"), \
            patch("postpilot.services.mailer.smtplib.SMTP") as smtp:
        assert mailer.send_report_email("owner@example.com", "<h1>Report</h1>", b"%PDF-1.4", client_name="Sunrise")

    server = smtp.return_value.__enter__.return_value
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("mailer", "pw")
    sender, recipients, raw = server.sendmail.call_args.args
    assert recipients == ["owner@example.com"]

    msg = message_from_string(raw)
    assert msg["Subject"] == "Social media report for Sunrise"
    filenames = [part.get_filename() for part in msg.walk() if part.get_filename()]
    assert filenames == ["social-media-report.pdf"]

def test_smtp_failure_returns_false():
    with patch.object(mailer.settings, "smtp_host", "smtp.example.com"), \
            patch("postpilot.services.mailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
        assert mailer.send_email("a@example.com", "Hi", "<p>Hi</p>") is False

def test_password_reset_links_to_frontend():
    with patch("postpilot.services.mailer.send_email", return_value=True) as send:
        mailer.send_password_reset("a@example.com", "raw-token")
    html_body = send.call_args.args[2]
    assert f"{mailer.settings.frontend_url}/reset-password?token=raw-token" in html_body
