# copyflow/notifications.py
"""Bulk job completion notices. Delivery is best-effort; callers log failures."""
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from copyflow.monitoring import get_logger

log = get_logger("notifications")


def completion_message(job_name: str, successful: int, failed: int):
    subject = f"Bulk job completed: {job_name}"
    body = f"""
Your bulk generation job "{job_name}" has finished.

Successful items: {successful}
Failed items: {failed}

You can download the results from the CopyFlow dashboard or the bulk API.
"""
    return subject, body


class LogNotifier:
    """Used when no SMTP server is configured."""

    def bulk_completed(self, email: Optional[str], job_name: str, successful: int, failed: int):
        log.info("Bulk job completion notice", extra={
            "to": email, "job_name": job_name, "successful": successful, "failed": failed,
        })


class SmtpNotifier:
    def __init__(self, host: str, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, sender: str = "noreply@copyflow.com",
                 timeout: float = 30.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def bulk_completed(self, email: Optional[str], job_name: str, successful: int, failed: int):
        if not email:
            log.info("Tenant has no owner email; skipping completion notice",
                     extra={"job_name": job_name})
            return
        subject, body = completion_message(job_name, successful, failed)
        msg = MIMEMultipart()
        msg["From"] = self.sender
        msg["To"] = email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.sendmail(self.sender, [email], msg.as_string())
        log.info("Completion notice sent", extra={"job_name": job_name})


def build_notifier(settings):
    if settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from,
        )
    return LogNotifier()
