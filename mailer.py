import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr

logger = logging.getLogger(__name__)

TEMPLATES = {
    "otp": (
        "Verify Your {app_name} Account - OTP",
        "Welcome to {app_name}!\n\n"
        "Please use the following code to verify your account:\n\n"
        "    {otp}\n\n"
        "This code is valid for {ttl_minutes} minutes. If you didn't request "
        "this verification, please ignore this email.\n",
    ),
    "share": (
        "Document Shared: {title}",
        "{shared_by} has shared a document with you:\n\n"
        "    {title}\n\n"
        "Open it here: {url}\n"
        "Permission: {permission}\n"
        "{expiry_line}\n",
    ),
    "reminder": (
        "Reminder: {title}",
        "Hi {name},\n\n"
        "Your document '{title}' is due soon.\n"
        "Expiry Date: {expiry_date}\n\n"
        "Regards,\n{app_name}\n",
    ),
}


class Mailer:
    """Outbound email over SMTP.

    Built once per application and stored in ``app.extensions["mailer"]``.
    With ``MAIL_SUPPRESS_SEND`` (or no SMTP host) messages are kept in
    ``outbox`` instead of being delivered.
    """

    def __init__(self, config):
        self.host = config.get("SMTP_HOST")
        self.port = config.get("SMTP_PORT", 587)
        self.user = config.get("SMTP_USER")
        self.password = config.get("SMTP_PASS")
        self.from_email = config.get("FROM_EMAIL")
        self.app_name = config.get("APP_NAME", "DigiDocs")
        self.suppress = config.get("MAIL_SUPPRESS_SEND") or not self.host
        self.outbox = []

    def render(self, template, data):
        subject, body = TEMPLATES[template]
        values = dict(data, app_name=self.app_name)
        return subject.format(**values), body.format(**values)

    def send_message(self, to_email, template, data):
        """Render template with data and send it to to_email. Returns True on success."""
        subject, body = self.render(template, data)

        if self.suppress:
            self.outbox.append({"to": to_email, "template": template, "subject": subject, "body": body, "data": data})
            logger.info("Mail suppressed: %s to %s", template, to_email)
            return True

        msg = MIMEMultipart()
        msg["From"] = formataddr((self.app_name, self.from_email))
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=20) as server:
                server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email send failed (%s) to %s: %s", template, to_email, e)
            return False

        logger.info("Email %s sent to %s", template, to_email)
        return True


def init_mailer(app):
    app.extensions["mailer"] = Mailer(app.config)
    return app.extensions["mailer"]
