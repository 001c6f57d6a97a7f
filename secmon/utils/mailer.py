import logging
import smtplib
from email.message import EmailMessage
from email.utils import parseaddr

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, host=None, port=587, username=None, password=None, sender=None, use_tls=True):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_tls = use_tls

    @property
    def configured(self):
        return bool(self.host and self.sender)

    def send(self, to, subject, html):
        """Send an HTML mail. Returns False instead of raising when delivery fails."""
        if not self.configured:
            logger.warning("SMTP is not configured, dropping mail '%s'", subject)
            return False

        # "Name <addr>" -> "addr"
        recipient = parseaddr(to)[1] or to

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = recipient
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email send failed to {recipient}: {e}")
            return False

        logger.info("Email sent to %s", recipient)
        return True
