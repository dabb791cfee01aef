from __future__ import annotations

import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Optional

from ssoauth.logging import get_logger, redact_value

logger = get_logger(__name__)

_CODE_TEMPLATE = """Verify your email

Enter this code to finish setting up your account:

    {code}

The code can be used once. Requesting a new code replaces this one.

---
{sender}
"""


class EmailService:
    """SMTP dispatcher for verification codes.

    Supports:
    - SMTP with STARTTLS or implicit TLS
    - Fallback to logging when not configured (dev mode)

    ``send_verification_code`` blocks; callers on the event loop run it in a
    worker thread.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "SSO",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def send_verification_code(self, to_email: str, code: str) -> bool:
        """Send the six digit code that proves control of ``to_email``.

        Returns True once the SMTP server accepted the message. Failures are
        logged and reported as False.
        """
        subject = f"Your {self.from_name} verification code"
        if not self.is_configured:
            # Dev mode: nothing leaves the process, the code is not logged
            logger.info("email_dev_mode", to=redact_value(to_email), subject=subject)
            return True

        msg = MIMEText(_CODE_TEMPLATE.format(code=code, sender=self.from_name), "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email

        try:
            with self._connect() as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                host=self.smtp_host,
                error=str(e),
                smtp_status=getattr(e, "smtp_code", None),
            )
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "email_send_failed",
                to=redact_value(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info("email_sent", to=redact_value(to_email))
        return True

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if not self.smtp_use_tls:
            return smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            )
        server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        try:
            server.starttls(context=context)
        except Exception:
            server.close()
            raise
        return server
