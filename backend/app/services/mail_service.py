"""
HD Notes Backend: Mail Notifiers
==================================

What:  Email delivery of one-time codes.
How:   SmtpMailer builds a text + HTML message and sends it with smtplib in a
       worker thread, retrying transient transport errors with tenacity.
       ConsoleMailer logs the code instead (local development without SMTP).
Who:   Created once by build_notifier(); used by OtpService.

Retry policy (settings.mail_retry_*):
    attempt 1 → fail → wait ~min_wait → attempt 2 → fail → wait ~2×min_wait ...
    capped at mail_retry_max_wait, with up to 1 s of jitter, at most
    mail_retry_attempts attempts. Authentication and recipient refusals are
    permanent and are not retried.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import parseaddr

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.exceptions import NotificationDeliveryError
from app.models.otp_challenge import PURPOSE_SIGNUP
from app.services.mail_base import Notifier

logger = logging.getLogger(__name__)

_PERMANENT_SMTP_ERRORS = (
    smtplib.SMTPAuthenticationError,
    smtplib.SMTPRecipientsRefused,
    smtplib.SMTPSenderRefused,
)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, _PERMANENT_SMTP_ERRORS):
        return False
    return isinstance(exc, (smtplib.SMTPException, OSError))


def render_code_email(to_email: str, code: str, purpose: str, ttl_seconds: int) -> EmailMessage:
    """Build the verification email for `purpose`."""
    minutes = max(1, ttl_seconds // 60)
    if purpose == PURPOSE_SIGNUP:
        subject = "Verify your email for HD Notes"
        intro = "Welcome to HD Notes! Use this code to finish creating your account:"
    else:
        subject = "Your HD Notes sign-in code"
        intro = "Use this code to sign in to HD Notes:"

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to_email
    msg.set_content(
        f"{intro}\n\n    {code}\n\n"
        f"The code expires in {minutes} minutes. "
        "If you did not request it, you can ignore this email.\n"
    )
    msg.add_alternative(
        f"<p>{intro}</p>"
        f"<p style=\"font-size:24px;font-weight:bold;letter-spacing:4px\">{code}</p>"
        f"<p>The code expires in {minutes} minutes. "
        "If you did not request it, you can ignore this email.</p>",
        subtype="html",
    )
    return msg


class SmtpMailer(Notifier):
    """Sends codes through the configured SMTP relay."""

    kind = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        logger.info("SmtpMailer configured for %s:%d (tls=%s)", host, port, use_tls)

    async def send_code(
        self, to_email: str, code: str, purpose: str, ttl_seconds: int
    ) -> None:
        message = render_code_email(to_email, code, purpose, ttl_seconds)
        try:
            await self._send_with_retry(message)
        except Exception as e:
            logger.error(
                "Verification email to %s failed: %s",
                _mask_email(to_email),
                type(e).__name__,
            )
            raise NotificationDeliveryError(
                context={"purpose": purpose, "error_type": type(e).__name__},
            ) from e
        logger.info("Verification email (%s) sent to %s", purpose, _mask_email(to_email))

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(settings.mail_retry_attempts),
        wait=wait_exponential_jitter(
            initial=settings.mail_retry_min_wait,
            max=settings.mail_retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send_with_retry(self, message: EmailMessage) -> None:
        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self._deliver, message)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls(context=ssl.create_default_context())
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def health_check(self) -> bool:
        def _probe() -> bool:
            with smtplib.SMTP(self.host, self.port, timeout=3) as smtp:
                code, _ = smtp.noop()
                return code == 250

        try:
            return await asyncio.to_thread(_probe)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("SMTP health check failed: %s", str(e))
            return False


class ConsoleMailer(Notifier):
    """
    Development notifier: writes the code to the application log.

    Selected automatically when SMTP_HOST is empty. Never use in production.
    """

    kind = "console"

    async def send_code(
        self, to_email: str, code: str, purpose: str, ttl_seconds: int
    ) -> None:
        logger.warning(
            "[dev mail] %s code for %s: %s (valid %ds)", purpose, to_email, code, ttl_seconds
        )

    async def health_check(self) -> bool:
        return True


def _mask_email(email: str) -> str:
    _, address = parseaddr(email)
    user, _, domain = address.partition("@")
    if not domain:
        return "***"
    return f"{user[:1]}***@{domain}"


def build_notifier() -> Notifier:
    """Pick the notifier for the current configuration."""
    if settings.smtp_host:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    logger.warning("SMTP_HOST not set; one-time codes will be logged by ConsoleMailer")
    return ConsoleMailer()
