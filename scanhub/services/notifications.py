"""
Notifications
=============
Account emails (confirmation, password reset) and a runner for
fire-and-forget side effects.

This module provides:
- Abstract email notifier
- Email bodies rendered with jinja2 (HTML autoescaped)
- SMTP notifier (smtplib in a worker thread)
- In-memory notifier for tests
- Background task runner
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Awaitable, Dict, List, Optional, Set

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

from ..core.config import get_config, SMTPConfig
from ..core.exceptions import NotificationError
from ..core.logging_config import get_component_logger

logger = get_component_logger("notifications")

CONFIRM = "confirm"
RESET = "reset"


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    intro: str
    action: str
    outro: str


TEMPLATES: Dict[str, EmailTemplate] = {
    CONFIRM: EmailTemplate(
        subject="{identity} - Confirm Account",
        intro="Welcome to {identity}! We're very excited to have you on board.",
        action="To get started, please confirm your account:",
        outro="Need help, or have questions? Just reply to this email.",
    ),
    RESET: EmailTemplate(
        subject="{identity} - Reset Password",
        intro="You have received this email because a password reset request "
              "for your account was received.",
        action="Use the link below to reset your password:",
        outro="If you did not request a password reset, no further action is "
              "required on your part.",
    ),
}

_BODY_TEMPLATES = {
    "email.txt": (
        "Hi {{ username }},\n\n"
        "{{ intro }}\n\n"
        "{{ action }}\n{{ link }}\n\n"
        "{{ outro }}\n\n"
        "{{ identity }}\n"
    ),
    "email.html": (
        "<html><body>"
        "<p>Hi {{ username }},</p>"
        "<p>{{ intro }}</p>"
        "<p>{{ action }}</p>"
        '<p><a href="{{ link }}">{{ link }}</a></p>'
        "<p>{{ outro }}</p>"
        "<p>{{ identity }}</p>"
        "</body></html>"
    ),
}

# HTML bodies are autoescaped; the plain-text body is not
_env = Environment(
    loader=DictLoader(_BODY_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default=False),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


@dataclass
class SentEmail:
    username: str
    link: str
    recipient: str
    template: str
    subject: str
    text: str
    html: str


def render(identity: str, username: str, link: str, recipient: str, template: str) -> SentEmail:
    """
    Render the subject, plain-text and HTML bodies of an email.

    Raises:
        NotificationError: If the template name is unknown
    """
    tpl = TEMPLATES.get(template)
    if tpl is None:
        raise NotificationError(f"Unknown email template: {template}", template=template)

    subject = tpl.subject.format(identity=identity)
    intro = tpl.intro.format(identity=identity)
    context = {
        "username": username,
        "identity": identity,
        "intro": intro,
        "action": tpl.action,
        "outro": tpl.outro,
        "link": link,
    }
    text = _env.get_template("email.txt").render(**context)
    html = _env.get_template("email.html").render(**context)
    return SentEmail(
        username=username,
        link=link,
        recipient=recipient,
        template=template,
        subject=subject,
        text=text,
        html=html,
    )


class EmailNotifier(ABC):
    """Abstract email notifier."""

    def __init__(self, config: Optional[SMTPConfig] = None):
        self.config = config or get_config().smtp

    @abstractmethod
    async def send(self, username: str, link: str, recipient: str, template: str) -> None:
        """
        Send an account email.

        Args:
            username: Name used in the greeting
            link: Action link (confirmation or reset)
            recipient: Destination email address
            template: confirm or reset

        Raises:
            NotificationError: If the email could not be sent
        """
        pass


class SMTPEmailNotifier(EmailNotifier):
    """Sends multipart (text + HTML) emails over SMTP."""

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.config.server, self.config.port, timeout=self.config.timeout) as server:
            if self.config.use_tls:
                server.starttls()
            if self.config.username and self.config.password:
                server.login(self.config.username, self.config.password)
            server.send_message(message)

    async def send(self, username: str, link: str, recipient: str, template: str) -> None:
        email = render(self.config.sender_identity, username, link, recipient, template)

        message = EmailMessage()
        message["Subject"] = email.subject
        message["From"] = f"{self.config.sender_identity} <{self.config.sender_email}>"
        message["To"] = recipient
        message.set_content(email.text)
        message.add_alternative(email.html, subtype="html")

        logger.info(f"Sending email '{email.subject}'", data={"recipient": recipient})
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"Failed to send email: {e}",
                recipient=recipient,
                template=template,
                cause=e,
            )


class InMemoryEmailNotifier(EmailNotifier):
    """Keeps rendered emails in a list instead of sending them."""

    def __init__(self, config: Optional[SMTPConfig] = None):
        super().__init__(config)
        self.outbox: List[SentEmail] = []

    async def send(self, username: str, link: str, recipient: str, template: str) -> None:
        email = render(self.config.sender_identity, username, link, recipient, template)
        self.outbox.append(email)
        logger.debug(f"Captured email '{email.subject}'", data={"recipient": recipient})


def get_email_notifier(config: Optional[SMTPConfig] = None) -> EmailNotifier:
    config = config or get_config().smtp
    if config.enabled:
        return SMTPEmailNotifier(config)
    return InMemoryEmailNotifier(config)


class BackgroundTaskRunner:
    """
    Runs side effects as independent asyncio tasks.

    The spawning request does not wait for them and never sees their
    errors; failures are logged.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, name))
        return task

    def _finished(self, task: asyncio.Task, name: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task cancelled: {name}")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task failed: {name}: {error}")

    async def drain(self) -> None:
        """Wait for every outstanding task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
