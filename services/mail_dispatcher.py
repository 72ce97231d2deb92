"""SMTP delivery of stored OD submissions with a preview-mail safety net."""

from __future__ import annotations

import logging
import os
import re
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, getaddresses, make_msgid, parseaddr
from typing import Callable, List, Mapping, Optional, Protocol, Sequence, Tuple

import requests

from utils.env import env_str, int_value
from utils.event_log import EventLog

from .email_composer import EMAIL_SUBJECT, EmailComposer
from .submission_store import SubmissionStore


logger = logging.getLogger(__name__)

_MSGID_RE = re.compile(r"MSGID=([^\s\]]+)")

ETHEREAL_API_URL = "https://api.nodemailer.com/user"
ETHEREAL_WEB_URL = "https://ethereal.email"
ETHEREAL_REQUESTOR = "od-mailer"
ETHEREAL_VERSION = "1.0.0"

SENDER_NOT_CONFIGURED = "Server sender not configured. Set SMTP_USER or MAIL_FROM in .env."
FALLBACK_NOTE = (
    "Primary SMTP failed; sent with Ethereal test account (not delivered to real inbox). "
    "Configure SMTP_* or Gmail App Password."
)
PREVIEW_ONLY_NOTE = (
    "No SMTP credentials configured; sent with Ethereal test account "
    "(not delivered to real inbox). Configure SMTP_* or Gmail App Password."
)


class MailServiceError(RuntimeError):
    """Base error for mail dispatch failures."""


class MailConfigError(MailServiceError):
    """Raised when the sender address is not configured."""


class InvalidRecipientError(MailServiceError):
    """Raised when the recipient address is malformed."""


class SubmissionNotFoundError(MailServiceError):
    """Raised when the submission id is unknown."""


class MailDeliveryError(MailServiceError):
    """Raised when every transport in the chain failed."""


_TRANSPORT_ERRORS = (smtplib.SMTPException, OSError, MailServiceError)


@dataclass(frozen=True)
class WebmailProvider:
    host: str
    port: int
    secure: bool


WEBMAIL_PROVIDERS = {
    "gmail.com": WebmailProvider("smtp.gmail.com", 465, True),
    "googlemail.com": WebmailProvider("smtp.gmail.com", 465, True),
    "outlook.com": WebmailProvider("smtp-mail.outlook.com", 587, False),
    "hotmail.com": WebmailProvider("smtp-mail.outlook.com", 587, False),
    "live.com": WebmailProvider("smtp-mail.outlook.com", 587, False),
    "yahoo.com": WebmailProvider("smtp.mail.yahoo.com", 465, True),
}


@dataclass(frozen=True)
class MailSettings:
    """SMTP configuration read from the environment."""

    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    secure_flag: bool = False
    mail_from: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MailSettings":
        source = os.environ if environ is None else environ
        secure_raw = (source.get("SMTP_SECURE") or "").strip().lower()
        port_raw = env_str("SMTP_PORT", source)
        return cls(
            host=env_str("SMTP_HOST", source),
            port=int_value(port_raw, None) if port_raw else None,
            user=env_str("SMTP_USER", source),
            password=source.get("SMTP_PASS") or None,
            secure_flag=secure_raw in {"true", "1"},
            mail_from=env_str("MAIL_FROM", source),
        )

    @property
    def sender(self) -> Optional[str]:
        return self.user or self.mail_from

    @property
    def secure(self) -> bool:
        return self.secure_flag or self.port == 465

    @property
    def resolved_port(self) -> int:
        if self.port:
            return self.port
        return 465 if self.secure else 587

    @property
    def is_partial(self) -> bool:
        configured = [bool(self.host), bool(self.user), bool(self.password)]
        return any(configured) and not all(configured)

    def webmail_provider(self) -> Optional[Tuple[str, WebmailProvider]]:
        if not self.user or "@" not in self.user:
            return None
        domain = self.user.rsplit("@", 1)[1].lower()
        provider = WEBMAIL_PROVIDERS.get(domain)
        if provider is None:
            return None
        return domain, provider


@dataclass(frozen=True)
class SendReceipt:
    message_id: str
    preview_url: Optional[str] = None
    response: str = ""


class MailTransport(Protocol):
    name: str
    is_preview: bool

    def send(self, message: EmailMessage) -> SendReceipt: ...


def parse_recipients(value: str) -> List[str]:
    """Return the bare addresses in a To value (display names and lists allowed)."""

    return [address for _, address in getaddresses([value or ""]) if "@" in address]


def _deliver(client: smtplib.SMTP, message: EmailMessage) -> str:
    """Run MAIL/RCPT/DATA and return the server's final response text."""

    sender = parseaddr(str(message["From"]))[1]
    recipients = parse_recipients(str(message["To"]))
    client.ehlo_or_helo_if_needed()
    code, response = client.mail(sender)
    if code != 250:
        client.rset()
        raise smtplib.SMTPSenderRefused(code, response, sender)
    for recipient in recipients:
        code, response = client.rcpt(recipient)
        if code not in (250, 251):
            client.rset()
            raise smtplib.SMTPRecipientsRefused({recipient: (code, response)})
    code, response = client.data(message.as_bytes(policy=message.policy.clone(linesep="\r\n")))
    if code != 250:
        client.rset()
        raise smtplib.SMTPDataError(code, response)
    return response.decode("utf-8", errors="replace")


class SMTPTransport:
    """Plain SMTP (STARTTLS when offered) or implicit TLS delivery."""

    is_preview = False

    def __init__(
        self,
        host: str,
        port: int,
        *,
        secure: bool,
        username: Optional[str],
        password: Optional[str],
        verify_certificates: bool = True,
        name: str = "smtp",
        timeout: float = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.secure = secure
        self.username = username
        self.password = password
        self.verify_certificates = verify_certificates
        self.name = name
        self.timeout = timeout

    def send(self, message: EmailMessage) -> SendReceipt:
        context = self._ssl_context()
        if self.secure:
            client: smtplib.SMTP = smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=context
            )
        else:
            client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with client:
            if not self.secure:
                client.ehlo()
                if client.has_extn("starttls"):
                    client.starttls(context=context)
                    client.ehlo()
            if self.username:
                client.login(self.username, self.password or "")
            response = _deliver(client, message)
        return SendReceipt(message_id=str(message["Message-ID"]), response=response)

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.verify_certificates:
            # Self-signed and corporate interception certificates.
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context


@dataclass(frozen=True)
class EtherealAccount:
    user: str
    password: str
    host: str = "smtp.ethereal.email"
    port: int = 587
    secure: bool = False
    web: str = ETHEREAL_WEB_URL


def create_ethereal_account(
    api_url: Optional[str] = None, *, timeout: float = 30
) -> EtherealAccount:
    """Request a throwaway Ethereal mailbox."""

    url = api_url or os.getenv("ETHEREAL_API_URL") or ETHEREAL_API_URL
    try:
        response = requests.post(
            url,
            json={"requestor": ETHEREAL_REQUESTOR, "version": ETHEREAL_VERSION},
            timeout=timeout,
        )
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise MailDeliveryError(f"Unable to create Ethereal test account: {exc}") from exc

    if not isinstance(payload, dict) or payload.get("status") != "success":
        raise MailDeliveryError("Ethereal account service returned an error")
    user = payload.get("user")
    password = payload.get("pass")
    if not user or not password:
        raise MailDeliveryError("Ethereal account response missing credentials")
    smtp_info = payload.get("smtp") or {}
    return EtherealAccount(
        user=user,
        password=password,
        host=smtp_info.get("host", "smtp.ethereal.email"),
        port=int(smtp_info.get("port", 587)),
        secure=bool(smtp_info.get("secure", False)),
        web=payload.get("web") or ETHEREAL_WEB_URL,
    )


def preview_url(web: str, response: str) -> Optional[str]:
    match = _MSGID_RE.search(response or "")
    if not match:
        return None
    return f"{web.rstrip('/')}/message/{match.group(1)}"


class EtherealTransport:
    """Disposable preview transport: a fresh test account per send."""

    name = "ethereal"
    is_preview = True

    def __init__(
        self, account_factory: Callable[[], EtherealAccount] = create_ethereal_account
    ) -> None:
        self._account_factory = account_factory

    def send(self, message: EmailMessage) -> SendReceipt:
        account = self._account_factory()
        transport = SMTPTransport(
            account.host,
            account.port,
            secure=account.secure,
            username=account.user,
            password=account.password,
            name=self.name,
        )
        receipt = transport.send(message)
        return SendReceipt(
            message_id=receipt.message_id,
            preview_url=preview_url(account.web, receipt.response),
            response=receipt.response,
        )


def select_transport(
    settings: MailSettings,
    *,
    preview_factory: Callable[[], MailTransport] = EtherealTransport,
) -> MailTransport:
    """Pick the primary transport for the configured settings."""

    webmail = settings.webmail_provider()
    if not settings.host and webmail and settings.password:
        domain, provider = webmail
        return SMTPTransport(
            provider.host,
            provider.port,
            secure=provider.secure,
            username=settings.user,
            password=settings.password,
            name=f"webmail:{domain}",
        )

    if settings.host and settings.user and settings.password:
        return SMTPTransport(
            settings.host,
            settings.resolved_port,
            secure=settings.secure,
            username=settings.user,
            password=settings.password,
            verify_certificates=False,
            name="smtp",
        )

    if settings.is_partial:
        logger.warning(
            "Partial SMTP configuration detected; falling back to Ethereal test account."
        )
    return preview_factory()


@dataclass
class ChainResult:
    receipt: SendReceipt
    transport: MailTransport
    failures: List[Tuple[str, Exception]] = field(default_factory=list)


class TransportChain:
    """Try transports in order; the first successful send wins."""

    def __init__(self, transports: Sequence[MailTransport]) -> None:
        if not transports:
            raise ValueError("TransportChain needs at least one transport")
        self.transports = list(transports)

    def send(self, message: EmailMessage) -> ChainResult:
        failures: List[Tuple[str, Exception]] = []
        for transport in self.transports:
            try:
                receipt = transport.send(message)
            except _TRANSPORT_ERRORS as exc:
                logger.warning("Mail send via %s failed: %s", transport.name, exc)
                failures.append((transport.name, exc))
                continue
            return ChainResult(receipt=receipt, transport=transport, failures=failures)

        last_name, last_error = failures[-1]
        raise MailDeliveryError(
            f"All mail transports failed (last: {last_name}): {last_error}"
        ) from last_error


@dataclass(frozen=True)
class DispatchResult:
    delivered: bool
    transport_used: str
    message_id: str
    html: str
    sender: str
    fallback: bool
    preview_url: Optional[str] = None
    note: Optional[str] = None


def build_message(
    *, sender: str, recipient: str, html: str, text: Optional[str] = None
) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = EMAIL_SUBJECT
    message["From"] = sender
    message["To"] = recipient
    message["Date"] = formatdate(localtime=False)
    address = parseaddr(sender)[1]
    domain = address.rsplit("@", 1)[1] if "@" in address else None
    message["Message-ID"] = make_msgid(domain=domain)
    if text:
        message.set_content(text, subtype="plain", charset="utf-8")
        message.add_alternative(html, subtype="html", charset="utf-8")
    else:
        message.set_content(html, subtype="html", charset="utf-8")
    return message


class MailDispatcher:
    """Send a stored submission to one recipient."""

    def __init__(
        self,
        store: SubmissionStore,
        composer: EmailComposer,
        *,
        settings_loader: Callable[[], MailSettings] = MailSettings.from_env,
        transport_selector: Callable[..., MailTransport] = select_transport,
        preview_factory: Callable[[], MailTransport] = EtherealTransport,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self.store = store
        self.composer = composer
        self._settings_loader = settings_loader
        self._transport_selector = transport_selector
        self._preview_factory = preview_factory
        self.event_log = event_log or EventLog(None)

    def send(
        self,
        submission_id: str,
        recipient: str,
        override_body: Optional[str] = None,
    ) -> DispatchResult:
        submission = self.store.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError("Record not found")

        recipient = (recipient or "").strip()
        if not parse_recipients(recipient):
            raise InvalidRecipientError(f"Invalid recipient address: {recipient!r}")

        text: Optional[str] = None
        if override_body:
            html = override_body
        else:
            html = self.composer.compose_html(
                submission.subjects,
                submission.students,
                mode=submission.mode,
                timetable_url=submission.timetable_file_url,
            )
            text = self.composer.compose_text(
                submission.subjects,
                submission.students,
                mode=submission.mode,
                timetable_url=submission.timetable_file_url,
            )

        settings = self._settings_loader()
        sender = settings.sender
        if not sender:
            raise MailConfigError(SENDER_NOT_CONFIGURED)

        message = build_message(sender=sender, recipient=recipient, html=html, text=text)
        primary = self._transport_selector(settings, preview_factory=self._preview_factory)
        chain = TransportChain([primary, self._preview_factory()])
        result = chain.send(message)

        fallback = bool(result.transport.is_preview)
        note: Optional[str] = None
        if fallback:
            note = FALLBACK_NOTE if result.failures else PREVIEW_ONLY_NOTE
        self.event_log.log(
            "mail_sent",
            extra={
                "submission_id": submission_id,
                "to": recipient,
                "transport": result.transport.name,
                "fallback": fallback,
                "message_id": result.receipt.message_id,
                "failures": [f"{name}: {error}" for name, error in result.failures],
            },
        )
        return DispatchResult(
            delivered=True,
            transport_used=result.transport.name,
            message_id=result.receipt.message_id,
            html=html,
            sender=sender,
            fallback=fallback,
            preview_url=result.receipt.preview_url,
            note=note,
        )
