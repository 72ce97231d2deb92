from __future__ import annotations

import smtplib
import ssl
from typing import Any, List, Optional, Tuple

import pytest
import requests

from services.mail_dispatcher import (
    EtherealAccount,
    EtherealTransport,
    MailDeliveryError,
    SMTPTransport,
    build_message,
    create_ethereal_account,
)


class FakeServer:
    """Scripted SMTP replies shared by every client the transport opens."""

    def __init__(self) -> None:
        self.extensions = {"starttls"}
        self.mail_reply: Tuple[int, bytes] = (250, b"2.1.0 OK")
        self.rcpt_reply: Tuple[int, bytes] = (250, b"2.1.5 OK")
        self.data_reply: Tuple[int, bytes] = (250, b"2.0.0 Accepted [STATUS=new MSGID=abc]")
        self.clients: List["FakeClient"] = []

    def factory(self, secure: bool):
        def connect(host, port, timeout=None, context=None):
            client = FakeClient(self, secure, host, port, timeout, context)
            self.clients.append(client)
            return client

        return connect


class FakeClient:
    def __init__(self, server: FakeServer, secure: bool, host, port, timeout, context) -> None:
        self.server = server
        self.secure = secure
        self.host = host
        self.port = port
        self.timeout = timeout
        self.context = context
        self.calls: List[Tuple[Any, ...]] = []
        self.payload: Optional[bytes] = None
        self.closed = False

    def __enter__(self) -> "FakeClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.closed = True

    def ehlo(self):
        self.calls.append(("ehlo",))
        return 250, b"hello"

    def has_extn(self, name: str) -> bool:
        return name.lower() in self.server.extensions

    def starttls(self, context=None):
        self.calls.append(("starttls", context))
        return 220, b"ready"

    def login(self, user, password):
        self.calls.append(("login", user, password))
        return 235, b"authenticated"

    def ehlo_or_helo_if_needed(self) -> None:
        self.calls.append(("ehlo_or_helo",))

    def mail(self, sender):
        self.calls.append(("mail", sender))
        return self.server.mail_reply

    def rcpt(self, recipient):
        self.calls.append(("rcpt", recipient))
        return self.server.rcpt_reply

    def data(self, payload):
        self.calls.append(("data",))
        self.payload = payload
        return self.server.data_reply

    def rset(self):
        self.calls.append(("rset",))
        return 250, b"reset"


@pytest.fixture
def server(monkeypatch) -> FakeServer:
    fake = FakeServer()
    monkeypatch.setattr(smtplib, "SMTP", fake.factory(secure=False))
    monkeypatch.setattr(smtplib, "SMTP_SSL", fake.factory(secure=True))
    return fake


def _message(recipient: str = "hod@college.edu", sender: str = "od@college.edu"):
    return build_message(sender=sender, recipient=recipient, html="<p>hi</p>", text="hi")


def _transport(**overrides) -> SMTPTransport:
    options = dict(secure=False, username="od@college.edu", password="secret")
    options.update(overrides)
    return SMTPTransport("mail.college.edu", options.pop("port", 587), **options)


def _names(client: FakeClient) -> List[str]:
    return [call[0] for call in client.calls]


def test_starttls_then_login_then_deliver(server: FakeServer) -> None:
    receipt = _transport().send(_message())

    client = server.clients[0]
    assert not client.secure
    assert (client.host, client.port) == ("mail.college.edu", 587)
    assert _names(client) == ["ehlo", "starttls", "ehlo", "login", "ehlo_or_helo", "mail", "rcpt", "data"]
    assert ("login", "od@college.edu", "secret") in client.calls
    assert client.closed
    assert receipt.response.endswith("MSGID=abc]")
    assert receipt.message_id.startswith("<")


def test_plain_session_without_starttls_extension(server: FakeServer) -> None:
    server.extensions = set()
    _transport().send(_message())
    assert "starttls" not in _names(server.clients[0])


def test_implicit_tls_skips_starttls(server: FakeServer) -> None:
    _transport(secure=True, port=465).send(_message())

    client = server.clients[0]
    assert client.secure
    assert client.port == 465
    assert isinstance(client.context, ssl.SSLContext)
    assert _names(client)[:2] == ["login", "ehlo_or_helo"]


def test_no_login_without_username(server: FakeServer) -> None:
    _transport(username=None, password=None).send(_message())
    assert "login" not in _names(server.clients[0])


def test_relaxed_context_for_direct_hosts(server: FakeServer) -> None:
    _transport(verify_certificates=False).send(_message())

    context = next(call[1] for call in server.clients[0].calls if call[0] == "starttls")
    assert context.verify_mode == ssl.CERT_NONE
    assert context.check_hostname is False


def test_default_context_verifies_certificates() -> None:
    context = _transport()._ssl_context()
    assert context.verify_mode == ssl.CERT_REQUIRED
    assert context.check_hostname is True


def test_envelope_uses_bare_addresses(server: FakeServer) -> None:
    message = _message(
        recipient="Dean <dean@college.edu>, hod@localhost", sender="OD Cell <od@college.edu>"
    )
    _transport().send(message)

    client = server.clients[0]
    assert ("mail", "od@college.edu") in client.calls
    assert [call[1] for call in client.calls if call[0] == "rcpt"] == ["dean@college.edu", "hod@localhost"]
    assert b"\r\n" in client.payload


def test_refused_sender(server: FakeServer) -> None:
    server.mail_reply = (550, b"sender rejected")
    with pytest.raises(smtplib.SMTPSenderRefused):
        _transport().send(_message())
    assert _names(server.clients[0])[-1] == "rset"


def test_refused_recipient(server: FakeServer) -> None:
    server.rcpt_reply = (550, b"no such user")
    with pytest.raises(smtplib.SMTPRecipientsRefused) as excinfo:
        _transport().send(_message())
    assert excinfo.value.recipients == {"hod@college.edu": (550, b"no such user")}
    assert "data" not in _names(server.clients[0])


def test_data_rejected(server: FakeServer) -> None:
    server.data_reply = (554, b"message rejected")
    with pytest.raises(smtplib.SMTPDataError):
        _transport().send(_message())
    assert _names(server.clients[0])[-1] == "rset"


def test_ethereal_transport_builds_preview_url(server: FakeServer) -> None:
    account = EtherealAccount(user="box@ethereal.email", password="pw")
    receipt = EtherealTransport(lambda: account).send(_message())

    client = server.clients[0]
    assert (client.host, client.port) == ("smtp.ethereal.email", 587)
    assert ("login", "box@ethereal.email", "pw") in client.calls
    assert receipt.preview_url == "https://ethereal.email/message/abc"


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


def _stub_post(monkeypatch, result) -> List[dict]:
    calls: List[dict] = []

    def post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(requests, "post", post)
    return calls


def test_create_ethereal_account_maps_payload(monkeypatch) -> None:
    payload = {
        "status": "success",
        "user": "box@ethereal.email",
        "pass": "pw",
        "smtp": {"host": "smtp.ethereal.email", "port": 465, "secure": True},
        "web": "https://ethereal.email",
    }
    calls = _stub_post(monkeypatch, FakeResponse(payload))

    account = create_ethereal_account("https://accounts.test/user", timeout=5)

    assert account == EtherealAccount(
        user="box@ethereal.email", password="pw", port=465, secure=True
    )
    assert calls[0]["url"] == "https://accounts.test/user"
    assert calls[0]["json"]["requestor"] == "od-mailer"
    assert calls[0]["timeout"] == 5


@pytest.mark.parametrize(
    "result",
    [
        FakeResponse({"status": "error", "error": "quota"}),
        FakeResponse({"status": "success"}, status_code=503),
        FakeResponse(ValueError("not json")),
        FakeResponse(["unexpected"]),
        requests.ConnectionError("network down"),
    ],
)
def test_create_ethereal_account_failures(monkeypatch, result) -> None:
    _stub_post(monkeypatch, result)
    with pytest.raises(MailDeliveryError):
        create_ethereal_account("https://accounts.test/user")


def test_create_ethereal_account_requires_credentials(monkeypatch) -> None:
    _stub_post(monkeypatch, FakeResponse({"status": "success", "user": "box@ethereal.email"}))
    with pytest.raises(MailDeliveryError, match="missing credentials"):
        create_ethereal_account("https://accounts.test/user")
