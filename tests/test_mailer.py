# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for message construction and the SMTP transport."""

import aiosmtplib

from mail_scheduler.config import SmtpConfig
from mail_scheduler.mailer import OutboundEmail, SmtpTransport, build_message, text_to_html


def _email(**overrides):
    values = {
        "from_name": "Newsletter",
        "from_email": "news@example.com",
        "to": "alice@example.com",
        "subject": "Hello",
        "text": "Line 1\nLine <2> & more",
    }
    values.update(overrides)
    return OutboundEmail(**values)


def test_text_to_html_escapes_then_breaks_lines():
    assert text_to_html("a < b\r\nc") == "a &lt; b<br>c"


def test_from_header_falls_back_to_address():
    assert _email(from_name=None).from_header == "\"news@example.com\" <news@example.com>"
    assert _email().from_header == "Newsletter <news@example.com>"


def test_build_message_has_text_and_html_parts():
    msg = build_message(_email())
    assert msg["To"] == "alice@example.com"
    assert msg["Subject"] == "Hello"
    assert msg["Message-ID"].endswith("@example.com>")
    assert msg.get_content_type() == "multipart/alternative"
    plain = msg.get_body(preferencelist=("plain",))
    html = msg.get_body(preferencelist=("html",))
    assert plain.get_content().strip() == "Line 1\nLine <2> & more"
    assert "Line 1<br>Line &lt;2&gt; &amp; more" in html.get_content()


class FakePool:
    def __init__(self, fail_probe=False):
        self.fail_probe = fail_probe
        self.sent = []
        self.closed = False
        self.cleaned = False

    def connection(self, host, port, user, password, *, use_tls):
        pool = self

        class _Ctx:
            async def __aenter__(self):
                return pool

            async def __aexit__(self, *exc):
                return False

        return _Ctx()

    async def send_message(self, msg, sender=None, recipients=None):
        self.sent.append((msg, sender, recipients))

    async def probe(self, host, port, user, password, *, use_tls):
        if self.fail_probe:
            raise aiosmtplib.SMTPConnectError("refused")

    async def cleanup(self):
        self.cleaned = True

    async def close_all(self):
        self.closed = True


async def test_smtp_transport_send_returns_message_id():
    pool = FakePool()
    transport = SmtpTransport(SmtpConfig(host="smtp.local", port=25), pool=pool)
    message_id = await transport.send(_email())

    [(msg, sender, recipients)] = pool.sent
    assert msg["Message-ID"] == message_id
    assert sender == "news@example.com"
    assert recipients == ["alice@example.com"]


async def test_smtp_transport_verify():
    assert await SmtpTransport(SmtpConfig(), pool=FakePool()).verify() is True
    assert await SmtpTransport(SmtpConfig(), pool=FakePool(fail_probe=True)).verify() is False


async def test_smtp_transport_cleanup_and_close():
    pool = FakePool()
    transport = SmtpTransport(SmtpConfig(), pool=pool)
    await transport.cleanup()
    await transport.close()
    assert pool.cleaned and pool.closed
