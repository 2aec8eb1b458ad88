# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from types import SimpleNamespace

import aiosmtplib
import pytest

from mail_scheduler.smtp_pool import SMTPPool


class DummySMTP:
    def __init__(self, hostname, port, start_tls=True, use_tls=False, timeout=None):
        self.hostname = hostname
        self.port = port
        self.start_tls = start_tls
        self.use_tls = use_tls
        self.timeout = timeout
        self.login_credentials = None
        self.connected = False
        self.closed = False
        self.alive = True

    async def connect(self):
        self.connected = True

    async def login(self, user, password):
        self.login_credentials = (user, password)

    async def noop(self):
        if not self.alive:
            raise aiosmtplib.SMTPServerDisconnected("Connection dead")
        return SimpleNamespace(code=250, message="OK")

    async def quit(self):
        self.closed = True


@pytest.fixture(autouse=True)
def patch_aiosmtplib(monkeypatch):
    created = []

    def factory(**kwargs):
        smtp = DummySMTP(**kwargs)
        created.append(smtp)
        return smtp

    monkeypatch.setattr("mail_scheduler.smtp_pool.aiosmtplib.SMTP", factory)
    return created


async def test_get_connection_reuses_active_instance():
    pool = SMTPPool(ttl=30)
    smtp1 = await pool.get_connection("smtp.local", 25, "user", "pass", use_tls=False)
    smtp2 = await pool.get_connection("smtp.local", 25, "user", "pass", use_tls=False)

    assert smtp1 is smtp2
    assert smtp1.login_credentials == ("user", "pass")


async def test_login_skipped_without_credentials():
    pool = SMTPPool()
    smtp = await pool.get_connection("smtp.local", 25, None, None, use_tls=False)
    assert smtp.login_credentials is None


@pytest.mark.parametrize(
    "port,use_tls,expected",
    [(465, True, (True, False)), (587, True, (False, True)), (587, False, (False, False))],
)
async def test_tls_modes(port, use_tls, expected):
    pool = SMTPPool()
    smtp = await pool.get_connection("smtp.local", port, None, None, use_tls=use_tls)
    assert (smtp.use_tls, smtp.start_tls) == expected


async def test_get_connection_discards_expired_instance():
    pool = SMTPPool(ttl=-1)
    smtp1 = await pool.get_connection("smtp.local", 25, None, None, use_tls=False)
    smtp2 = await pool.get_connection("smtp.local", 25, None, None, use_tls=False)
    assert smtp1.closed is True
    assert smtp2 is not smtp1


async def test_changed_parameters_reconnect():
    pool = SMTPPool()
    smtp1 = await pool.get_connection("smtp.local", 25, None, None, use_tls=False)
    smtp2 = await pool.get_connection("smtp.other", 25, None, None, use_tls=False)
    assert smtp1.closed is True
    assert smtp2.hostname == "smtp.other"


async def test_connection_context_discards_on_error():
    pool = SMTPPool()
    with pytest.raises(RuntimeError):
        async with pool.connection("smtp.local", 25, None, None, use_tls=False) as smtp:
            raise RuntimeError("send failed")
    assert smtp.closed is True
    assert pool.pool == {}


async def test_cleanup_removes_dead_connections():
    pool = SMTPPool(ttl=300)
    smtp = await pool.get_connection("smtp.local", 25, None, None, use_tls=False)
    smtp.alive = False
    await pool.cleanup()
    assert pool.pool == {}
    assert smtp.closed is True


async def test_probe_does_not_pool(patch_aiosmtplib):
    pool = SMTPPool()
    await pool.probe("smtp.local", 25, "u", "p", use_tls=False)
    assert pool.pool == {}
    assert patch_aiosmtplib[0].closed is True


async def test_close_all():
    pool = SMTPPool()
    smtp = await pool.get_connection("smtp.local", 25, None, None, use_tls=False)
    await pool.close_all()
    assert smtp.closed is True
    assert pool.pool == {}
