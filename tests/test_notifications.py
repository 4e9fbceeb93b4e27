# tests/test_notifications.py
import pytest

from scanhub.core.exceptions import NotificationError
from scanhub.services.notifications import CONFIRM, RESET, BackgroundTaskRunner, render


def test_render_confirm():
    email = render("ScanHub", "alice", "http://ui.test/confirm?token=abc", "alice@example.com", CONFIRM)

    assert email.subject == "ScanHub - Confirm Account"
    assert "alice" in email.text
    assert "http://ui.test/confirm?token=abc" in email.text
    assert '<a href="http://ui.test/confirm?token=abc">' in email.html


def test_html_body_escapes_markup():
    link = 'http://evil/"><script>alert(1)</script>'

    email = render("ScanHub", "<b>mallory</b>", link, "m@example.com", RESET)

    assert "<script>" not in email.html
    assert "&lt;script&gt;" in email.html
    assert "<b>mallory</b>" not in email.html
    assert link in email.text


def test_unknown_template():
    with pytest.raises(NotificationError):
        render("ScanHub", "alice", "http://ui.test", "alice@example.com", "welcome")


async def test_task_runner_logs_failures():
    runner = BackgroundTaskRunner()
    done = []

    async def ok():
        done.append(True)

    async def broken():
        raise RuntimeError("smtp down")

    runner.spawn(ok(), name="ok")
    runner.spawn(broken(), name="broken")
    await runner.drain()

    assert done == [True]
