import tempfile
import unittest
from unittest import mock

from patron_portal.auth.crud import create_user, update_user, verify_user_credentials
from patron_portal.auth.reset import (
    consume_password_reset,
    get_user_by_reset_token,
    hash_reset_token,
    issue_password_reset,
)
from patron_portal.db import connect, init_db
from patron_portal.mail import reset_password_url, send_password_reset_email

from support import make_config


class PasswordResetTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.cfg = make_config(self._tmp.name)
        init_db(self.cfg.DB_DSN)
        with connect(self.cfg.DB_DSN) as conn:
            self.user = create_user(conn, username="dj", email="dj@example.com", password="old-pass")

    def tearDown(self):
        self._tmp.cleanup()

    def test_unknown_email(self):
        with connect(self.cfg.DB_DSN) as conn:
            self.assertIsNone(issue_password_reset(conn, "ghost@example.com", expires_minutes=60))

    def test_inactive_user_gets_no_token(self):
        with connect(self.cfg.DB_DSN) as conn:
            update_user(conn, self.user["id"], {"is_active": False})
            self.assertIsNone(issue_password_reset(conn, "dj@example.com", expires_minutes=60))

    def test_token_is_stored_hashed(self):
        with connect(self.cfg.DB_DSN) as conn:
            token = issue_password_reset(conn, "DJ@example.com", expires_minutes=60)
            stored = conn.execute("SELECT password_reset_token FROM users WHERE id=?", (self.user["id"],)).fetchone()
        self.assertIsNotNone(token)
        self.assertNotEqual(stored["password_reset_token"], token)
        self.assertEqual(stored["password_reset_token"], hash_reset_token(token))

    def test_reset_is_single_use(self):
        with connect(self.cfg.DB_DSN) as conn:
            token = issue_password_reset(conn, "dj@example.com", expires_minutes=60)
            self.assertEqual(consume_password_reset(conn, token, "new-pass"), self.user["id"])
            self.assertIsNotNone(verify_user_credentials(conn, "dj", "new-pass"))
            self.assertIsNone(verify_user_credentials(conn, "dj", "old-pass"))
            with self.assertRaisesRegex(ValueError, "reset_token_invalid"):
                consume_password_reset(conn, token, "another-pass")

    def test_expired_token(self):
        with connect(self.cfg.DB_DSN) as conn:
            token = issue_password_reset(conn, "dj@example.com", expires_minutes=60)
            conn.execute(
                "UPDATE users SET password_reset_expires=? WHERE id=?",
                ("2000-01-01T00:00:00Z", self.user["id"]),
            )
            self.assertIsNone(get_user_by_reset_token(conn, token))
            with self.assertRaisesRegex(ValueError, "reset_token_invalid"):
                consume_password_reset(conn, token, "new-pass")

    def test_new_request_replaces_old_token(self):
        with connect(self.cfg.DB_DSN) as conn:
            first = issue_password_reset(conn, "dj@example.com", expires_minutes=60)
            second = issue_password_reset(conn, "dj@example.com", expires_minutes=60)
            self.assertIsNone(get_user_by_reset_token(conn, first))
            self.assertIsNotNone(get_user_by_reset_token(conn, second))


class ResetMailTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self._tmp.cleanup()

    def test_reset_url(self):
        cfg = make_config(self._tmp.name, PUBLIC_APP_URL="https://portal.example.com/")
        self.assertEqual(reset_password_url(cfg, "abc"), "https://portal.example.com/reset-password?token=abc")

    def test_without_smtp_link_is_logged(self):
        cfg = make_config(self._tmp.name)
        with mock.patch("patron_portal.mail.smtplib.SMTP") as smtp:
            out = send_password_reset_email(cfg, email="dj@example.com", token="abc")
        self.assertEqual(out, {"sent": False, "reason": "smtp_not_configured"})
        smtp.assert_not_called()

    def test_sends_over_starttls(self):
        cfg = make_config(
            self._tmp.name,
            SMTP_HOST="smtp.example.com",
            SMTP_PORT=587,
            SMTP_SECURE=False,
            SMTP_USER="mailer",
            SMTP_PASS="pw",
            SMTP_FROM="portal@example.com",
        )
        with mock.patch("patron_portal.mail.smtplib.SMTP") as smtp:
            out = send_password_reset_email(cfg, email="dj@example.com", token="abc")

        self.assertEqual(out, {"sent": True})
        smtp.assert_called_once_with("smtp.example.com", 587, timeout=cfg.SMTP_TIMEOUT_SECONDS)
        server = smtp.return_value
        server.starttls.assert_called_once_with()
        server.login.assert_called_once_with("mailer", "pw")
        msg = server.send_message.call_args[0][0]
        self.assertEqual(msg["To"], "dj@example.com")
        self.assertEqual(msg["From"], "portal@example.com")
        self.assertIn("reset-password?token=abc", msg.get_payload(decode=True).decode("utf-8"))


if __name__ == "__main__":
    unittest.main()
