import tempfile
import unittest

from patron_portal.auth.crud import create_user, get_user_by_email, verify_user_credentials
from patron_portal.db import connect, get_app_config, init_db
from patron_portal.patreon.client import PatreonClient
from patron_portal.patreon.sync import (
    clear_subscription_alert,
    get_sync_status,
    list_subscription_alerts,
    run_sync,
    sync_patrons,
)

from support import BASE, FakeResponse, FakeSession, make_config, member, members_payload, patron, user_resource


class SyncPatronsTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.cfg = make_config(self._tmp.name)
        init_db(self.cfg.DB_DSN)

    def tearDown(self):
        self._tmp.cleanup()

    def _premium(self, conn, email="vip@example.com", status="active_patron"):
        user = create_user(
            conn,
            username="vip",
            email=email,
            password="pass1234",
            is_free=False,
            patreon_subscription_status=status,
        )
        return user

    def test_new_patrons_get_accounts(self):
        with connect(self.cfg.DB_DSN) as conn:
            result = sync_patrons(
                conn,
                [
                    patron("u1", "Ada@Example.com", "active_patron", "Ada Lovelace"),
                    patron("u2", "bob@example.com", "former_patron"),
                ],
                now="2024-05-01T00:00:00Z",
            )
            ada = get_user_by_email(conn, "ada@example.com")
            bob = get_user_by_email(conn, "bob@example.com")
            created = result.synced_users[0]
            self.assertIsNotNone(verify_user_credentials(conn, "ada@example.com", created["tempPassword"]))

        self.assertEqual(len(result.synced_users), 2)
        self.assertEqual(created["action"], "created")
        self.assertEqual(created["subscriptionStatus"], "active_patron")
        self.assertEqual(ada["username"], "Ada Lovelace")
        self.assertEqual(ada["patreon_id"], "u1")
        self.assertEqual(ada["is_free"], 0)
        self.assertEqual(ada["last_patreon_sync"], "2024-05-01T00:00:00Z")
        self.assertEqual(bob["username"], "bob")
        self.assertEqual(bob["is_free"], 1)
        self.assertEqual(bob["patreon_subscription_status"], "former_patron")

    def test_username_collision_gets_suffix(self):
        with connect(self.cfg.DB_DSN) as conn:
            create_user(conn, username="bob", email="other-bob@example.com", password="pass1234")
            sync_patrons(conn, [patron("u2", "bob@example.com", "active_patron")])
            self.assertEqual(get_user_by_email(conn, "bob@example.com")["username"], "bob-2")

    def test_patrons_without_email_are_skipped(self):
        with connect(self.cfg.DB_DSN) as conn:
            result = sync_patrons(conn, [patron("u1", None, "active_patron"), {"id": "m9", "user": None}])
        self.assertEqual(result.skipped, 2)
        self.assertEqual(result.synced_users, [])

    def test_unsubscribe_alert_raised_once(self):
        with connect(self.cfg.DB_DSN) as conn:
            user = self._premium(conn)
            first = sync_patrons(conn, [patron("u7", "vip@example.com", "declined_patron")])
            second = sync_patrons(conn, [patron("u7", "vip@example.com", "former_patron")])
            row = get_user_by_email(conn, "vip@example.com")
            alerts = list_subscription_alerts(conn)

        self.assertEqual(len(first.subscription_alerts), 1)
        self.assertEqual(first.subscription_alerts[0]["action"], "unsubscribed")
        self.assertEqual(first.synced_users[0]["subscriptionChange"], "unsubscribed")
        self.assertEqual(second.subscription_alerts, [])
        self.assertEqual(second.synced_users[0]["subscriptionChange"], "none")
        self.assertEqual(row["is_free"], 1)
        self.assertEqual(row["subscription_alert_sent"], 1)
        self.assertEqual(row["patreon_id"], "u7")
        self.assertEqual([a["id"] for a in alerts], [user["id"]])
        self.assertEqual(alerts[0]["subscription_status"], "former_patron")

    def test_free_user_lapsing_raises_no_alert(self):
        with connect(self.cfg.DB_DSN) as conn:
            create_user(
                conn,
                username="fan",
                email="fan@example.com",
                password="pass1234",
                patreon_subscription_status="active_patron",
            )
            result = sync_patrons(conn, [patron("u8", "fan@example.com", "former_patron")])
            self.assertEqual(list_subscription_alerts(conn), [])
        self.assertEqual(result.subscription_alerts, [])
        self.assertEqual(result.synced_users[0]["subscriptionChange"], "unsubscribed")

    def test_resubscribe_makes_premium_again(self):
        with connect(self.cfg.DB_DSN) as conn:
            self._premium(conn, status="former_patron")
            result = sync_patrons(conn, [patron("u7", "vip@example.com", "active_patron")])
            row = get_user_by_email(conn, "vip@example.com")
        self.assertEqual(result.synced_users[0]["subscriptionChange"], "subscribed")
        self.assertEqual(row["is_free"], 0)

    def test_match_by_patreon_id(self):
        with connect(self.cfg.DB_DSN) as conn:
            create_user(conn, username="dj", email="dj@example.com", password="pass1234", patreon_id="u3")
            result = sync_patrons(conn, [patron("u3", "dj-patreon@example.com", "active_patron")])
            self.assertIsNone(get_user_by_email(conn, "dj-patreon@example.com"))
            row = get_user_by_email(conn, "dj@example.com")
        self.assertEqual(result.synced_users[0]["action"], "updated")
        self.assertEqual(row["patreon_subscription_status"], "active_patron")

    def test_bad_row_does_not_abort_batch(self):
        with connect(self.cfg.DB_DSN) as conn:
            result = sync_patrons(
                conn,
                [
                    patron("u1", "ok@example.com", "active_patron"),
                    patron("u2", "not-an-email", "active_patron"),
                    patron("u3", "also-ok@example.com", "active_patron"),
                ],
            )
        self.assertEqual(len(result.synced_users), 2)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0]["error"], "invalid_email")
        with connect(self.cfg.DB_DSN) as conn:
            self.assertIsNotNone(get_user_by_email(conn, "ok@example.com"))
            self.assertIsNotNone(get_user_by_email(conn, "also-ok@example.com"))

    def test_clear_alert(self):
        with connect(self.cfg.DB_DSN) as conn:
            user = self._premium(conn)
            sync_patrons(conn, [patron("u7", "vip@example.com", "declined_patron")])
            cleared = clear_subscription_alert(conn, user["id"])
            self.assertFalse(cleared["subscription_alert_sent"])
            self.assertEqual(list_subscription_alerts(conn), [])
            self.assertIsNone(clear_subscription_alert(conn, 9999))

    def test_result_summary(self):
        with connect(self.cfg.DB_DSN) as conn:
            result = sync_patrons(conn, [patron("u1", "ok@example.com", "active_patron"), patron("u2", None, None)])
        summary = result.to_dict()
        self.assertEqual(summary["synced"], 1)
        self.assertEqual(summary["errors"], 0)
        self.assertEqual(summary["skipped"], 1)
        self.assertEqual(len(summary["details"]["syncedUsers"]), 1)


class RunSyncTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.cfg = make_config(self._tmp.name)
        init_db(self.cfg.DB_DSN)

    def tearDown(self):
        self._tmp.cleanup()

    def test_records_sync_state(self):
        session = FakeSession(
            {
                f"{BASE}/campaigns/777/members": FakeResponse(
                    200,
                    members_payload(
                        [member("m1", "u1", "a@example.com", "active_patron", full_name="Ann")],
                        included=[user_resource("u1", "a@example.com", "Ann")],
                    ),
                )
            }
        )
        client = PatreonClient(BASE, "creator-token", "777", session=session)
        result = run_sync(self.cfg, client)

        self.assertEqual(len(result.synced_users), 1)
        with connect(self.cfg.DB_DSN) as conn:
            status = get_sync_status(conn)
            self.assertEqual(status["campaign_id"], "777")
            self.assertIsNotNone(status["last_sync_at"])
            self.assertEqual(get_app_config(conn, "patreon_last_sync_at"), status["last_sync_at"])
            self.assertEqual(get_user_by_email(conn, "a@example.com")["username"], "Ann")


if __name__ == "__main__":
    unittest.main()
