import unittest

from crowbackend.config import Settings
from crowbackend.crowmail import CrowmailService
from crowbackend.db import InMemoryDbClient
from crowbackend.errors import (
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from crowbackend.mail import InMemoryMailer

DAY = 24 * 60 * 60


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CrowmailServiceTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.db = InMemoryDbClient()
        self.mailer = InMemoryMailer()
        self.service = CrowmailService(
            self.db,
            self.db,
            self.mailer,
            Settings(public_base_url="https://crows.test/"),
            clock=self.clock,
        )

    def test_subscribe_issues_key_and_mails_link(self):
        pending = self.service.subscribe(" A@B.com ", "weekly")
        self.assertEqual(pending.email, "a@b.com")
        self.assertEqual(pending.expires_at, self.clock.now + DAY)
        self.assertIn(pending.key, self.db.pending)

        [message] = self.mailer.sent
        self.assertEqual(message.to_email, "a@b.com")
        self.assertEqual(message.category, "verification")
        self.assertIn(
            f"https://crows.test/crowmail/verify?key={pending.key}", message.text
        )

    def test_verify_promotes_exactly_once(self):
        pending = self.service.subscribe("a@b.com", "weekly")
        subscription = self.service.verify(pending.key)
        self.assertEqual(subscription.email, "a@b.com")
        self.assertEqual(subscription.type, "weekly")
        self.assertEqual(self.db.pending, {})
        self.assertEqual(self.mailer.sent[-1].category, "welcome")
        self.assertIn(subscription.user_id, self.mailer.sent[-1].text)

        with self.assertRaises(InvalidTokenError):
            self.service.verify(pending.key)
        self.assertEqual(len(self.db.subscriptions), 1)

    def test_expired_key_is_rejected(self):
        pending = self.service.subscribe("a@b.com", "weekly")
        self.clock.now += DAY
        with self.assertRaises(InvalidTokenError):
            self.service.verify(pending.key)
        self.assertEqual(self.db.subscriptions, {})

    def test_pending_and_confirmed_guards(self):
        pending = self.service.subscribe("a@b.com", "weekly")
        with self.assertRaises(ConflictError) as ctx:
            self.service.subscribe("a@b.com", "daily")
        self.assertIn("already registered", ctx.exception.message)

        self.service.verify(pending.key)
        with self.assertRaises(ConflictError) as ctx:
            self.service.subscribe("a@b.com", "weekly")
        self.assertIn("already subscribed", ctx.exception.message)

    def test_expired_pending_key_can_be_replaced(self):
        first = self.service.subscribe("a@b.com", "weekly")
        self.clock.now += DAY + 1
        second = self.service.subscribe("a@b.com", "weekly")
        self.assertNotEqual(first.key, second.key)
        self.assertEqual(list(self.db.pending), [second.key])

    def test_mail_failure_removes_key(self):
        self.mailer.fail = True
        with self.assertRaises(UpstreamError):
            self.service.subscribe("a@b.com", "weekly")
        self.assertEqual(self.db.pending, {})

        self.mailer.fail = False
        self.service.subscribe("a@b.com", "weekly")
        self.assertEqual(len(self.db.pending), 1)

    def test_welcome_mail_failure_keeps_subscription(self):
        pending = self.service.subscribe("a@b.com", "weekly")
        self.mailer.fail = True
        subscription = self.service.verify(pending.key)
        self.assertIn(subscription.user_id, self.db.subscriptions)

    def test_input_validation(self):
        with self.assertRaises(ValidationError):
            self.service.subscribe("", "weekly")
        with self.assertRaises(ValidationError):
            self.service.subscribe("a@b.com", " ")
        with self.assertRaises(ValidationError):
            self.service.subscribe("not-an-email", "weekly")
        with self.assertRaises(InvalidTokenError):
            self.service.verify(None)
        with self.assertRaises(ValidationError):
            self.service.unsubscribe("")

    def test_unsubscribe(self):
        pending = self.service.subscribe("a@b.com", "weekly")
        subscription = self.service.verify(pending.key)
        self.service.unsubscribe(subscription.user_id)
        self.assertEqual(self.db.subscriptions, {})
        with self.assertRaises(NotFoundError):
            self.service.unsubscribe(subscription.user_id)

        # Re-subscribing after unsubscribe starts over.
        again = self.service.subscribe("a@b.com", "weekly")
        self.assertIn(again.key, self.db.pending)

    def test_purge_expired(self):
        self.service.subscribe("a@b.com", "weekly")
        self.clock.now += 60
        self.service.subscribe("c@d.com", "daily")
        self.assertEqual(self.service.purge_expired(), 0)
        self.clock.now += DAY - 30
        self.assertEqual(self.service.purge_expired(), 1)
        self.assertEqual([p.email for p in self.db.pending.values()], ["c@d.com"])


if __name__ == "__main__":
    unittest.main()
