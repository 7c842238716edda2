import unittest

from crowbackend.db import PendingVerification, PostgresDbClient
from crowbackend.errors import ConflictError

NOW = 1_700_000_000.0


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")

    def _pending(self, key="k1", email="a@b.com", created_at=NOW, ttl=3600):
        return PendingVerification(
            key=key,
            email=email,
            type="weekly",
            expires_at=created_at + ttl,
            created_at=created_at,
        )

    def test_create_and_get_crow(self):
        crow = self.db.create_crow("http://x/1.png", "Oscar", "#")
        self.assertEqual(crow.crow_id, "crow_1")
        self.assertEqual(self.db.create_crow("http://x/2.png").crow_id, "crow_2")
        fetched = self.db.get_crow("crow_1")
        self.assertEqual(fetched.img_url, "http://x/1.png")
        self.assertEqual(fetched.credit_name, "Oscar")
        self.assertEqual(fetched.rating_count, 0)
        self.assertEqual(fetched.avg_rating, 0.0)
        self.assertIsNone(self.db.get_crow("crow_3"))
        self.assertEqual(self.db.count_crows(), 2)

    def test_apply_rating_updates_mean_and_count(self):
        self.db.create_crow("http://x/1.png")
        self.db.apply_rating("crow_1", 4)
        updated = self.db.apply_rating("crow_1", 2)
        self.assertEqual(updated.rating_count, 2)
        self.assertAlmostEqual(updated.avg_rating, 3.0)
        updated = self.db.apply_rating("crow_1", 5)
        self.assertAlmostEqual(updated.avg_rating, 11 / 3)
        self.assertIsNone(self.db.apply_rating("crow_9", 5))

    def test_list_crows_ordering_and_limit(self):
        for _ in range(4):
            self.db.create_crow("http://x.png")
        self.db.apply_rating("crow_1", 3)
        self.db.apply_rating("crow_2", 5)
        self.db.apply_rating("crow_3", 3)
        self.db.apply_rating("crow_3", 3)
        ordered = [c.crow_id for c in self.db.list_crows()]
        self.assertEqual(ordered, ["crow_2", "crow_3", "crow_1", "crow_4"])
        self.assertEqual(
            [c.crow_id for c in self.db.list_crows(limit=2)], ["crow_2", "crow_3"]
        )

    def test_random_crow(self):
        self.assertIsNone(self.db.random_crow())
        self.db.create_crow("http://x.png")
        self.assertEqual(self.db.random_crow().crow_id, "crow_1")

    def test_names_and_votes(self):
        self.db.create_crow("http://x.png")
        first = self.db.create_name("crow_1", "Edgar")
        second = self.db.create_name("crow_1", "Poe")
        self.assertNotEqual(first.name_id, second.name_id)
        self.assertTrue(second.name_id.startswith("name_"))

        self.db.vote_name("crow_1", second.name_id, upvote=True)
        voted = self.db.vote_name("crow_1", second.name_id, upvote=False)
        self.assertEqual((voted.upvotes, voted.downvotes), (1, 1))
        self.assertIsNone(self.db.vote_name("crow_2", second.name_id, upvote=True))

        names = self.db.list_names("crow_1")
        self.assertEqual([n.name for n in names], ["Poe", "Edgar"])
        self.assertEqual(self.db.list_names("crow_2"), [])

    def test_pending_key_is_unique_per_email(self):
        self.db.create_pending(self._pending())
        with self.assertRaises(ConflictError):
            self.db.create_pending(self._pending(key="k2"))
        # Once expired, the address can request a new key.
        self.db.create_pending(self._pending(key="k3", created_at=NOW + 3600))

    def test_promote_pending_once(self):
        self.db.create_pending(self._pending())
        subscription = self.db.promote_pending("k1", NOW + 10)
        self.assertEqual(subscription.email, "a@b.com")
        self.assertIsNone(self.db.promote_pending("k1", NOW + 20))
        self.assertEqual(
            self.db.get_subscription_by_email("a@b.com").user_id,
            subscription.user_id,
        )

    def test_promote_expired_key_fails(self):
        self.db.create_pending(self._pending())
        self.assertIsNone(self.db.promote_pending("k1", NOW + 3600))
        self.assertIsNone(self.db.get_subscription_by_email("a@b.com"))

    def test_promote_for_existing_subscription_is_idempotent(self):
        existing = self.db.create_subscription("a@b.com", "weekly")
        self.db.create_pending(self._pending())
        promoted = self.db.promote_pending("k1", NOW + 1)
        self.assertEqual(promoted.user_id, existing.user_id)

    def test_purge_and_delete_pending(self):
        self.db.create_pending(self._pending(key="old", email="old@b.com", ttl=10))
        self.db.create_pending(self._pending(key="new", email="new@b.com"))
        self.assertEqual(self.db.purge_expired(NOW + 60), 1)
        self.db.delete_pending("new")
        self.assertIsNone(self.db.promote_pending("new", NOW + 61))

    def test_subscriptions(self):
        record = self.db.create_subscription("a@b.com", "weekly")
        with self.assertRaises(ConflictError):
            self.db.create_subscription("a@b.com", "daily")
        self.assertTrue(self.db.delete_subscription(record.user_id))
        self.assertFalse(self.db.delete_subscription(record.user_id))
        self.assertIsNone(self.db.get_subscription_by_email("a@b.com"))


if __name__ == "__main__":
    unittest.main()
