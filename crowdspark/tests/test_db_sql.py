import os
import tempfile
import threading
import unittest

from crowdspark.db import DuplicateRecordError, SqlDbClient
from crowdspark.types import Role, TransactionStatus


class SqlDbClientTests(unittest.TestCase):
    """
    Runs the SQLAlchemy store against in-memory SQLite.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")
        self.owner = self.db.create_user(
            username="olivia",
            email="olivia@example.com",
            password_hash="hash",
            role=Role.CAMPAIGN_OWNER,
        )
        self.backer = self.db.create_user(
            username="ben", email="ben@example.com", password_hash="hash", role=Role.BACKER
        )

    def create_campaign(self, title="Solar Lamps", owner_id=None):
        return self.db.create_campaign(
            owner_id=owner_id or self.owner.user_id,
            title=title,
            description="Lamps for rural schools",
            goal_amount=1000,
            deadline=4102444800.0,
            image="lamp.png",
            category="Education",
        )

    def test_user_roundtrip(self):
        fetched = self.db.get_user(self.backer.user_id)
        self.assertEqual(fetched.username, "ben")
        self.assertEqual(fetched.role, Role.BACKER)
        self.assertEqual(fetched.backed_campaigns, [])
        by_email = self.db.get_user_by_email("olivia@example.com")
        self.assertEqual(by_email.user_id, self.owner.user_id)
        self.assertIsNone(self.db.get_user_by_email("nobody@example.com"))

    def test_email_is_unique(self):
        with self.assertRaises(DuplicateRecordError) as ctx:
            self.db.create_user(
                username="other",
                email="ben@example.com",
                password_hash="hash",
                role=Role.BACKER,
            )
        self.assertEqual(ctx.exception.field_name, "email")
        self.assertEqual(len(self.db.list_users()), 2)

    def test_campaign_title_unique_per_owner(self):
        self.create_campaign()
        with self.assertRaises(DuplicateRecordError):
            self.create_campaign()

        other = self.db.create_user(
            username="oscar",
            email="oscar@example.com",
            password_hash="hash",
            role=Role.CAMPAIGN_OWNER,
        )
        self.create_campaign(owner_id=other.user_id)
        self.assertEqual(len(self.db.list_campaigns()), 2)
        self.assertEqual(len(self.db.list_campaigns(owner_id=other.user_id)), 1)

    def test_record_contribution_updates_aggregates(self):
        campaign = self.create_campaign()
        first = self.db.record_contribution(
            campaign.campaign_id,
            user_id=self.backer.user_id,
            amount=100,
            provider="ben",
            message="Good luck",
        )
        second = self.db.record_contribution(
            campaign.campaign_id, user_id=self.backer.user_id, amount=50, provider="ben"
        )
        self.assertIsNotNone(first)
        updated, transaction = second
        self.assertEqual(updated.raised_amount, 150)
        self.assertEqual(updated.supporters, [self.backer.user_id])
        self.assertEqual(transaction.status, TransactionStatus.COMPLETED)
        self.assertNotEqual(first[1].payment_id, transaction.payment_id)

        stored = self.db.get_campaign(campaign.campaign_id)
        self.assertEqual(stored.raised_amount, 150)
        self.assertEqual(stored.supporters, [self.backer.user_id])
        backer = self.db.get_user(self.backer.user_id)
        self.assertEqual(backer.backed_campaigns, [campaign.campaign_id])

        fetched = self.db.get_transaction(first[1].transaction_id)
        self.assertEqual(fetched.message, "Good luck")
        self.assertEqual(fetched.amount, 100)

    def test_contribution_to_missing_campaign_writes_nothing(self):
        result = self.db.record_contribution(
            "0" * 32, user_id=self.backer.user_id, amount=10, provider="ben"
        )
        self.assertIsNone(result)
        self.assertEqual(self.db.list_transactions(), [])
        self.assertEqual(self.db.get_user(self.backer.user_id).backed_campaigns, [])

    def test_list_transactions_filters(self):
        lamps = self.create_campaign()
        water = self.create_campaign(title="Clean Water")
        self.db.record_contribution(
            lamps.campaign_id, user_id=self.backer.user_id, amount=10, provider="ben"
        )
        self.db.record_contribution(
            water.campaign_id, user_id=self.backer.user_id, amount=20, provider="ben"
        )
        self.db.record_contribution(
            water.campaign_id, user_id=self.owner.user_id, amount=30, provider="olivia"
        )

        self.assertEqual(len(self.db.list_transactions()), 3)
        by_campaign = self.db.list_transactions(campaign_id=water.campaign_id)
        self.assertEqual(sorted(t.amount for t in by_campaign), [20, 30])
        by_user = self.db.list_transactions(
            user_id=self.backer.user_id, status=TransactionStatus.COMPLETED
        )
        self.assertEqual(sorted(t.amount for t in by_user), [10, 20])

        campaigns = self.db.get_campaigns([lamps.campaign_id, water.campaign_id])
        self.assertEqual(campaigns[water.campaign_id].raised_amount, 50)
        self.assertEqual(
            sorted(campaigns[water.campaign_id].supporters),
            sorted([self.backer.user_id, self.owner.user_id]),
        )

    def test_deleting_campaign_keeps_transactions(self):
        campaign = self.create_campaign()
        self.db.record_contribution(
            campaign.campaign_id, user_id=self.backer.user_id, amount=10, provider="ben"
        )
        self.assertTrue(self.db.delete_campaign(campaign.campaign_id))
        self.assertFalse(self.db.delete_campaign(campaign.campaign_id))
        self.assertIsNone(self.db.get_campaign(campaign.campaign_id))
        self.assertEqual(
            len(self.db.list_transactions(campaign_id=campaign.campaign_id)), 1
        )

    def test_deleting_user(self):
        self.assertTrue(self.db.delete_user(self.backer.user_id))
        self.assertFalse(self.db.delete_user(self.backer.user_id))
        self.assertEqual(
            self.db.get_usernames([self.backer.user_id, self.owner.user_id]),
            {self.owner.user_id: "olivia"},
        )


class SqlDbClientConcurrencyTests(unittest.TestCase):
    """
    Concurrent contributions against a file-backed SQLite database, where each
    thread gets its own connection.
    """

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, "crowdspark.db")
        self.db = SqlDbClient(f"sqlite+pysqlite:///{path}")
        owner = self.db.create_user(
            username="olivia",
            email="olivia@example.com",
            password_hash="hash",
            role=Role.CAMPAIGN_OWNER,
        )
        self.campaign = self.db.create_campaign(
            owner_id=owner.user_id,
            title="Solar Lamps",
            description="Lamps for rural schools",
            goal_amount=1000,
            deadline=4102444800.0,
            image="lamp.png",
        )
        self.backers = [
            self.db.create_user(
                username=f"backer{i}",
                email=f"backer{i}@example.com",
                password_hash="hash",
                role=Role.BACKER,
            )
            for i in range(4)
        ]

    def tearDown(self):
        self.db.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_contributions_lose_no_increment(self):
        per_thread = 10
        barrier = threading.Barrier(len(self.backers))
        errors = []

        def contribute(backer):
            barrier.wait()
            try:
                for _ in range(per_thread):
                    self.db.record_contribution(
                        self.campaign.campaign_id,
                        user_id=backer.user_id,
                        amount=10,
                        provider=backer.username,
                    )
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=contribute, args=(backer,))
            for backer in self.backers
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        total = len(self.backers) * per_thread
        campaign = self.db.get_campaign(self.campaign.campaign_id)
        self.assertEqual(campaign.raised_amount, total * 10)
        self.assertEqual(
            sorted(campaign.supporters), sorted(b.user_id for b in self.backers)
        )
        self.assertEqual(
            len(self.db.list_transactions(campaign_id=self.campaign.campaign_id)),
            total,
        )


if __name__ == "__main__":
    unittest.main()
