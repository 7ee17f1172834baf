import threading
import unittest
from datetime import date
from decimal import Decimal

from finance_insights.db import create_db_engine, init_db
from finance_insights.events import (
    BILLS_CHANGED,
    RECURRING_INCOME_CHANGED,
    TRANSACTIONS_CHANGED,
    EventBus,
    RevisionTracker,
)
from finance_insights.models import RecurringIncome
from finance_insights.repositories import RecurringIncomeRepository


class EventBusTests(unittest.TestCase):
    def test_publish_reaches_subscribers_until_unsubscribed(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(BILLS_CHANGED, received.append)

        delivered = bus.publish(BILLS_CHANGED, {"id": "bill-1"})
        bus.unsubscribe(BILLS_CHANGED, received.append)
        after = bus.publish(BILLS_CHANGED)

        self.assertEqual(delivered, 1)
        self.assertEqual(after, 0)
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].payload, {"id": "bill-1"})

    def test_revision_tracker_reports_dirty_topics(self) -> None:
        bus = EventBus()
        tracker = RevisionTracker(bus)
        known = dict(tracker.revisions)

        bus.publish(TRANSACTIONS_CHANGED)

        self.assertEqual(tracker.changed_since(known), [TRANSACTIONS_CHANGED])
        self.assertEqual(tracker.changed_since(dict(tracker.revisions)), [])

    def test_concurrent_publishes_are_all_counted(self) -> None:
        bus = EventBus()
        tracker = RevisionTracker(bus)

        def publish_many() -> None:
            for _ in range(500):
                bus.publish(BILLS_CHANGED)

        workers = [threading.Thread(target=publish_many) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        self.assertEqual(tracker.snapshot()[BILLS_CHANGED], 2000)

    def test_repository_writes_publish_changes(self) -> None:
        engine = create_db_engine("sqlite://")
        init_db(engine)
        bus = EventBus()
        tracker = RevisionTracker(bus)
        repo = RecurringIncomeRepository(engine, bus)

        created = repo.create(
            RecurringIncome(
                title="Salary",
                amount=Decimal("10"),
                currency="ETB",
                category_id="cat_salary",
                start_date=date(2024, 1, 1),
            )
        )
        repo.set_active(created.id, False)

        self.assertEqual(tracker.revisions[RECURRING_INCOME_CHANGED], 2)


if __name__ == "__main__":
    unittest.main()
