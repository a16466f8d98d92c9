import unittest
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from budget_planner import storage


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    storage.metadata.create_all(engine)
    return engine


class AccountStorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_create_names_blank_accounts_by_position(self) -> None:
        with self.engine.begin() as conn:
            first = storage.create_account(conn, "Checking")
            second = storage.create_account(conn, "   ")
            third = storage.create_account(conn)

        self.assertEqual((first.name, first.position), ("Checking", 0))
        self.assertEqual((second.name, second.position), ("Account 2", 1))
        self.assertEqual((third.name, third.position), ("Account 3", 2))
        self.assertEqual(first.starting_balance, Decimal("0.00"))

    def test_update_rounds_starting_balance(self) -> None:
        with self.engine.begin() as conn:
            account = storage.create_account(conn, "Checking")
            updated = storage.update_account(
                conn, account.id, starting_balance=Decimal("1234.567")
            )

        self.assertEqual(updated.starting_balance, Decimal("1234.57"))
        self.assertEqual(updated.name, "Checking")

    def test_update_requires_a_field_and_reports_missing_account(self) -> None:
        with self.engine.begin() as conn:
            account = storage.create_account(conn, "Checking")
            with self.assertRaises(ValueError):
                storage.update_account(conn, account.id)
            self.assertIsNone(storage.update_account(conn, "missing", name="Savings"))

    def test_delete_removes_transactions_and_compacts_positions(self) -> None:
        with self.engine.begin() as conn:
            first = storage.create_account(conn, "First")
            second = storage.create_account(conn, "Second")
            third = storage.create_account(conn, "Third")
            storage.create_transaction(
                conn,
                second.id,
                type="expense",
                name="Rent",
                amount=Decimal("1500"),
                start_date="2024-01-01",
                frequency="monthly",
            )

        with self.engine.begin() as conn:
            self.assertTrue(storage.delete_account(conn, second.id))
            self.assertFalse(storage.delete_account(conn, second.id))
            remaining = storage.list_accounts(conn)
            orphaned = storage.list_transactions(conn, second.id)

        self.assertEqual([(acct.id, acct.position) for acct in remaining], [(first.id, 0), (third.id, 1)])
        self.assertEqual(orphaned, [])


class TransactionStorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        with self.engine.begin() as conn:
            self.account = storage.create_account(conn, "Checking")

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_transactions_listed_by_start_date_then_name(self) -> None:
        with self.engine.begin() as conn:
            for name, start_date in (("Rent", "2024-02-01"), ("Gym", "2024-01-15"), ("Cable", "2024-02-01")):
                storage.create_transaction(
                    conn,
                    self.account.id,
                    type="expense",
                    name=name,
                    amount=Decimal("10"),
                    start_date=start_date,
                    frequency="monthly",
                )
            account = storage.get_account(conn, self.account.id)

        self.assertEqual([txn.name for txn in account.transactions], ["Gym", "Cable", "Rent"])
        self.assertTrue(all(txn.amount == Decimal("10.00") for txn in account.transactions))

    def test_delete_transaction(self) -> None:
        with self.engine.begin() as conn:
            txn = storage.create_transaction(
                conn,
                self.account.id,
                type="income",
                name="Salary",
                amount=Decimal("2000.004"),
                start_date="2024-01-01",
                frequency="monthly",
            )
            self.assertEqual(txn.amount, Decimal("2000.00"))
            self.assertTrue(storage.delete_transaction(conn, txn.id))
            self.assertFalse(storage.delete_transaction(conn, txn.id))
            self.assertEqual(storage.list_transactions(conn, self.account.id), [])


if __name__ == "__main__":
    unittest.main()
