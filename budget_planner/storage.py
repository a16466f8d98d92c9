"""Relational store for accounts and their transactions.

Functions take an open SQLAlchemy ``Connection`` so callers decide the
transaction boundary (the API opens one ``engine.begin()`` per request).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection

from budget_planner.ledger import ZERO, Transaction, round_currency

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("starting_balance", Numeric(12, 2), nullable=False, server_default="0"),
    Column("position", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("start_date", String(10), nullable=False),
    Column("frequency", String(20), nullable=False, server_default="single"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@dataclass(frozen=True)
class AccountRecord:
    id: str
    name: str
    starting_balance: Decimal
    position: int
    transactions: List[Transaction] = field(default_factory=list)


def list_accounts(conn: Connection) -> List[AccountRecord]:
    rows = conn.execute(select(accounts).order_by(accounts.c.position)).mappings().all()
    by_account = _transactions_by_account(conn, [row["id"] for row in rows])
    return [_account_from_row(row, by_account.get(row["id"], [])) for row in rows]


def get_account(conn: Connection, account_id: str) -> Optional[AccountRecord]:
    row = conn.execute(select(accounts).where(accounts.c.id == account_id)).mappings().first()
    if not row:
        return None
    return _account_from_row(row, list_transactions(conn, account_id))


def create_account(conn: Connection, name: str | None = None) -> AccountRecord:
    position = conn.execute(select(func.count()).select_from(accounts)).scalar_one()
    cleaned = (name or "").strip()
    account_id = str(uuid.uuid4())
    values = {
        "id": account_id,
        "name": cleaned or f"Account {position + 1}",
        "starting_balance": ZERO,
        "position": position,
    }
    conn.execute(insert(accounts).values(**values))
    return AccountRecord(
        id=account_id,
        name=values["name"],
        starting_balance=ZERO,
        position=position,
    )


def update_account(
    conn: Connection,
    account_id: str,
    *,
    name: str | None = None,
    starting_balance: Decimal | None = None,
) -> Optional[AccountRecord]:
    updates: Dict[str, object] = {}
    if name is not None:
        updates["name"] = name
    if starting_balance is not None:
        updates["starting_balance"] = round_currency(starting_balance)
    if not updates:
        raise ValueError("No valid fields to update.")

    result = conn.execute(update(accounts).where(accounts.c.id == account_id).values(**updates))
    if result.rowcount == 0:
        return None
    return get_account(conn, account_id)


def delete_account(conn: Connection, account_id: str) -> bool:
    conn.execute(transactions.delete().where(transactions.c.account_id == account_id))
    result = conn.execute(accounts.delete().where(accounts.c.id == account_id))
    if result.rowcount == 0:
        return False
    _compact_positions(conn)
    return True


def list_transactions(conn: Connection, account_id: str) -> List[Transaction]:
    rows = conn.execute(
        select(transactions).where(transactions.c.account_id == account_id)
    ).mappings().all()
    return _sorted_transactions(_transaction_from_row(row) for row in rows)


def create_transaction(
    conn: Connection,
    account_id: str,
    *,
    type: str,
    name: str,
    amount: Decimal,
    start_date: str,
    frequency: str,
) -> Transaction:
    txn = Transaction(
        id=str(uuid.uuid4()),
        type=type,
        name=name,
        amount=round_currency(amount),
        start_date=start_date,
        frequency=frequency,
    )
    conn.execute(
        insert(transactions).values(
            id=txn.id,
            account_id=account_id,
            type=txn.type,
            name=txn.name,
            amount=txn.amount,
            start_date=txn.start_date,
            frequency=txn.frequency,
        )
    )
    return txn


def delete_transaction(conn: Connection, transaction_id: str) -> bool:
    result = conn.execute(transactions.delete().where(transactions.c.id == transaction_id))
    return result.rowcount > 0


def _transactions_by_account(
    conn: Connection, account_ids: List[str]
) -> Dict[str, List[Transaction]]:
    if not account_ids:
        return {}
    rows = conn.execute(
        select(transactions).where(transactions.c.account_id.in_(account_ids))
    ).mappings().all()
    grouped: Dict[str, List[Transaction]] = {}
    for row in rows:
        grouped.setdefault(row["account_id"], []).append(_transaction_from_row(row))
    return {key: _sorted_transactions(value) for key, value in grouped.items()}


def _compact_positions(conn: Connection) -> None:
    rows = conn.execute(
        select(accounts.c.id, accounts.c.position).order_by(accounts.c.position)
    ).mappings().all()
    for index, row in enumerate(rows):
        if row["position"] != index:
            conn.execute(update(accounts).where(accounts.c.id == row["id"]).values(position=index))


def _sorted_transactions(items) -> List[Transaction]:
    return sorted(items, key=lambda txn: (str(txn.start_date), txn.name, txn.id or ""))


def _account_from_row(row, account_transactions: List[Transaction]) -> AccountRecord:
    return AccountRecord(
        id=row["id"],
        name=row["name"],
        starting_balance=round_currency(row["starting_balance"] or ZERO),
        position=row["position"],
        transactions=account_transactions,
    )


def _transaction_from_row(row) -> Transaction:
    return Transaction(
        id=row["id"],
        type=row["type"],
        name=row["name"],
        amount=round_currency(row["amount"]),
        start_date=row["start_date"],
        frequency=row["frequency"],
    )
