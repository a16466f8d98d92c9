import os
from datetime import date, datetime, timezone
from decimal import Decimal

import structlog
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from budget_planner import storage
from budget_planner.ledger import (
    Transaction,
    compute_ledger,
    default_window,
    has_ledger_data,
    round_currency,
)
from budget_planner.logging_config import configure_logging
from budget_planner.occurrences import DEFAULT_FREQUENCY, frequency_label

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = structlog.get_logger(__name__)

app = FastAPI(title="Budget Planner")

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./budget_planner.db")
engine_kwargs = {}
if database_url.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(database_url, **engine_kwargs)

max_ledger_days = int(os.getenv("LEDGER_MAX_DAYS", "3660"))


@app.on_event("startup")
def init_db() -> None:
    storage.metadata.create_all(engine)
    logger.info("database_ready", url=engine.url.render_as_string(hide_password=True))


class TransactionType:
    values = {"income", "expense"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Transaction type must be income or expense.")
        return normalized


class AccountCreatePayload(BaseModel):
    name: str | None = None


class AccountUpdatePayload(BaseModel):
    name: str | None = None
    starting_balance: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "AccountUpdatePayload") -> "AccountUpdatePayload":
        payload.name = payload.name.strip() if payload.name else None
        if payload.name == "":
            payload.name = None
        if payload.starting_balance is not None:
            if not payload.starting_balance.is_finite():
                raise ValueError("starting_balance must be a number.")
            payload.starting_balance = round_currency(payload.starting_balance)
        if payload.name is None and payload.starting_balance is None:
            raise ValueError("No valid fields to update.")
        return payload


class TransactionPayload(BaseModel):
    type: str = "income"
    name: str
    amount: Decimal
    start_date: str
    frequency: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("name is required.")
        if not payload.amount.is_finite():
            raise ValueError("amount must be a number.")
        if payload.amount < 0:
            raise ValueError("amount must not be negative.")
        payload.amount = round_currency(payload.amount)
        payload.start_date = payload.start_date.strip()
        if not payload.start_date:
            raise ValueError("start_date is required.")
        frequency = payload.frequency.strip() if payload.frequency else ""
        payload.frequency = frequency or DEFAULT_FREQUENCY
        return payload


class TransactionResponse(BaseModel):
    id: str
    type: str
    name: str
    amount: Decimal
    start_date: str
    frequency: str
    frequency_label: str


class AccountResponse(BaseModel):
    id: str
    name: str
    starting_balance: Decimal
    position: int
    transactions: list[TransactionResponse]


class ExpenseLineResponse(BaseModel):
    name: str
    amount: Decimal


class LedgerEntryResponse(BaseModel):
    date: date
    starting_balance: Decimal
    total_income: Decimal
    ending_balance: Decimal
    expenses: list[ExpenseLineResponse]


class LedgerResponse(BaseModel):
    account_id: str
    start_date: date
    end_date: date
    has_data: bool
    entries: list[LedgerEntryResponse]


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        type=txn.type,
        name=txn.name,
        amount=txn.amount,
        start_date=str(txn.start_date),
        frequency=txn.frequency,
        frequency_label=frequency_label(txn.frequency),
    )


def account_response(account: storage.AccountRecord) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        name=account.name,
        starting_balance=account.starting_balance,
        position=account.position,
        transactions=[transaction_response(txn) for txn in account.transactions],
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/accounts", response_model=list[AccountResponse])
def list_accounts() -> list[AccountResponse]:
    with engine.begin() as conn:
        records = storage.list_accounts(conn)
    return [account_response(record) for record in records]


@app.post("/api/accounts", response_model=AccountResponse, status_code=201)
def create_account(payload: AccountCreatePayload) -> AccountResponse:
    with engine.begin() as conn:
        record = storage.create_account(conn, payload.name)
    logger.info("account_created", account_id=record.id, position=record.position)
    return account_response(record)


@app.get("/api/accounts/{account_id}", response_model=AccountResponse)
def get_account(account_id: str) -> AccountResponse:
    with engine.begin() as conn:
        record = storage.get_account(conn, account_id)
    if not record:
        raise HTTPException(status_code=404, detail="Account not found.")
    return account_response(record)


@app.put("/api/accounts/{account_id}", response_model=AccountResponse)
def update_account(account_id: str, payload: AccountUpdatePayload) -> AccountResponse:
    try:
        payload = AccountUpdatePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        record = storage.update_account(
            conn,
            account_id,
            name=payload.name,
            starting_balance=payload.starting_balance,
        )
    if not record:
        raise HTTPException(status_code=404, detail="Account not found.")
    return account_response(record)


@app.delete("/api/accounts/{account_id}")
def delete_account(account_id: str) -> dict:
    with engine.begin() as conn:
        if not storage.delete_account(conn, account_id):
            raise HTTPException(status_code=404, detail="Account not found.")
    logger.info("account_deleted", account_id=account_id)
    return {"status": "deleted"}


@app.post(
    "/api/accounts/{account_id}/transactions",
    response_model=TransactionResponse,
    status_code=201,
)
def create_transaction(account_id: str, payload: TransactionPayload) -> TransactionResponse:
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        if not storage.get_account(conn, account_id):
            raise HTTPException(status_code=404, detail="Account not found.")
        txn = storage.create_transaction(
            conn,
            account_id,
            type=payload.type,
            name=payload.name,
            amount=payload.amount,
            start_date=payload.start_date,
            frequency=payload.frequency,
        )
    logger.info(
        "transaction_created",
        account_id=account_id,
        transaction_id=txn.id,
        frequency=txn.frequency,
    )
    return transaction_response(txn)


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(transaction_id: str) -> dict:
    with engine.begin() as conn:
        if not storage.delete_transaction(conn, transaction_id):
            raise HTTPException(status_code=404, detail="Transaction not found.")
    logger.info("transaction_deleted", transaction_id=transaction_id)
    return {"status": "deleted"}


@app.get("/api/accounts/{account_id}/ledger", response_model=LedgerResponse)
def account_ledger(
    account_id: str,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
) -> LedgerResponse:
    default_start, default_end = default_window(utc_today())
    start_date = start_date or default_start
    end_date = end_date or default_end
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")
    if (end_date - start_date).days + 1 > max_ledger_days:
        raise HTTPException(
            status_code=400,
            detail=f"Ledger window must not exceed {max_ledger_days} days.",
        )

    with engine.begin() as conn:
        record = storage.get_account(conn, account_id)
    if not record:
        raise HTTPException(status_code=404, detail="Account not found.")

    entries = compute_ledger(start_date, end_date, record.starting_balance, record.transactions)

    logger.debug(
        "ledger_computed",
        account_id=account_id,
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
        days=len(entries),
    )
    return LedgerResponse(
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        has_data=has_ledger_data(record.starting_balance, record.transactions),
        entries=[
            LedgerEntryResponse(
                date=entry.date,
                starting_balance=entry.starting_balance,
                total_income=entry.total_income,
                ending_balance=entry.ending_balance,
                expenses=[
                    ExpenseLineResponse(name=line.name, amount=line.amount)
                    for line in entry.expenses
                ],
            )
            for entry in entries
        ],
    )
