import logging
import re
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from decimal import Decimal

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from finance_insights.aggregation import daily_totals, filter_incomes_for_range, filter_transactions
from finance_insights.config import (
    DATABASE_URL,
    DEFAULT_ACCOUNT_NAME,
    FRONTEND_ORIGIN,
    LOG_LEVEL,
    SYSTEM_DEFAULT_CURRENCY,
    normalize_currency,
)
from finance_insights.controllers import BillNotificationsController, due_status_label, sort_bills
from finance_insights.date_ranges import (
    RangeView,
    previous_range,
    range_for,
    range_label,
    shift_anchor,
)
from finance_insights.db import create_db_engine, init_db
from finance_insights.events import TOPICS, EventBus, RevisionTracker
from finance_insights.income import (
    IncomeValidationError,
    quick_add_expense,
    quick_add_income,
    recurring_summary,
)
from finance_insights.models import (
    BILL_TYPES,
    TRANSACTION_TYPES,
    Account,
    Bill,
    BillNotificationProfile,
    RecurringIncome,
    Transaction,
    TransactionCategory,
)
from finance_insights.notification_profiles import (
    CHANNEL_OPTIONS,
    DAYS_BEFORE_OPTIONS,
    PROFILE_FIELDS,
    SOUND_OPTIONS,
    TEMPLATE_OPTIONS,
    TYPE_OPTIONS,
    BillNotificationProfileService,
    is_default_profile,
)
from finance_insights.recurring_income import (
    frequency_label,
    monthly_equivalent,
    next_occurrence_after,
    occurrences_between,
    validate_frequency,
)
from finance_insights.reports import build_expense_report, build_income_report
from finance_insights.repositories import (
    AccountRepository,
    CategoryRepository,
    RecurringIncomeRepository,
    TransactionRepository,
)
from finance_insights.scheduler import NotificationScheduler
from finance_insights.security import SecurityLockedOut, SecurityService
from finance_insights.sync import SyncFailed

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class Services:
    engine: Engine
    bus: EventBus
    revisions: RevisionTracker
    transactions: TransactionRepository
    categories: CategoryRepository
    incomes: RecurringIncomeRepository
    accounts: AccountRepository
    profiles: BillNotificationProfileService
    scheduler: NotificationScheduler
    security: SecurityService
    bill_notifications: BillNotificationsController


def ensure_default_account(repository: AccountRepository) -> None:
    if repository.list_accounts():
        return
    repository.create_account(
        Account(
            name=DEFAULT_ACCOUNT_NAME,
            balance=Decimal("0"),
            currency=SYSTEM_DEFAULT_CURRENCY,
            is_default=True,
        )
    )
    logger.info("Created default account %s", DEFAULT_ACCOUNT_NAME)


def build_services(engine: Engine) -> Services:
    init_db(engine)
    bus = EventBus()
    revisions = RevisionTracker(bus)
    transaction_repo = TransactionRepository(engine, bus)
    category_repo = CategoryRepository(engine, bus)
    income_repo = RecurringIncomeRepository(engine, bus)
    account_repo = AccountRepository(engine, bus)
    profile_service = BillNotificationProfileService(engine)
    scheduler = NotificationScheduler(engine, transaction_repo, profile_service, income_repo)

    category_repo.ensure_default_categories()
    ensure_default_account(account_repo)

    return Services(
        engine=engine,
        bus=bus,
        revisions=revisions,
        transactions=transaction_repo,
        categories=category_repo,
        incomes=income_repo,
        accounts=account_repo,
        profiles=profile_service,
        scheduler=scheduler,
        security=SecurityService(engine),
        bill_notifications=BillNotificationsController(transaction_repo, profile_service, scheduler),
    )


_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(create_db_engine(DATABASE_URL))
    return _services


@app.on_event("startup")
def startup() -> None:
    get_services()


@app.on_event("shutdown")
def shutdown() -> None:
    if _services is not None:
        _services.bill_notifications.close()


@contextmanager
def service_errors():
    try:
        yield
    except IncomeValidationError as exc:
        status_code = 409 if exc.code == "no_default_account" else 400
        raise HTTPException(
            status_code=status_code, detail={"code": exc.code, "message": str(exc)}
        ) from exc
    except SyncFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except SecurityLockedOut as exc:
        raise HTTPException(
            status_code=423,
            detail={
                "code": exc.code,
                "message": str(exc),
                "retry_after_seconds": exc.retry_after_seconds,
            },
        ) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Record already exists.") from exc
    except SQLAlchemyError as exc:
        logger.exception("Database operation failed")
        raise HTTPException(
            status_code=503,
            detail={"message": "Could not reach storage. Try again.", "retryable": True},
        ) from exc


def parse_view(value: str) -> str:
    try:
        return RangeView.validate(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def resolve_currency(value: str | None) -> str:
    if not value:
        return SYSTEM_DEFAULT_CURRENCY
    try:
        return normalize_currency(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def slugify_category(name: str) -> str:
    return "cat_" + re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")


class CategoryPayload(BaseModel):
    name: str
    type: str
    id: str | None = None
    color_value: int | None = None
    icon: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Category name required.")
        payload.type = payload.type.strip().lower()
        if payload.type not in TRANSACTION_TYPES:
            raise ValueError("Invalid category type.")
        payload.id = payload.id.strip() if payload.id else slugify_category(payload.name)
        if payload.id == "cat_":
            raise ValueError("Category name must contain letters or digits.")
        return payload


class CategoryResponse(BaseModel):
    id: str
    name: str
    type: str
    color_value: int
    icon: str | None = None
    is_system: bool
    sort_order: int
    created_at: datetime | None = None


class TransactionPayload(BaseModel):
    title: str
    amount: Decimal
    type: str
    transaction_date: datetime | None = None
    currency: str | None = None
    category_id: str | None = None
    account_id: str | None = None
    bill_id: str | None = None
    is_cleared: bool = True
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.title = payload.title.strip()
        if not payload.title:
            raise ValueError("Title required.")
        payload.type = payload.type.strip().lower()
        if payload.type not in TRANSACTION_TYPES:
            raise ValueError("Invalid transaction type.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.currency = normalize_currency(payload.currency) if payload.currency else None
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class TransactionResponse(BaseModel):
    id: str
    title: str
    amount: Decimal
    type: str
    transaction_date: datetime
    currency: str | None = None
    category_id: str | None = None
    account_id: str | None = None
    bill_id: str | None = None
    is_cleared: bool
    is_balance_adjustment: bool
    notes: str | None = None


class AccountPayload(BaseModel):
    name: str
    balance: Decimal = Decimal("0")
    currency: str | None = None
    is_default: bool = False

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Account name required.")
        payload.currency = (
            normalize_currency(payload.currency) if payload.currency else SYSTEM_DEFAULT_CURRENCY
        )
        return payload


class AccountResponse(BaseModel):
    id: str
    name: str
    balance: Decimal
    currency: str
    is_default: bool


class RecurringIncomePayload(BaseModel):
    title: str
    amount: Decimal
    category_id: str
    start_date: date
    frequency: str = "monthly"
    currency: str | None = None
    end_date: date | None = None
    account_id: str | None = None
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "RecurringIncomePayload") -> "RecurringIncomePayload":
        payload.title = payload.title.strip()
        if not payload.title:
            raise ValueError("Title required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.category_id = payload.category_id.strip()
        if not payload.category_id:
            raise ValueError("Category required.")
        payload.frequency = validate_frequency(payload.frequency)
        payload.currency = (
            normalize_currency(payload.currency) if payload.currency else SYSTEM_DEFAULT_CURRENCY
        )
        if payload.end_date is not None and payload.end_date < payload.start_date:
            raise ValueError("End date must be on or after the start date.")
        payload.notes = payload.notes.strip() if payload.notes else None
        return payload


class RecurringIncomeResponse(BaseModel):
    id: str
    title: str
    amount: Decimal
    currency: str
    category_id: str
    frequency: str
    frequency_label: str
    monthly_equivalent: Decimal
    start_date: date
    end_date: date | None = None
    is_active: bool
    account_id: str | None = None
    notes: str | None = None
    next_occurrence: date | None = None


class ActivePayload(BaseModel):
    is_active: bool


class BillPayload(BaseModel):
    name: str
    amount: Decimal
    currency: str | None = None
    type: str = "bill"
    next_due_date: date | None = None
    reminder_enabled: bool = True
    reminder_days_before: int = 3
    category_id: str | None = None

    @classmethod
    def validate_payload(cls, payload: "BillPayload") -> "BillPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Bill name required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.type = payload.type.strip().lower()
        if payload.type not in BILL_TYPES:
            raise ValueError("Invalid bill type.")
        if payload.reminder_days_before < 0:
            raise ValueError("Reminder days cannot be negative.")
        payload.currency = (
            normalize_currency(payload.currency) if payload.currency else SYSTEM_DEFAULT_CURRENCY
        )
        return payload


class BillResponse(BaseModel):
    id: str
    name: str
    amount: Decimal
    currency: str
    type: str
    next_due_date: date | None = None
    reminder_enabled: bool
    reminder_days_before: int
    is_active: bool
    category_id: str | None = None
    due_status: str


class ProfileResponse(BaseModel):
    bill_id: str
    template_key: str
    channel_key: str | None = None
    sound_key: str | None = None
    type_override: str | None = None
    reminder_days_before: int
    preferred_time: time | None = None
    is_default: bool


class BillNotificationRow(BaseModel):
    bill: BillResponse
    profile: ProfileResponse


class BillNotificationsResponse(BaseModel):
    bills: list[BillNotificationRow]
    options: dict


class ChoicePayload(BaseModel):
    value: str


class ReminderPayload(BaseModel):
    enabled: bool | None = None
    days_before: int | None = None


class SyncResponse(BaseModel):
    scheduled: int
    cancelled: int
    scheduled_by_section: dict[str, int]


class ScheduledNotificationResponse(BaseModel):
    logical_key: str
    section: str
    entity_id: str
    type_key: str
    title: str
    scheduled_at: datetime
    template_key: str | None = None
    channel_key: str | None = None
    sound_key: str | None = None


class QuickAddPayload(BaseModel):
    category_id: str | None = None
    amount: str | Decimal | None = None
    currency: str | None = None


class CredentialsPayload(BaseModel):
    current_passcode: str | None = None
    current_memorable_word: str | None = None


class PasscodePayload(CredentialsPayload):
    passcode: str


class MemorableWordPayload(CredentialsPayload):
    memorable_word: str


class VerifyPayload(BaseModel):
    passcode: str | None = None
    memorable_word: str | None = None


def to_category_response(category: TransactionCategory) -> CategoryResponse:
    return CategoryResponse(**asdict(category))


def to_transaction_response(txn: Transaction) -> TransactionResponse:
    return TransactionResponse(**asdict(txn))


def to_account_response(account: Account) -> AccountResponse:
    return AccountResponse(**asdict(account))


def to_income_response(income: RecurringIncome, today: date) -> RecurringIncomeResponse:
    return RecurringIncomeResponse(
        **asdict(income),
        frequency_label=frequency_label(income.frequency),
        monthly_equivalent=monthly_equivalent(income.amount, income.frequency),
        next_occurrence=next_occurrence_after(income, today),
    )


def to_bill_response(bill: Bill, today: date) -> BillResponse:
    return BillResponse(**asdict(bill), due_status=due_status_label(bill.next_due_date, today))


def to_profile_response(profile: BillNotificationProfile) -> ProfileResponse:
    return ProfileResponse(**asdict(profile), is_default=is_default_profile(profile))


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/changes")
def changes(request: Request, services: Services = Depends(get_services)) -> dict:
    """Topics whose revision differs from the ones passed as query parameters."""
    known: dict[str, int] = {}
    for topic, value in request.query_params.items():
        if topic not in TOPICS:
            continue
        try:
            known[topic] = int(value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid revision for {topic}.") from exc
    return {
        "revisions": services.revisions.snapshot(),
        "changed": services.revisions.changed_since(known),
    }


@app.get("/ranges")
def resolve_range(view: str = Query("month"), anchor: date | None = Query(None)) -> dict:
    view = parse_view(view)
    anchor_day = anchor or date.today()
    current = range_for(anchor_day, view)
    earlier = previous_range(anchor_day, view)
    return {
        "view": view,
        "label": range_label(current, view),
        "start": current.start,
        "end": current.end,
        "total_days": current.total_days,
        "previous": {
            "start": earlier.start,
            "end": earlier.end,
            "label": range_label(earlier, view),
        },
        "previous_anchor": shift_anchor(anchor_day, view, -1),
        "next_anchor": shift_anchor(anchor_day, view, 1),
    }


@app.get("/reports/expenses")
def expense_report(
    view: str = Query("month"),
    anchor: date | None = Query(None),
    currency: str | None = Query(None),
    category_id: str | None = Query(None),
    services: Services = Depends(get_services),
) -> dict:
    view = parse_view(view)
    currency = resolve_currency(currency)
    with service_errors():
        transactions = services.transactions.list_transactions(txn_type="expense")
        categories = services.categories.list_categories()
        report = build_expense_report(
            transactions,
            categories,
            anchor or date.today(),
            view,
            currency,
            category_id=category_id,
        )
    return jsonable_encoder(report)


@app.get("/reports/income")
def income_report(
    view: str = Query("month"),
    anchor: date | None = Query(None),
    currency: str | None = Query(None),
    services: Services = Depends(get_services),
) -> dict:
    view = parse_view(view)
    currency = resolve_currency(currency)
    with service_errors():
        transactions = services.transactions.list_transactions(txn_type="income")
        categories = services.categories.list_categories()
        incomes = services.incomes.get_active()
        report = build_income_report(
            transactions, categories, incomes, anchor or date.today(), view, currency
        )
    return jsonable_encoder(report)


@app.get("/reports/daily")
def daily_report(
    view: str = Query("week"),
    anchor: date | None = Query(None),
    type: str = Query("expense"),
    currency: str | None = Query(None),
    services: Services = Depends(get_services),
) -> dict:
    view = parse_view(view)
    txn_type = type.strip().lower()
    if txn_type not in TRANSACTION_TYPES:
        raise HTTPException(status_code=400, detail="Invalid transaction type.")
    currency = resolve_currency(currency)
    date_range = range_for(anchor or date.today(), view)
    with service_errors():
        transactions = services.transactions.list_transactions(
            date_range.start_datetime, date_range.end_datetime, txn_type
        )
    filtered = filter_transactions(
        transactions, date_range, txn_type, currency=currency, default_currency=currency
    )
    return jsonable_encoder(
        {
            "view": view,
            "label": range_label(date_range, view),
            "start": date_range.start,
            "end": date_range.end,
            "days": daily_totals(filtered, date_range, default_currency=currency),
        }
    )


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    type: str | None = Query(None), services: Services = Depends(get_services)
) -> list[CategoryResponse]:
    category_type = type.strip().lower() if type else None
    if category_type is not None and category_type not in TRANSACTION_TYPES:
        raise HTTPException(status_code=400, detail="Invalid category type.")
    with service_errors():
        rows = services.categories.list_categories(category_type)
    return [to_category_response(row) for row in rows]


@app.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload, services: Services = Depends(get_services)
) -> CategoryResponse:
    with service_errors():
        payload = CategoryPayload.validate_payload(payload)
        existing = services.categories.list_categories()
        category = TransactionCategory(
            id=payload.id,
            name=payload.name,
            type=payload.type,
            color_value=payload.color_value if payload.color_value is not None else 0xFF9E9E9E,
            icon=payload.icon,
            sort_order=len(existing),
        )
        created = services.categories.create_category(category)
    return to_category_response(created)


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    start: date | None = Query(None),
    end: date | None = Query(None),
    type: str | None = Query(None),
    services: Services = Depends(get_services),
) -> list[TransactionResponse]:
    txn_type = type.strip().lower() if type else None
    if txn_type is not None and txn_type not in TRANSACTION_TYPES:
        raise HTTPException(status_code=400, detail="Invalid transaction type.")
    with service_errors():
        rows = services.transactions.list_transactions(
            datetime.combine(start, time.min) if start else None,
            datetime.combine(end, time.max) if end else None,
            txn_type,
        )
    return [to_transaction_response(row) for row in rows]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, services: Services = Depends(get_services)
) -> TransactionResponse:
    with service_errors():
        payload = TransactionPayload.validate_payload(payload)
        created = services.transactions.create_transaction(
            Transaction(
                title=payload.title,
                amount=payload.amount,
                type=payload.type,
                transaction_date=payload.transaction_date or datetime.now(),
                currency=payload.currency or SYSTEM_DEFAULT_CURRENCY,
                category_id=payload.category_id,
                account_id=payload.account_id,
                bill_id=payload.bill_id,
                is_cleared=payload.is_cleared,
                notes=payload.notes,
            )
        )
    return to_transaction_response(created)


@app.get("/accounts", response_model=list[AccountResponse])
def list_accounts(services: Services = Depends(get_services)) -> list[AccountResponse]:
    with service_errors():
        rows = services.accounts.list_accounts()
    return [to_account_response(row) for row in rows]


@app.post("/accounts", response_model=AccountResponse)
def create_account(
    payload: AccountPayload, services: Services = Depends(get_services)
) -> AccountResponse:
    with service_errors():
        payload = AccountPayload.validate_payload(payload)
        created = services.accounts.create_account(
            Account(
                name=payload.name,
                balance=payload.balance,
                currency=payload.currency,
                is_default=payload.is_default,
            )
        )
    return to_account_response(created)


@app.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str, payload: AccountPayload, services: Services = Depends(get_services)
) -> AccountResponse:
    with service_errors():
        payload = AccountPayload.validate_payload(payload)
        updated = services.accounts.update_account(
            Account(
                id=account_id,
                name=payload.name,
                balance=payload.balance,
                currency=payload.currency,
                is_default=payload.is_default,
            )
        )
    return to_account_response(updated)


@app.get("/income/hub")
def income_hub(
    currency: str | None = Query(None), services: Services = Depends(get_services)
) -> dict:
    currency = resolve_currency(currency)
    today = date.today()
    month = range_for(today, RangeView.MONTH)
    with service_errors():
        transactions = services.transactions.list_transactions(
            month.start_datetime, month.end_datetime, "income"
        )
        incomes = services.incomes.get_all()
    received = filter_incomes_for_range(
        transactions, month, currency=currency, default_currency=currency
    )
    summary = recurring_summary(incomes, currency, today)
    return {
        "currency": currency,
        "month_label": range_label(month, RangeView.MONTH),
        "month_total": jsonable_encoder(sum((txn.amount for txn in received), Decimal("0"))),
        "recent": [
            jsonable_encoder(to_transaction_response(txn))
            for txn in sorted(received, key=lambda txn: txn.transaction_date, reverse=True)[:5]
        ],
        "recurring": {
            "monthly_estimate": jsonable_encoder(summary.monthly_estimate),
            "active_count": summary.active_count,
            "by_category": jsonable_encoder(summary.by_category),
            "incomes": [
                jsonable_encoder(to_income_response(row.income, today)) for row in summary.rows
            ],
        },
    }


@app.post("/income/quick-add", response_model=TransactionResponse)
def quick_add_income_endpoint(
    payload: QuickAddPayload, services: Services = Depends(get_services)
) -> TransactionResponse:
    currency = resolve_currency(payload.currency)
    with service_errors():
        created = quick_add_income(
            services.transactions,
            services.accounts,
            services.categories,
            payload.category_id,
            payload.amount,
            currency,
        )
    return to_transaction_response(created)


@app.post("/expenses/quick-add", response_model=TransactionResponse)
def quick_add_expense_endpoint(
    payload: QuickAddPayload, services: Services = Depends(get_services)
) -> TransactionResponse:
    currency = resolve_currency(payload.currency)
    with service_errors():
        created = quick_add_expense(
            services.transactions,
            services.accounts,
            services.categories,
            payload.category_id,
            payload.amount,
            currency,
        )
    return to_transaction_response(created)


@app.get("/recurring-incomes", response_model=list[RecurringIncomeResponse])
def list_recurring_incomes(
    services: Services = Depends(get_services),
) -> list[RecurringIncomeResponse]:
    today = date.today()
    with service_errors():
        rows = services.incomes.get_all()
    return [to_income_response(row, today) for row in rows]


@app.post("/recurring-incomes", response_model=RecurringIncomeResponse)
async def create_recurring_income(
    payload: RecurringIncomePayload, services: Services = Depends(get_services)
) -> RecurringIncomeResponse:
    with service_errors():
        payload = RecurringIncomePayload.validate_payload(payload)
        created = await run_in_threadpool(
            services.incomes.create,
            RecurringIncome(
                title=payload.title,
                amount=payload.amount,
                currency=payload.currency,
                category_id=payload.category_id,
                start_date=payload.start_date,
                frequency=payload.frequency,
                end_date=payload.end_date,
                account_id=payload.account_id,
                notes=payload.notes,
            ),
        )
    await services.bill_notifications.sync_now(visible=False)
    return to_income_response(created, date.today())


@app.put("/recurring-incomes/{income_id}/active", response_model=RecurringIncomeResponse)
async def set_recurring_income_active(
    income_id: str, payload: ActivePayload, services: Services = Depends(get_services)
) -> RecurringIncomeResponse:
    with service_errors():
        updated = await run_in_threadpool(services.incomes.set_active, income_id, payload.is_active)
    await services.bill_notifications.sync_now(visible=False)
    return to_income_response(updated, date.today())


@app.delete("/recurring-incomes/{income_id}")
async def delete_recurring_income(
    income_id: str, services: Services = Depends(get_services)
) -> dict:
    with service_errors():
        await run_in_threadpool(services.incomes.delete, income_id)
    await services.bill_notifications.sync_now(visible=False)
    return {"status": "deleted"}


@app.get("/recurring-incomes/{income_id}/occurrences")
def recurring_income_occurrences(
    income_id: str,
    start: date = Query(...),
    end: date = Query(...),
    services: Services = Depends(get_services),
) -> dict:
    if end < start:
        raise HTTPException(status_code=400, detail="End date must be on or after the start date.")
    with service_errors():
        income = services.incomes.get(income_id)
    if income is None:
        raise HTTPException(status_code=404, detail="Recurring income not found.")
    return {"income_id": income_id, "dates": occurrences_between(income, start, end)}


@app.get("/bills", response_model=list[BillResponse])
def list_bills(services: Services = Depends(get_services)) -> list[BillResponse]:
    today = date.today()
    with service_errors():
        rows = services.transactions.get_active_bills()
    return [to_bill_response(row, today) for row in sort_bills(rows)]


@app.post("/bills", response_model=BillResponse)
async def create_bill(payload: BillPayload, services: Services = Depends(get_services)) -> BillResponse:
    with service_errors():
        payload = BillPayload.validate_payload(payload)
        created = await run_in_threadpool(
            services.transactions.create_bill,
            Bill(
                name=payload.name,
                amount=payload.amount,
                currency=payload.currency,
                type=payload.type,
                next_due_date=payload.next_due_date,
                reminder_enabled=payload.reminder_enabled,
                reminder_days_before=payload.reminder_days_before,
                category_id=payload.category_id,
            ),
        )
    await services.bill_notifications.sync_now(visible=False)
    return to_bill_response(created, date.today())


@app.get("/bills/notifications", response_model=BillNotificationsResponse)
async def bill_notifications(
    services: Services = Depends(get_services),
) -> BillNotificationsResponse:
    today = date.today()
    with service_errors():
        state = await services.bill_notifications.load()
    return BillNotificationsResponse(
        bills=[
            BillNotificationRow(
                bill=to_bill_response(bill, today),
                profile=to_profile_response(state.profile_for(bill.id)),
            )
            for bill in state.bills
        ],
        options={
            "template": TEMPLATE_OPTIONS,
            "channel": CHANNEL_OPTIONS,
            "sound": SOUND_OPTIONS,
            "type": TYPE_OPTIONS,
            "days_before": list(DAYS_BEFORE_OPTIONS),
        },
    )


@app.put("/bills/{bill_id}/notifications/{field}", response_model=ProfileResponse)
async def update_bill_notification(
    bill_id: str,
    field: str,
    payload: ChoicePayload,
    services: Services = Depends(get_services),
) -> ProfileResponse:
    if field not in PROFILE_FIELDS:
        raise HTTPException(status_code=404, detail="Unknown notification setting.")
    with service_errors():
        profile = await services.bill_notifications.update_choice(bill_id, field, payload.value)
    return to_profile_response(profile)


@app.put("/bills/{bill_id}/reminder", response_model=BillResponse)
async def update_bill_reminder(
    bill_id: str, payload: ReminderPayload, services: Services = Depends(get_services)
) -> BillResponse:
    if payload.enabled is None and payload.days_before is None:
        raise HTTPException(status_code=400, detail="Nothing to update.")
    controller = services.bill_notifications
    with service_errors():
        if payload.days_before is not None:
            bill = await controller.update_reminder_days(bill_id, payload.days_before)
        if payload.enabled is not None:
            bill = await controller.update_reminder_enabled(bill_id, payload.enabled)
    return to_bill_response(bill, date.today())


@app.post("/bills/notifications/sync", response_model=SyncResponse)
async def sync_bill_notifications(services: Services = Depends(get_services)) -> SyncResponse:
    with service_errors():
        result = await services.bill_notifications.sync_now(visible=True)
    if result is None:
        raise HTTPException(status_code=409, detail="Notification sync is not available.")
    return SyncResponse(**asdict(result))


@app.get("/notifications/scheduled", response_model=list[ScheduledNotificationResponse])
def scheduled_notifications(
    services: Services = Depends(get_services),
) -> list[ScheduledNotificationResponse]:
    with service_errors():
        rows = services.scheduler.list_scheduled()
    return [ScheduledNotificationResponse(**asdict(row)) for row in rows]


@app.get("/security/status")
def security_status(services: Services = Depends(get_services)) -> dict:
    with service_errors():
        return services.security.status()


@app.put("/security/passcode")
def set_passcode(payload: PasscodePayload, services: Services = Depends(get_services)) -> dict:
    with service_errors():
        services.security.change_passcode(
            payload.passcode, payload.current_passcode, payload.current_memorable_word
        )
        return services.security.status()


@app.put("/security/memorable-word")
def set_memorable_word(
    payload: MemorableWordPayload, services: Services = Depends(get_services)
) -> dict:
    with service_errors():
        services.security.change_memorable_word(
            payload.memorable_word, payload.current_passcode, payload.current_memorable_word
        )
        return services.security.status()


@app.post("/security/verify")
def verify_security(payload: VerifyPayload, services: Services = Depends(get_services)) -> dict:
    if payload.passcode is None and payload.memorable_word is None:
        raise HTTPException(status_code=400, detail="Passcode or memorable word required.")
    result: dict = {}
    with service_errors():
        if payload.passcode is not None:
            result["passcode"] = services.security.verify_passcode(payload.passcode)
        if payload.memorable_word is not None:
            result["memorable_word"] = services.security.verify_memorable_word(
                payload.memorable_word
            )
    return result


@app.post("/security/reset")
def reset_security(
    payload: CredentialsPayload | None = None, services: Services = Depends(get_services)
) -> dict:
    credentials = payload or CredentialsPayload()
    with service_errors():
        services.security.authorize(
            credentials.current_passcode, credentials.current_memorable_word
        )
        services.security.reset_all_security_state()
        return services.security.status()
