"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# --- Default test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///./handyman_escrow_test.db")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

from app.main import app  # noqa: E402
from app.db import get_db  # noqa: E402
from app.models import Job, JobStatus, Payment, PaymentStatus, User, UserRole  # noqa: E402
from app.models.api_key import ApiKey, ApiScope  # noqa: E402
from app.services.fees import calculate_fees  # noqa: E402
from app.services.gateway import (  # noqa: E402
    AccountInfo,
    AccountLinkInfo,
    GatewayError,
    IntentInfo,
    RefundInfo,
    TransferInfo,
    get_payment_gateway,
)
from app.utils.apikey import hash_key  # noqa: E402
from app.utils.time import utcnow  # noqa: E402

DB_PATH = Path("./handyman_escrow_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")


# --- (1) Fresh database file for the session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)


# pysqlite needs explicit BEGIN for SAVEPOINT-based test isolation
@event.listens_for(engine, "connect")
def _sqlite_autocommit_off(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
    join_transaction_mode="create_savepoint",
)

# --- (2) Schema comes from Alembic only
_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


# --- Payment processor double

@dataclass
class FakeGateway:
    """In-memory stand-in for Stripe that records calls and can be told to fail."""

    intents: dict[str, IntentInfo] = field(default_factory=dict)
    calls: list[tuple[str, dict]] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)
    # runs while a call is in flight, after the processor accepted it
    during: dict[str, Callable[[dict], None]] = field(default_factory=dict)
    _counter: int = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_test_{self._counter}"

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise GatewayError(f"{name} failed", code="card_declined")

    def _in_flight(self, name: str, kwargs: dict) -> None:
        hook = self.during.get(name)
        if hook is not None:
            hook(kwargs)

    def calls_to(self, name: str) -> list[dict]:
        return [kwargs for call, kwargs in self.calls if call == name]

    def create_intent(self, **kwargs) -> IntentInfo:
        self.calls.append(("create_intent", kwargs))
        self._maybe_fail("create_intent")
        intent_id = self._next("pi")
        intent = IntentInfo(
            id=intent_id,
            status="requires_payment_method",
            amount=kwargs["amount"],
            client_secret=f"{intent_id}_secret",
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id: str) -> IntentInfo:
        self.calls.append(("retrieve_intent", {"intent_id": intent_id}))
        self._maybe_fail("retrieve_intent")
        return self.intents[intent_id]

    def succeed(self, intent_id: str) -> None:
        intent = self.intents[intent_id]
        self.intents[intent_id] = IntentInfo(
            id=intent.id, status="succeeded", amount=intent.amount, client_secret=intent.client_secret
        )

    def create_transfer(self, **kwargs) -> TransferInfo:
        self.calls.append(("create_transfer", kwargs))
        self._maybe_fail("create_transfer")
        self._in_flight("create_transfer", kwargs)
        return TransferInfo(id=self._next("tr"), amount=kwargs["amount"])

    def create_refund(self, **kwargs) -> RefundInfo:
        self.calls.append(("create_refund", kwargs))
        self._maybe_fail("create_refund")
        self._in_flight("create_refund", kwargs)
        return RefundInfo(id=self._next("re"), amount=kwargs["amount"], status="succeeded")

    def create_connected_account(self, **kwargs) -> AccountInfo:
        self.calls.append(("create_connected_account", kwargs))
        self._maybe_fail("create_connected_account")
        return AccountInfo(id=self._next("acct"))

    def create_account_link(self, **kwargs) -> AccountLinkInfo:
        self.calls.append(("create_account_link", kwargs))
        self._maybe_fail("create_account_link")
        return AccountLinkInfo(url=f"https://connect.stripe.test/setup/{kwargs['account_id']}", expires_at=1_700_000_000)


@pytest.fixture
def gateway() -> Iterator[FakeGateway]:
    fake = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture
async def client(gateway: FakeGateway) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# --- Factories

@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(
        role: UserRole = UserRole.customer,
        *,
        stripe_account_id: str | None = None,
        onboarding_complete: bool = False,
    ) -> User:
        tag = uuid4().hex[:8]
        user = User(
            name=f"{role.value}-{tag}",
            email=f"{role.value}-{tag}@example.com",
            role=role,
            stripe_account_id=stripe_account_id,
            stripe_onboarding_complete=onboarding_complete,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _factory


@pytest.fixture
def customer(make_user) -> User:
    return make_user(UserRole.customer)


@pytest.fixture
def handyman(make_user) -> User:
    return make_user(
        UserRole.handyman,
        stripe_account_id=f"acct_{uuid4().hex[:12]}",
        onboarding_complete=True,
    )


@pytest.fixture
def admin(make_user) -> User:
    return make_user(UserRole.admin)


@pytest.fixture
def make_job(db_session: Session) -> Callable[..., Job]:
    def _factory(
        poster: User,
        acceptor: User | None = None,
        *,
        status: JobStatus = JobStatus.ACCEPTED,
        budget: str | None = "100.00",
    ) -> Job:
        now = utcnow()
        job = Job(
            title=f"Fix sink {uuid4().hex[:6]}",
            status=status,
            posted_by=poster.id,
            accepted_by=acceptor.id if acceptor else None,
            budget_amount=Decimal(budget) if budget is not None else None,
            accepted_at=now - timedelta(days=3) if acceptor else None,
            completed_at=now - timedelta(days=1) if status == JobStatus.COMPLETED else None,
        )
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job

    return _factory


@pytest.fixture
def make_payment(db_session: Session) -> Callable[..., Payment]:
    """Insert a payment row directly in the given status, mirroring the job."""

    def _factory(job: Job, status: PaymentStatus = PaymentStatus.ESCROWED) -> Payment:
        fees = calculate_fees(job.budget_amount)
        payment = Payment(
            job_id=job.id,
            customer_id=job.posted_by,
            handyman_id=job.accepted_by,
            job_amount=fees.job_amount,
            customer_fee=fees.customer_fee,
            handyman_fee=fees.handyman_fee,
            total_charged=fees.total_charged,
            handyman_payout=fees.handyman_payout,
            currency="usd",
            status=status,
            external_payment_intent_id=f"pi_seed_{uuid4().hex[:12]}",
            paid_at=utcnow() if status != PaymentStatus.PENDING else None,
        )
        db_session.add(payment)
        job.payment_status = status.value
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return _factory


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., ApiKey]:
    def _factory(user: User, key: str, scope: ApiScope | None = None, is_active: bool = True) -> ApiKey:
        scope = scope or ApiScope(user.role.value)
        api_key = ApiKey(
            name=f"key-{uuid4().hex}",
            prefix="test_" + scope.value,
            key_hash=hash_key(key),
            scope=scope,
            user_id=user.id,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        db_session.refresh(api_key)
        return api_key

    return _factory


@pytest.fixture
def headers_for(make_api_key) -> Callable[..., dict[str, str]]:
    def _headers(user: User, scope: ApiScope | None = None) -> dict[str, str]:
        token = f"{user.role.value}-{uuid4().hex}"
        make_api_key(user, token, scope)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def customer_headers(customer, headers_for) -> dict[str, str]:
    return headers_for(customer)


@pytest.fixture
def handyman_headers(handyman, headers_for) -> dict[str, str]:
    return headers_for(handyman)


@pytest.fixture
def admin_headers(admin, headers_for) -> dict[str, str]:
    return headers_for(admin)
