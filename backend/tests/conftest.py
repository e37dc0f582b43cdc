"""Pytest configuration and fixtures."""

import os

# Keep the application's own engine off the developer database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from datetime import datetime, timedelta
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rivercafe.core.rate_limit import limiter
from rivercafe.core.security import create_access_token, get_password_hash
from rivercafe.core.timeutils import utcnow
from rivercafe.db.base import Base
from rivercafe.db.session import configure_sqlite, get_db
from rivercafe.main import app
# Import all models to ensure they're registered with Base.metadata
from rivercafe.models import (
    Order,
    OrderItem,
    OrderKind,
    OrderingWindow,
    Product,
    User,
    UserRole,
)
from rivercafe.services import order_state

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine with SAVEPOINT support."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ========== FACTORIES ==========

@pytest.fixture
def make_user(db_session: Session):
    """Create users; passwords are only hashed when one is given."""
    counter = {"n": 0}

    def _make(
        role: UserRole = UserRole.STUDENT,
        name: Optional[str] = None,
        reg_number: Optional[str] = None,
        email: Optional[str] = None,
        balance_cents: int = 0,
        password: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        if role == UserRole.STUDENT and reg_number is None:
            reg_number = f"R{1000 + n}"
        user = User(
            name=name or f"{role.value.title()} {n}",
            role=role,
            reg_number=reg_number,
            email=email,
            balance_cents=balance_cents,
            password_hash=get_password_hash(password) if password else None,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def student(make_user) -> User:
    return make_user(UserRole.STUDENT, name="Tariro Moyo", reg_number="R2024001", balance_cents=5000)


@pytest.fixture
def admin(make_user) -> User:
    return make_user(UserRole.ADMIN, name="Admin", email="admin@rivercafe.test")


@pytest.fixture
def canteen_staff(make_user) -> User:
    return make_user(UserRole.CANTEEN, name="Kitchen", email="kitchen@rivercafe.test")


@pytest.fixture
def it_staff(make_user) -> User:
    return make_user(UserRole.IT, name="Helpdesk", email="it@rivercafe.test")


@pytest.fixture
def headers_for():
    """Bearer headers for a user."""
    def _headers(user: User) -> dict:
        token = create_access_token(data={"sub": str(user.id), "role": user.role.value})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def make_product(db_session: Session):
    def _make(name: str = "Burger", price_cents: int = 350, category: Optional[str] = "meals",
              available: bool = True, is_special: bool = False) -> Product:
        product = Product(
            name=name,
            price_cents=price_cents,
            category=category,
            available=available,
            is_special=is_special,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product
    return _make


@pytest.fixture
def make_window(db_session: Session):
    """Ordering windows; with no days or times the window is always open."""
    def _make(name: str = "All day", days_of_week: Optional[list] = None,
              start_time: Optional[str] = None, end_time: Optional[str] = None,
              timezone: Optional[str] = "UTC", category: Optional[str] = None,
              is_special: bool = False, active: bool = True) -> OrderingWindow:
        window = OrderingWindow(
            name=name,
            days_of_week=days_of_week or [],
            start_time=start_time,
            end_time=end_time,
            timezone=timezone,
            category=category,
            is_special=is_special,
            active=active,
        )
        db_session.add(window)
        db_session.commit()
        db_session.refresh(window)
        return window
    return _make


@pytest.fixture
def make_order(db_session: Session):
    """Insert an order directly.

    *items* is a list of ``(name, qty, prepared_count)``; status defaults to
    the derived one.  Orders created in sequence get strictly increasing
    ``created_at`` values.
    """
    clock = {"t": utcnow() - timedelta(hours=1)}
    counter = {"n": 0}

    def _make(items=(("Burger", 1, 0),), user: Optional[User] = None, status=None,
              code: Optional[str] = None, external: bool = False,
              expires_at: Optional[datetime] = None, issued_to_name: Optional[str] = None,
              prepared_count: Optional[int] = None, created_at: Optional[datetime] = None) -> Order:
        counter["n"] += 1
        clock["t"] += timedelta(seconds=1)
        order_items = [
            OrderItem(position=i, name=name, unit_price_cents=200, qty=qty, prepared_count=prepared)
            for i, (name, qty, prepared) in enumerate(items)
        ]
        prepared_total, _ = order_state.totals(order_items)
        order = Order(
            code=code or f"RC-T{counter['n']:03d}",
            user_id=user.id if user is not None else None,
            reg_number=user.reg_number if user is not None else None,
            external=external,
            kind=OrderKind.REGULAR,
            total_cents=sum(i.unit_price_cents * i.qty for i in order_items),
            status=status or order_state.derive_status(order_items),
            prepared_count=prepared_total if prepared_count is None else prepared_count,
            expires_at=expires_at,
            issued_to_name=issued_to_name,
            items=order_items,
            created_at=created_at or clock["t"],
        )
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make
