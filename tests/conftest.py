"""Pytest configuration: in-memory database, community fixtures and collaborator doubles."""

import os

# Set test settings BEFORE any imports from hoa_ledger
# This ensures the module-level engine never touches a file database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOCALE"] = "es_MX"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

from types import SimpleNamespace  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from hoa_ledger.models import Base, Resident, Street, Unit, User  # noqa: E402
from hoa_ledger.services.document_service import ReceiptDocument, TextReceiptGenerator  # noqa: E402


class DummyNotifier:
    """Notifier double recording every delivered message."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[int, str, str, dict[str, Any]]] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def notify(
        self, user_id: int, title: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        if self.fail:
            raise RuntimeError("telegram unavailable")
        self.sent.append((user_id, title, message, data or {}))

    def for_user(self, user_id: int) -> list[tuple[int, str, str, dict[str, Any]]]:
        return [item for item in self.sent if item[0] == user_id]

    def of_type(self, kind: str) -> list[tuple[int, str, str, dict[str, Any]]]:
        return [item for item in self.sent if item[3].get("type") == kind]


class FailingReceiptGenerator:
    """Document generator double that always fails."""

    def __init__(self):
        self.calls = 0

    def generate(self, receipt, allocations) -> ReceiptDocument:
        self.calls += 1
        raise OSError("receipt storage unavailable")

    def publish(self, document: ReceiptDocument) -> None:
        pass

    def discard(self, document: ReceiptDocument) -> None:
        pass


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return DummyNotifier()


@pytest.fixture
def failing_notifier():
    return DummyNotifier(fail=True)


@pytest.fixture
def failing_generator():
    return FailingReceiptGenerator()


@pytest.fixture
def receipt_generator(tmp_path):
    return TextReceiptGenerator(tmp_path / "receipts", "/receipts")


@pytest.fixture
def community(db_session):
    """Two streets, four units with one primary resident each, and an administrator.

    Roble: units 1, 2, 3. Pino: unit 10.
    """
    admin = User(name="Administración", telegram_id="9000", is_administrator=True)
    roble = Street(name="Roble")
    pino = Street(name="Pino")
    units = [
        Unit(street=roble, number="1"),
        Unit(street=roble, number="2"),
        Unit(street=roble, number="3"),
        Unit(street=pino, number="10"),
    ]
    residents = [
        User(name=f"Residente {i + 1}", telegram_id=f"{100 + i}") for i in range(len(units))
    ]
    db_session.add_all([admin, roble, pino, *units, *residents])
    db_session.flush()
    for unit, user in zip(units, residents):
        db_session.add(Resident(user=user, unit=unit, is_primary=True))
    db_session.commit()
    return SimpleNamespace(admin=admin, streets=[roble, pino], units=units, residents=residents)


@pytest.fixture
def make_units(db_session):
    """Factory adding `count` active units on a new street."""

    def _make(count: int, street_name: str = "Encino") -> list[Unit]:
        street = Street(name=street_name)
        units = [Unit(street=street, number=str(i + 1)) for i in range(count)]
        db_session.add_all([street, *units])
        db_session.commit()
        return units

    return _make
