# tests/conftest.py
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from ledger_service import db as ledger_db
from ledger_service.ledger import LedgerService
from ledger_service.main import app as ledger_app
from ledger_service.models import HistoryEntry

from auth_service import db as auth_db
from auth_service.main import app as auth_app

USER_ID = 1


def history_chain_is_consistent(engine, user_id=USER_ID):
    """
    Cada entrada del historial cuadra (remaining + added == new) y empieza
    donde terminó la anterior.
    """
    with engine.connect() as conn:
        rows = conn.execute(
            select(HistoryEntry.__table__)
            .where(HistoryEntry.user_id == user_id)
            .order_by(HistoryEntry.created_at, HistoryEntry.id)
        ).all()

    previous = None
    for entry in rows:
        if entry.remaining_balance + entry.added_balance != entry.new_balance:
            return False
        if previous is not None and entry.remaining_balance != previous.new_balance:
            return False
        previous = entry
    return True


@pytest.fixture
def engine(tmp_path):
    """
    Base de datos SQLite nueva por cada prueba.
    Un archivo (no :memory:) para que varios hilos abran sus propias conexiones.
    """
    engine = ledger_db.create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    ledger_db.init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def ledger(engine):
    return LedgerService(ledger_db.create_session_factory(engine))


@pytest.fixture
def funded_user(ledger):
    """Usuario 1 con un saldo de 100."""
    ledger.adjust_balance(USER_ID, 100)
    return USER_ID


@pytest.fixture
def ledger_client(engine, ledger):
    """TestClient de ledger_service conectado a la base de prueba (se omite el startup)."""
    ledger_app.state.engine = engine
    ledger_app.state.ledger = ledger
    yield TestClient(ledger_app)
    ledger_app.state.engine = None
    ledger_app.state.ledger = None


@pytest.fixture
def auth_client(tmp_path):
    """TestClient de auth_service con su fábrica de sesiones ligada a un archivo SQLite."""
    engine = auth_db.init_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield TestClient(auth_app)
    auth_db.SessionLocal.configure(bind=None)
    engine.dispose()


# Payload de registro con contraseñas que coinciden
@pytest.fixture
def registration():
    return {
        "fname": "Ana",
        "lname": "Reyes",
        "username": "ana.reyes",
        "password": "secret123",
        "password2": "secret123",
        "image": "ana.png",
    }
