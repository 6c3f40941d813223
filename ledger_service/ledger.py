"""
Servicio de Ledger: mantiene el saldo de cada usuario consistente con la tabla
de gastos y con un historial de saldo de solo inserción.

Cada operación que modifica datos corre en una única transacción. Los cambios
por delta son sentencias atómicas (upsert / amount = amount + ?) y los caminos
de lectura-escritura bloquean la fila primero, así que peticiones concurrentes
del mismo usuario no pierden actualizaciones.
"""

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterator, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DataError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ledger_service import store
from ledger_service.errors import InvalidArgument, LedgerError, NotFound, ServiceError
from ledger_service.models import Balance, Expense, HistoryEntry

logger = logging.getLogger(__name__)

# Precisión de las columnas Numeric(12, 2)
CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("10000000000")


@dataclass
class Page:
    """Una página de filas más los números que la API reporta como 'pagination'."""
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


def _to_amount(value, field: str) -> Decimal:
    """Convierte a Decimal redondeado a centavos; valores fuera de Numeric(12, 2) son inválidos."""
    if value is None or value == "":
        raise InvalidArgument(f"Please fill out the {field} field")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f"Invalid {field}")
    if not amount.is_finite():
        raise InvalidArgument(f"Invalid {field}")
    if abs(amount) >= MAX_AMOUNT:
        raise InvalidArgument(f"The {field} is too large")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    # 9999999999.995 redondea a 10^10
    if abs(amount) >= MAX_AMOUNT:
        raise InvalidArgument(f"The {field} is too large")
    return amount


def _check_result(new_amount: Decimal) -> None:
    if abs(new_amount) >= MAX_AMOUNT:
        raise InvalidArgument("The resulting balance is too large")


def _check_paging(page: int, limit: int) -> None:
    if page is None or page <= 0:
        raise InvalidArgument("Invalid page number")
    if limit is None or limit <= 0:
        raise InvalidArgument("Invalid limit")


def _check_expense_fields(title: Optional[str], category: Optional[str], amount) -> Decimal:
    if not title or not title.strip():
        raise InvalidArgument("Please fill out the title field")
    if not category or not category.strip():
        raise InvalidArgument("Please select a category")
    value = _to_amount(amount, "amount")
    if value <= 0:
        raise InvalidArgument("Expense amount must be greater than zero")
    return value


class LedgerService:
    """Operaciones de saldo, historial y gastos sobre una fábrica de sesiones inyectada."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        """
        Entrega una sesión dentro de session.begin(): commit al salir normalmente,
        rollback ante cualquier excepción y la sesión se cierra siempre.
        Los fallos de la base de datos se relanzan como ServiceError.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except LedgerError:
            raise
        except DataError as e:
            # Valor rechazado por la columna (p. ej. desbordamiento en MySQL estricto)
            logger.warning(f"Transacción '{action}' rechazada por la base de datos: {e}")
            raise InvalidArgument("The resulting balance is too large") from e
        except SQLAlchemyError as e:
            logger.error(f"Transacción '{action}' revertida: {e}", exc_info=True)
            raise ServiceError(f"An error occurred while trying to {action}", cause=e) from e
        finally:
            session.close()

    @contextmanager
    def _reader(self, action: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Lectura '{action}' fallida: {e}", exc_info=True)
            raise ServiceError(f"An error occurred while trying to {action}", cause=e) from e
        finally:
            session.close()

    @staticmethod
    def _record(session: Session, user_id: int, delta: Decimal, new_amount: Decimal) -> HistoryEntry:
        entry = HistoryEntry(
            user_id=user_id,
            remaining_balance=new_amount - delta,
            added_balance=delta,
            new_balance=new_amount,
        )
        session.add(entry)
        return entry

    # --- Saldo ---

    def get_balance(self, user_id: int) -> Decimal:
        with self._reader("retrieve the balance") as session:
            amount = session.execute(
                select(Balance.amount).where(Balance.user_id == user_id)
            ).scalar_one_or_none()
        if amount is None:
            raise NotFound("Balance not found for the given user ID")
        return amount

    def adjust_balance(self, user_id: int, delta) -> Decimal:
        """Suma un delta positivo; crea la fila de saldo en el primer uso."""
        delta = _to_amount(delta, "added balance")
        if delta <= 0:
            raise InvalidArgument("Valid added balance is required")

        with self._transaction("update the balance and record the history") as session:
            new_amount = store.upsert_balance(session, user_id, delta)
            _check_result(new_amount)
            self._record(session, user_id, delta, new_amount)

        logger.info(f"Saldo del usuario {user_id} ajustado en {delta}: ahora {new_amount}")
        return new_amount

    def set_balance(self, user_id: int, new_amount) -> Decimal:
        """Sobrescribe un saldo existente; la diferencia va al historial."""
        new_amount = _to_amount(new_amount, "new balance")
        if new_amount < 0:
            raise InvalidArgument("Valid new balance amount is required")

        with self._transaction("update the balance and record the history") as session:
            current = store.lock_balance(session, user_id)
            if current is None:
                raise NotFound("Balance not found for the given user ID")
            store.set_balance(session, user_id, new_amount)
            self._record(session, user_id, new_amount - current, new_amount)

        logger.info(f"Saldo del usuario {user_id} cambiado de {current} a {new_amount}")
        return new_amount

    def list_history(self, user_id: int, page: int = 1, limit: int = 10) -> Page:
        """Historial del más reciente al más antiguo. Una página vacía es un resultado válido."""
        _check_paging(page, limit)

        with self._reader("retrieve the history") as session:
            total = session.execute(
                select(func.count(HistoryEntry.id)).where(HistoryEntry.user_id == user_id)
            ).scalar_one()
            rows = session.execute(
                select(HistoryEntry)
                .where(HistoryEntry.user_id == user_id)
                .order_by(HistoryEntry.created_at.desc(), HistoryEntry.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            ).scalars().all()

        return Page(items=list(rows), total=total, page=page, limit=limit)

    # --- Gastos ---

    def list_expenses(
        self, user_id: int, page: int = 1, limit: int = 50, filter_by: Optional[str] = None
    ) -> Tuple[Page, Decimal]:
        """Gastos del más reciente al más antiguo, filtrables por título; devuelve también el total filtrado."""
        _check_paging(page, limit)

        conditions = [Expense.user_id == user_id]
        if filter_by:
            conditions.append(Expense.title.ilike(f"%{filter_by}%"))

        with self._reader("fetch expenses") as session:
            total, total_amount = session.execute(
                select(func.count(Expense.id), func.coalesce(func.sum(Expense.amount), 0)).where(*conditions)
            ).one()
            rows = session.execute(
                select(Expense)
                .where(*conditions)
                .order_by(Expense.created_at.desc(), Expense.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            ).scalars().all()

        return Page(items=list(rows), total=total, page=page, limit=limit), Decimal(str(total_amount))

    def get_expense(self, expense_id: int) -> Expense:
        with self._reader("fetch the expense") as session:
            expense = session.get(Expense, expense_id)
        if expense is None:
            raise NotFound("Expense not found")
        return expense

    def add_expense(self, user_id: int, title: Optional[str], category: Optional[str], amount) -> Decimal:
        """Registra un gasto y lo descuenta del saldo del usuario."""
        if not user_id:
            raise InvalidArgument("Not Authorized")
        amount = _check_expense_fields(title, category, amount)

        with self._transaction("add the expense and update the balance") as session:
            session.add(Expense(user_id=user_id, title=title.strip(), category=category.strip(), amount=amount))
            new_amount = store.increment_balance(session, user_id, -amount)
            if new_amount is None:
                raise NotFound("Balance not found for the user")
            _check_result(new_amount)
            self._record(session, user_id, -amount, new_amount)

        logger.info(f"Gasto de {amount} agregado para el usuario {user_id}: saldo ahora {new_amount}")
        return new_amount

    def update_expense(
        self, expense_id: int, user_id: int, title: Optional[str], category: Optional[str], amount
    ) -> None:
        """Edita un gasto; el saldo absorbe la diferencia entre el monto anterior y el nuevo."""
        if not user_id:
            raise InvalidArgument("Not Authorized")
        amount = _check_expense_fields(title, category, amount)

        with self._transaction("update the expense and adjust the balance") as session:
            expense = session.execute(
                select(Expense)
                .where(Expense.id == expense_id, Expense.user_id == user_id)
                .with_for_update()
            ).scalar_one_or_none()
            if expense is None:
                raise NotFound("Expense not found")

            difference = amount - expense.amount
            if difference != 0:
                new_amount = store.increment_balance(session, user_id, -difference)
                if new_amount is None:
                    raise NotFound("Balance not found for the user")
                _check_result(new_amount)
                self._record(session, user_id, -difference, new_amount)

            expense.title = title.strip()
            expense.category = category.strip()
            expense.amount = amount

        logger.info(f"Gasto {expense_id} del usuario {user_id} actualizado (diferencia {difference})")

    def delete_expense(self, expense_id: int) -> Decimal:
        """
        Elimina un gasto y devuelve su monto al saldo. Si el dueño no tiene
        fila de saldo se aborta toda la operación y el gasto se conserva.
        """
        with self._transaction("delete the expense and update the balance") as session:
            expense = session.execute(
                select(Expense).where(Expense.id == expense_id).with_for_update()
            ).scalar_one_or_none()
            if expense is None:
                raise NotFound("Expense not found")

            user_id, amount = expense.user_id, expense.amount
            session.delete(expense)
            new_amount = store.increment_balance(session, user_id, amount)
            if new_amount is None:
                raise NotFound("Balance not found for the user")
            _check_result(new_amount)
            self._record(session, user_id, amount, new_amount)

        logger.info(f"Gasto {expense_id} del usuario {user_id} eliminado: {amount} acreditado, saldo ahora {new_amount}")
        return new_amount

    # --- Usuarios ---

    def purge_user(self, user_id: int) -> None:
        """Elimina todas las filas del ledger de un usuario; se llama cuando el usuario se borra."""
        with self._transaction("remove the user's ledger data") as session:
            session.execute(delete(Expense).where(Expense.user_id == user_id))
            session.execute(delete(HistoryEntry).where(HistoryEntry.user_id == user_id))
            session.execute(delete(Balance).where(Balance.user_id == user_id))

        logger.info(f"Datos del ledger del usuario {user_id} eliminados")
