"""Escrituras atómicas de saldo usadas dentro de las transacciones del ledger."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session

from ledger_service.models import Balance

balances = Balance.__table__


def upsert_balance(session: Session, user_id: int, delta: Decimal) -> Decimal:
    """
    Suma delta al saldo del usuario en una sola sentencia; si la fila no existe
    la crea con delta. Devuelve el monto después de la escritura.
    La fila queda bloqueada hasta que termine la transacción que la contiene.
    """
    dialect = session.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
        stmt = insert(balances).values(user_id=user_id, amount=delta)
        stmt = stmt.on_conflict_do_update(
            index_elements=[balances.c.user_id],
            set_={"amount": balances.c.amount + stmt.excluded.amount},
        )
        session.execute(stmt)
    elif dialect in ("mysql", "mariadb"):
        stmt = mysql.insert(balances).values(user_id=user_id, amount=delta)
        stmt = stmt.on_duplicate_key_update(amount=balances.c.amount + stmt.inserted.amount)
        session.execute(stmt)
    else:
        # Sin upsert nativo: bloquea la fila primero y luego inserta o incrementa.
        current = lock_balance(session, user_id)
        if current is None:
            session.execute(balances.insert().values(user_id=user_id, amount=delta))
        else:
            increment_balance(session, user_id, delta)

    return session.execute(
        select(balances.c.amount).where(balances.c.user_id == user_id)
    ).scalar_one()


def increment_balance(session: Session, user_id: int, delta: Decimal) -> Optional[Decimal]:
    """
    Aplica amount = amount + delta sobre una fila existente.
    Devuelve el nuevo monto, o None si el usuario no tiene fila de saldo.
    """
    result = session.execute(
        update(balances)
        .where(balances.c.user_id == user_id)
        .values(amount=balances.c.amount + delta)
    )
    if result.rowcount == 0:
        return None
    return session.execute(
        select(balances.c.amount).where(balances.c.user_id == user_id)
    ).scalar_one()


def lock_balance(session: Session, user_id: int) -> Optional[Decimal]:
    """SELECT ... FOR UPDATE sobre la fila de saldo del usuario; None si no existe."""
    return session.execute(
        select(balances.c.amount).where(balances.c.user_id == user_id).with_for_update()
    ).scalar_one_or_none()


def set_balance(session: Session, user_id: int, amount: Decimal) -> None:
    session.execute(
        update(balances).where(balances.c.user_id == user_id).values(amount=amount)
    )
