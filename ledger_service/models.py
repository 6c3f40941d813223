"""Define las tablas 'balances', 'expenses' y 'balance_history' usando SQLAlchemy ORM."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index

from ledger_service.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Balance(Base):
    """
    Modelo SQLAlchemy para la tabla 'balances'.
    Guarda el saldo actual de cada usuario; como máximo una fila por usuario.
    """
    __tablename__ = "balances"

    id = Column(Integer, primary_key=True, index=True)

    # Clave foránea lógica a users.id (tabla de auth_service).
    # Única para que los upserts puedan apuntar a ella.
    user_id = Column(Integer, unique=True, index=True, nullable=False)

    # Con signo: los gastos pueden dejar el saldo en negativo.
    amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))


class Expense(Base):
    """Modelo SQLAlchemy para la tabla 'expenses'."""
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class HistoryEntry(Base):
    """
    Modelo SQLAlchemy para la tabla 'balance_history'.
    Registro de auditoría de solo inserción: una fila por cada evento que cambia
    el saldo, con new_balance == remaining_balance + added_balance.
    """
    __tablename__ = "balance_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)

    remaining_balance = Column(Numeric(12, 2), nullable=False)  # antes del cambio
    added_balance = Column(Numeric(12, 2), nullable=False)      # delta con signo
    new_balance = Column(Numeric(12, 2), nullable=False)        # después del cambio

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_balance_history_user_created", "user_id", "created_at"),
    )
