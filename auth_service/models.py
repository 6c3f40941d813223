"""Define el modelo de la tabla 'users' usando SQLAlchemy ORM."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime

from auth_service.db import Base


class User(Base):
    """
    SQLAlchemy model for the 'users' table.
    Stores the login credentials and profile of each user.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # Nombre a mostrar ("nombre apellido")
    name = Column(String(255), nullable=False)

    # Usuario único para el login
    username = Column(String(255), unique=True, index=True, nullable=False)

    # Hash bcrypt; la contraseña en texto plano nunca se guarda
    hashed_password = Column(String(255), nullable=False)

    # Referencia al avatar (nombre de archivo o URL); la subida se gestiona aparte
    image = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # Saldo, historial y gastos viven en ledger_service, indexados por users.id.
