"""Configuración de la conexión a la base de datos del Ledger Service usando SQLAlchemy."""

import os
import logging
from typing import Optional

from sqlalchemy import create_engine, exc, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

# Configuración del logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Carga variables de entorno desde el archivo .env
load_dotenv()

# Clase base declarativa para las tablas del ledger (balances, expenses, balance_history)
Base = declarative_base()


def get_database_url() -> str:
    """
    Devuelve la URL de conexión de la base de datos del ledger.
    DATABASE_URL tiene prioridad; si no, se arma con las variables DB_* (MariaDB vía PyMySQL).
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    required_db_vars = {"DB_USER", "DB_PASS", "DB_HOST", "DB_NAME"}
    missing_vars = required_db_vars - set(os.environ)
    if missing_vars:
        logger.error(f"Faltan variables de entorno para la base de datos: {', '.join(sorted(missing_vars))}")

    return (
        f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
        f"@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
    )


def create_db_engine(url: Optional[str] = None) -> Engine:
    """
    Crea el motor (Engine) de SQLAlchemy. pool_pre_ping maneja conexiones inactivas en el pool.
    Con SQLite las conexiones se comparten entre hilos, así que se desactiva check_same_thread.
    """
    url = url or get_database_url()
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Fábrica de sesiones que recibe el LedgerService; una sesión por operación."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Crea las tablas del ledger si todavía no existen."""
    # Registra los modelos en Base.metadata
    import ledger_service.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Tablas del ledger verificadas/creadas.")


def ping(engine: Engine) -> bool:
    """Ejecuta SELECT 1 contra la base de datos; lo usa el health check."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except exc.SQLAlchemyError as e:
        logger.error(f"Fallo en el health check de la base de datos: {e}", exc_info=True)
        return False
