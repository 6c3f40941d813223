"""Configuración de la conexión a la base de datos MariaDB del Auth Service usando SQLAlchemy."""

import os
import logging

from fastapi import HTTPException
from sqlalchemy import create_engine, exc
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv

# Configuración del logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Carga variables de entorno desde el archivo .env
load_dotenv()


def get_database_url() -> str:
    """DATABASE_URL tiene prioridad; si no, las mismas variables DB_* que usa el ledger (MariaDB compartida)."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    return (
        f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
        f"@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
    )


# Fábrica de sesiones; se liga a un engine al iniciar (o desde las pruebas).
SessionLocal = sessionmaker(autoflush=False)

# Clase base declarativa para la tabla 'users'.
Base = declarative_base()


def init_engine(url: str = None):
    """Crea el engine, liga SessionLocal a él y crea las tablas que falten."""
    url = url or get_database_url()
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    SessionLocal.configure(bind=engine)

    import auth_service.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Tablas de la base de datos verificadas/creadas.")
    return engine


# --- Función de Dependencia para FastAPI ---
def get_db():
    """
    Entrega una sesión de base de datos por petición y siempre la cierra.
    Los errores de base de datos hacen rollback y se devuelven como 500.
    """
    if SessionLocal.kw.get("bind") is None:
        logger.error("La fábrica de sesiones de base de datos no está inicializada.")
        raise HTTPException(status_code=503, detail="Database service unavailable.")

    db = SessionLocal()
    try:
        yield db
    except exc.SQLAlchemyError as e:
        logger.error(f"Error de base de datos durante la petición: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal database error.")
    finally:
        db.close()
