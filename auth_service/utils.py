"""Funciones de utilidad para el servicio de autenticación: hash de contraseñas, manejo de JWT y llamadas al ledger."""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import bcrypt
import httpx
from jose import JWTError, jwt
from dotenv import load_dotenv

# Carga variables de entorno desde .env
load_dotenv()

logger = logging.getLogger(__name__)

# --- Configuración de Seguridad ---
SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not SECRET_KEY:
    logger.warning("JWT_SECRET_KEY no está definida en las variables de entorno. Usando clave insegura por defecto para desarrollo.")
    SECRET_KEY = "insecure_default_development_key_change_me"

ALGORITHM = "HS256"

ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# --- Service Discovery ---
LEDGER_SERVICE_URL = os.getenv("LEDGER_SERVICE_URL")
if not LEDGER_SERVICE_URL:
    logger.error("Variable de entorno LEDGER_SERVICE_URL no está definida. Borrar usuarios fallará.")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifica una contraseña plana contra un hash bcrypt almacenado."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Hash mal formado o contraseña sobre el límite de 72 bytes de bcrypt
        return False

def get_password_hash(password: str) -> str:
    """Genera el hash de una contraseña plana usando bcrypt (10 rondas)."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


# --- Utilidades para Tokens JWT ---
def create_access_token(data: Dict) -> str:
    """
    Crea un token JWT con el payload dado y una fecha de expiración.

    Args:
        data: Payload a incluir (ej. {'sub': user_id}).

    Returns:
        El token JWT codificado.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def decode_token(token: str) -> Optional[Dict]:
    """
    Decodifica y valida un token JWT.

    Returns:
        El payload si el token es válido y no expiró; si no, None.
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Fallo en decodificación de token: {e}")
        return None


# --- Llamadas al Ledger ---
async def purge_ledger_data(user_id: int) -> None:
    """
    Pide a ledger_service que elimine el saldo, historial y gastos de un usuario.
    Lanza httpx.HTTPError si el ledger no responde o rechaza la petición.
    """
    if not LEDGER_SERVICE_URL:
        raise httpx.RequestError("LEDGER_SERVICE_URL is not configured")

    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.delete(f"{LEDGER_SERVICE_URL}/users/{user_id}")
        response.raise_for_status()
    logger.info(f"Datos del ledger eliminados para user_id: {user_id}")
