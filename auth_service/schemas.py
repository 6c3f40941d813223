"""Modelos Pydantic (schemas) para validación de entrada/salida en el Servicio de Autenticación."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Schemas de Usuario ---

class UserCreate(BaseModel):
    """Datos de registro. Las dos contraseñas deben coincidir."""
    fname: str = Field(..., min_length=1, description="First name")
    lname: str = Field(..., min_length=1, description="Last name")
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    password2: str
    image: Optional[str] = Field(default=None, description="Avatar reference")

class UserUpdate(UserCreate):
    """La actualización de perfil lleva los mismos campos que el registro."""

class UserResponse(BaseModel):
    """Datos del usuario devueltos al cliente (nunca incluye el hash de la contraseña)."""
    id: int
    name: str
    username: str
    image: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- Schemas de Token ---

class Token(BaseModel):
    """Token JWT devuelto tras un login exitoso."""
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

class TokenPayload(BaseModel):
    """Payload decodificado de un token JWT válido."""
    sub: Optional[str] = None
    exp: Optional[int] = None
    username: Optional[str] = None
