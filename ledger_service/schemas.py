"""Modelos Pydantic (schemas) para las peticiones y respuestas del Ledger Service."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Schemas de Saldo ---

class BalanceAdjust(BaseModel):
    """Cuerpo de POST /balance/{user_id}. Los rangos se validan en el servicio."""
    added_balance: Optional[Decimal] = None

class BalanceSet(BaseModel):
    """Cuerpo de PUT /balance/{user_id}."""
    new_balance: Optional[Decimal] = None

class BalanceResponse(BaseModel):
    balance: float

class BalanceChangeResponse(BaseModel):
    message: str
    new_balance: float

class HistoryEntryResponse(BaseModel):
    id: int
    user_id: int
    remaining_balance: float
    added_balance: float
    new_balance: float
    history_date: datetime = Field(validation_alias="created_at")

    model_config = ConfigDict(from_attributes=True)

class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int

class HistoryResponse(BaseModel):
    history: List[HistoryEntryResponse]
    pagination: Pagination


# --- Schemas de Gastos ---

class ExpenseRequest(BaseModel):
    """Cuerpo de POST /expenses y PUT /expenses/{id}; el frontend envía userId en camelCase."""
    user_id: Optional[int] = Field(default=None, alias="userId")
    title: Optional[str] = None
    category: Optional[str] = None
    amount: Optional[Decimal] = None

    model_config = ConfigDict(populate_by_name=True)

class ExpenseResponse(BaseModel):
    id: int
    user_id: int
    title: str
    category: str
    amount: float
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ExpenseListResponse(BaseModel):
    data: List[ExpenseResponse]
    pagination: Pagination
    totalAmount: float

class MessageResponse(BaseModel):
    message: str
