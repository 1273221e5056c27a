"""
Esquemas Pydantic para el módulo POS (caixa)

Define la validación de datos de entrada y salida para:
- CashSession: apertura, resumen y listado del registro de sesiones
- CashMovement: suprimentos y sangrias
- Conciliación de contadores y decisiones de autorización

Los montos de movimientos no se restringen aquí: el servicio los valida
para responder con el mensaje de negocio correspondiente.
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID
from datetime import date, datetime

from app.core.config import settings
from app.modules.pos.models import CashSessionStatus, MovementType


# ===== CASH SESSION SCHEMAS =====

class CashSessionOpen(BaseModel):
    """Esquema para abrir caja"""
    opening_balance: Decimal = Field(default=Decimal("0"), description="Fundo de troco")


class CashSessionOut(BaseModel):
    id: UUID
    display_id: int
    user_id: UUID
    status: CashSessionStatus
    opening_balance: Decimal
    deposits: Decimal
    withdrawals: Decimal
    transactions_value: Decimal
    cash_in_register: Decimal
    open_time: datetime
    close_time: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ===== CASH MOVEMENT SCHEMAS =====

class CashMovementCreate(BaseModel):
    """Esquema para registrar suprimento o sangria"""
    type: MovementType
    amount: Decimal = Field(..., description="Valor positivo; o tipo define o sinal")
    reason: str = Field("", max_length=500, description="Motivo obrigatório")


class CashMovementOut(BaseModel):
    id: UUID
    session_id: UUID
    type: MovementType
    amount: Decimal
    reason: str
    user_id: UUID
    timestamp: datetime

    model_config = {"from_attributes": True}


class CashMovementsSummary(BaseModel):
    total_deposits: Decimal
    total_withdrawals: Decimal
    count: int


class CashMovementList(BaseModel):
    movements: List[CashMovementOut]
    summary: CashMovementsSummary


# ===== SUMMARY / REGISTRY SCHEMAS =====

class CashSessionSummary(BaseModel):
    """Resumen del caixa con valores derivados de ventas y movimientos"""
    session: CashSessionOut
    opening_balance: Decimal
    deposits: Decimal
    withdrawals: Decimal
    transactions_value: Decimal
    cash_sales: Decimal
    cash_in_register: Decimal
    persisted_cash_in_register: Decimal
    totals_by_method: Dict[str, Decimal]
    movements: List[CashMovementOut]


class CashSessionListItem(BaseModel):
    id: UUID
    display_id: int
    user_id: UUID
    operator_name: Optional[str] = None
    status: CashSessionStatus
    opening_balance: Decimal
    deposits: Decimal
    withdrawals: Decimal
    transactions_value: Decimal
    cash_in_register: Decimal
    open_time: datetime
    close_time: Optional[datetime] = None


class CashSessionFilters(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    user_id: Optional[UUID] = None
    search: Optional[str] = Field(None, max_length=100)
    limit: int = Field(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)


# ===== RECONCILIATION / AUTHORIZATION SCHEMAS =====

class FieldCheckOut(BaseModel):
    name: str
    persisted: Decimal
    derived: Decimal
    matches: bool


class ReconciliationReportOut(BaseModel):
    session_id: UUID
    is_consistent: bool
    repaired: bool
    checks: List[FieldCheckOut]


class AuthorizationDecisionOut(BaseModel):
    operation: str
    allowed: bool
    reason: Optional[str] = None
