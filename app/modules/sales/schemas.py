"""
Esquemas Pydantic para ventas
"""

from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import date, datetime

from app.core.config import settings
from app.modules.sales.models import SaleStatus, SaleOrigin


# ===== PAYMENT SCHEMAS =====

class SalePaymentIn(BaseModel):
    """Pago informado al registrar o editar una venta"""
    method: str = Field(..., min_length=1, max_length=50, description="Método de pago (ex.: Dinheiro, Pix)")
    value: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2, description="Valor pagado")
    fees: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2, description="Tarifas de la operadora")

    @field_validator('method')
    @classmethod
    def validate_method(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError('O método de pagamento não pode estar vazio')
        return cleaned


class SalePaymentOut(BaseModel):
    method: str
    value: Decimal
    fees: Optional[Decimal] = None

    model_config = {"from_attributes": True}


# ===== SALE SCHEMAS =====

class SaleCreate(BaseModel):
    """Esquema para registrar una venta"""
    total: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2, description="Total de la venta")
    payments: List[SalePaymentIn] = Field(default_factory=list)
    items: List[Dict[str, Any]] = Field(default_factory=list, description="Ítems vendidos")
    status: SaleStatus = Field(default=SaleStatus.FINALIZADA)
    salesperson_id: Optional[UUID] = Field(None, description="Vendedor; por defecto quien registra")

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: SaleStatus) -> SaleStatus:
        if v in (SaleStatus.CANCELADA, SaleStatus.EDITADA):
            raise ValueError('Status inicial inválido para uma venda')
        return v


class SaleUpdate(BaseModel):
    """Esquema para editar una venta; sólo se aplican los campos enviados"""
    total: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    payments: Optional[List[SalePaymentIn]] = None
    items: Optional[List[Dict[str, Any]]] = None


class SaleCancel(BaseModel):
    reason: str = Field(..., max_length=500, description="Motivo del cancelamiento")


class SaleOut(BaseModel):
    id: str
    cash_session_id: Optional[UUID] = None
    cash_session_display_id: Optional[int] = None
    salesperson_id: UUID
    created_by: UUID
    status: SaleStatus
    origin: SaleOrigin
    total: Decimal
    items: List[Dict[str, Any]] = []
    cancellation_reason: Optional[str] = None
    date: datetime
    payments: List[SalePaymentOut] = []

    model_config = {"from_attributes": True}


class SalePrintOut(BaseModel):
    """Datos que el colaborador de impresión necesita para el comprobante"""
    sale: SaleOut
    salesperson_name: Optional[str] = None
    cash_session_label: Optional[str] = None
    printed_at: datetime


class SaleFilters(BaseModel):
    salesperson_id: Optional[UUID] = None
    cash_session_id: Optional[UUID] = None
    status: Optional[SaleStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    limit: int = Field(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)
