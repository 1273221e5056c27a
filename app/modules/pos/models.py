"""
Modelos SQLAlchemy para el módulo POS (caixa)

Este módulo maneja la sesión de caja del operador:
- CashSession: apertura/cierre/reapertura con contadores de arqueo
- CashMovement: suprimentos y sangrias (libro append-only)
- CashAuditLog: rastro de auditoría de transiciones y ventas

Reglas de integridad:
- Un operador tiene como máximo una sesión 'aberto' (índice único parcial)
- close_time sólo se llena cuando status = 'fechado'
- Los montos de movimientos se guardan siempre positivos
"""

from app.database.database import Base
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text,
    CheckConstraint, Index, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from decimal import Decimal
from uuid import uuid4
from app.common.dates import utcnow
from app.common.mixins import TimestampMixin
import enum


# ===== ENUMS =====

class CashSessionStatus(str, enum.Enum):
    """Estados de la sesión de caja"""
    ABERTO = "aberto"     # Caja abierta
    FECHADO = "fechado"   # Caja cerrada


class MovementType(str, enum.Enum):
    """Tipos de movimiento de caja"""
    SUPRIMENTO = "suprimento"   # Ingreso manual de efectivo
    SANGRIA = "sangria"         # Retiro manual de efectivo


class AuditAction(str, enum.Enum):
    CASH_OPEN = "cash_open"
    CASH_CLOSE = "cash_close"
    CASH_REOPEN = "cash_reopen"
    CASH_SUPPLY = "cash_supply"
    CASH_WITHDRAWAL = "cash_withdrawal"
    CASH_REPAIR = "cash_repair"
    SALE_CREATE = "sale_create"
    SALE_UPDATE = "sale_update"
    SALE_CANCEL = "sale_cancel"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ===== MODELOS =====

class CashSession(Base, TimestampMixin):
    """
    Sesión de caja de un operador

    deposits / withdrawals sólo los modifica el libro de movimientos.
    transactions_value / cash_in_register son contadores que se mantienen
    con cada venta y movimiento; la lectura siempre vuelve a derivarlos.
    """
    __tablename__ = "cash_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    display_id = Column(Integer, nullable=False, unique=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(
        Enum(CashSessionStatus, name="cash_session_status", values_callable=_enum_values),
        nullable=False,
        default=CashSessionStatus.ABERTO,
        index=True,
    )

    # Balances
    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    deposits = Column(Numeric(15, 2), nullable=False, default=0)
    withdrawals = Column(Numeric(15, 2), nullable=False, default=0)
    transactions_value = Column(Numeric(15, 2), nullable=False, default=0)
    cash_in_register = Column(Numeric(15, 2), nullable=False, default=0)

    # Control de apertura/cierre
    open_time = Column(DateTime, nullable=False, default=utcnow, index=True)
    close_time = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    movements = relationship(
        "CashMovement",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="CashMovement.timestamp.desc()",
    )
    sales = relationship("Sale", back_populates="cash_session", passive_deletes=True)

    __table_args__ = (
        Index(
            "uq_cash_sessions_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'aberto'"),
            sqlite_where=text("status = 'aberto'"),
        ),
        CheckConstraint(
            "(status = 'aberto' AND close_time IS NULL) OR (status = 'fechado' AND close_time IS NOT NULL)",
            name="ck_cash_sessions_close_time",
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status == CashSessionStatus.ABERTO

    @property
    def label(self) -> str:
        return f"Caixa #{self.display_id}"

    def __repr__(self):
        return f"<CashSession(display_id={self.display_id}, status='{self.status}')>"


class CashMovement(Base):
    """
    Movimiento de caja

    - SUPRIMENTO: ingreso manual de efectivo
    - SANGRIA: retiro manual de efectivo
    """
    __tablename__ = "cash_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cash_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(
        Enum(MovementType, name="cash_movement_type", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    amount = Column(Numeric(15, 2), nullable=False)  # Siempre el valor absoluto
    reason = Column(Text, nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    session = relationship("CashSession", back_populates="movements")
    user = relationship("User")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cash_movements_amount_positive"),
    )

    @property
    def signed_amount(self) -> Decimal:
        """Monto con signo según el tipo (positivo para suprimento)"""
        if self.type == MovementType.SANGRIA:
            return -self.amount
        return self.amount


class CashAuditLog(Base):
    """Rastro de auditoría; se escribe en la misma transacción que registra"""
    __tablename__ = "cash_audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    action = Column(
        Enum(AuditAction, name="cash_audit_action", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    session_id = Column(UUID(as_uuid=True), ForeignKey("cash_sessions.id", ondelete="SET NULL"), nullable=True, index=True)
    sale_id = Column(String(30), ForeignKey("sales.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    session = relationship("CashSession")
    sale = relationship("Sale")
    user = relationship("User")
