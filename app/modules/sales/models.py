"""
Modelos SQLAlchemy para ventas

Sólo el subconjunto que el cierre de caja necesita:
- Sale: venta con vínculo opcional a una sesión de caja
- SalePayment: pagos ordenados por posición (método libre, valor, tarifas)

Las ventas creadas en el PDV quedan ligadas a la sesión abierta del
operador que las registró; las del listado general de ventas no.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Enum, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from app.common.dates import utcnow
from uuid import uuid4
from app.common.mixins import TimestampMixin
import enum


# ===== ENUMS =====

class SaleStatus(str, enum.Enum):
    """Estados de venta"""
    FINALIZADA = "Finalizada"
    PENDENTE = "Pendente"
    CANCELADA = "Cancelada"
    EDITADA = "Editada"
    RASCUNHO = "Rascunho"


class SaleOrigin(str, enum.Enum):
    """Flujo por el que se registró la venta"""
    PDV = "PDV"         # Caja registradora
    VENDAS = "Vendas"   # Listado general de ventas


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ===== MODELOS =====

class Sale(Base, TimestampMixin):
    """
    Venta

    El identificador visible es ``ID-<sequence>``. ``cash_session_id`` es nulo
    para ventas fuera del PDV; ``cash_session_display_id`` se conserva aunque
    la sesión deje de existir (registros heredados).
    """
    __tablename__ = "sales"

    id = Column(String(30), primary_key=True)
    sequence = Column(Integer, nullable=False, unique=True)

    cash_session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("cash_sessions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    cash_session_display_id = Column(Integer, nullable=True)

    salesperson_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)

    status = Column(
        Enum(SaleStatus, name="sale_status", values_callable=_enum_values),
        nullable=False,
        default=SaleStatus.FINALIZADA,
        index=True,
    )
    origin = Column(
        Enum(SaleOrigin, name="sale_origin", values_callable=_enum_values),
        nullable=False,
        default=SaleOrigin.VENDAS,
    )
    total = Column(Numeric(15, 2), nullable=False, default=0)
    items = Column(JSON, nullable=False, default=list)  # Opaco: se entrega al restaurador de inventario
    cancellation_reason = Column(Text, nullable=True)
    date = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    payments = relationship(
        "SalePayment",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SalePayment.position",
    )
    cash_session = relationship("CashSession", back_populates="sales")
    salesperson = relationship("User", foreign_keys=[salesperson_id])

    @property
    def is_cancelled(self) -> bool:
        return self.status == SaleStatus.CANCELADA

    def __repr__(self):
        return f"<Sale(id='{self.id}', status='{self.status}', total={self.total})>"


class SalePayment(Base):
    """Pago de una venta (Dinheiro, Pix, Crédito, Aparelho na Troca...)"""
    __tablename__ = "sale_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    sale_id = Column(String(30), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    method = Column(String(50), nullable=False)
    value = Column(Numeric(15, 2), nullable=False)
    fees = Column(Numeric(15, 2), nullable=True)

    sale = relationship("Sale", back_populates="payments")
