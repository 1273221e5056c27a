"""
Servicios de ventas

- SaleService: numeración, construcción, consulta y cancelación de ventas
- InventoryRestorer: puerto hacia inventario, invocado al cancelar
"""

from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from app.common.dates import local_range_utc, utcnow
from app.common.exceptions import NotFoundError
from app.common.retry import retry_on_transient
from app.modules.sales.models import Sale, SalePayment, SaleStatus, SaleOrigin
from app.modules.sales.schemas import SaleFilters, SalePaymentIn

logger = logging.getLogger(__name__)


class InventoryRestorer(Protocol):
    """Devuelve al stock los ítems de una venta cancelada."""

    def restore(self, sale: Sale) -> None:
        raise NotImplementedError


class LoggingInventoryRestorer:
    """
    Restaurador por defecto: el inventario vive en otro servicio, aquí sólo
    se deja constancia de los ítems que deben volver al stock.
    """

    def restore(self, sale: Sale) -> None:
        for item in sale.items or []:
            logger.info(
                f"Estoque a restaurar pela venda {sale.id}: "
                f"{item.get('name') or item.get('product_id')} x {item.get('quantity', 1)}"
            )


def normalize_sale_id(sale_id: str) -> str:
    """Acepta '#ID-12', 'id-12' o '12' y devuelve 'ID-12'."""
    cleaned = sale_id.strip().lstrip("#").strip().upper()
    if cleaned.isdigit():
        return f"ID-{cleaned}"
    return cleaned


class SaleService:
    """Acceso a ventas y pagos"""

    def __init__(self, db: Session, restorer: Optional[InventoryRestorer] = None):
        self.db = db
        self.restorer = restorer or LoggingInventoryRestorer()

    def next_identifier(self) -> Tuple[int, str]:
        """Siguiente número de venta (``ID-<n>``); la unicidad la garantiza la BD."""
        current = self.db.query(func.max(Sale.sequence)).scalar() or 0
        sequence = current + 1
        return sequence, f"ID-{sequence}"

    def build_sale(
        self,
        *,
        total: Decimal,
        payments: Sequence[SalePaymentIn],
        items: list,
        status: SaleStatus,
        origin: SaleOrigin,
        salesperson_id,
        created_by,
        cash_session_id=None,
        cash_session_display_id: Optional[int] = None,
    ) -> Sale:
        """Crea la venta en la sesión SQLAlchemy sin hacer commit."""
        sequence, sale_id = self.next_identifier()
        sale = Sale(
            id=sale_id,
            sequence=sequence,
            total=total,
            items=list(items),
            status=status,
            origin=origin,
            salesperson_id=salesperson_id,
            created_by=created_by,
            cash_session_id=cash_session_id,
            cash_session_display_id=cash_session_display_id,
            date=utcnow(),
        )
        self.replace_payments(sale, payments)
        self.db.add(sale)
        return sale

    @staticmethod
    def replace_payments(sale: Sale, payments: Sequence[SalePaymentIn]) -> None:
        sale.payments = [
            SalePayment(position=position, method=payment.method, value=payment.value, fees=payment.fees)
            for position, payment in enumerate(payments)
        ]

    def find(self, sale_id: str) -> Optional[Sale]:
        return (
            self.db.query(Sale)
            .options(selectinload(Sale.payments))
            .filter(Sale.id == normalize_sale_id(sale_id))
            .first()
        )

    def get(self, sale_id: str) -> Sale:
        sale = self.find(sale_id)
        if not sale:
            raise NotFoundError("Venda não encontrada.")
        return sale

    @retry_on_transient
    def list_sales(self, filters: SaleFilters, extra_conditions: Sequence = ()) -> List[Sale]:
        """Ventas filtradas, más recientes primero."""
        query = self.db.query(Sale).options(selectinload(Sale.payments))

        if filters.salesperson_id:
            query = query.filter(Sale.salesperson_id == filters.salesperson_id)
        if filters.cash_session_id:
            query = query.filter(Sale.cash_session_id == filters.cash_session_id)
        if filters.status:
            query = query.filter(Sale.status == filters.status)

        lower, upper = local_range_utc(filters.start_date, filters.end_date)
        if lower:
            query = query.filter(Sale.date >= lower)
        if upper:
            query = query.filter(Sale.date < upper)

        for condition in extra_conditions:
            query = query.filter(condition)

        return (
            query.order_by(Sale.date.desc(), Sale.sequence.desc())
            .offset(filters.offset)
            .limit(filters.limit)
            .all()
        )

    def sales_for_sessions(self, session_ids: Sequence) -> List[Sale]:
        if not session_ids:
            return []
        return (
            self.db.query(Sale)
            .options(selectinload(Sale.payments))
            .filter(Sale.cash_session_id.in_(list(session_ids)))
            .order_by(Sale.date.desc(), Sale.sequence.desc())
            .all()
        )

    @staticmethod
    def mark_cancelled(sale: Sale, reason: str) -> None:
        sale.status = SaleStatus.CANCELADA
        sale.cancellation_reason = reason

    def restore_inventory(self, sale: Sale) -> None:
        self.restorer.restore(sale)
