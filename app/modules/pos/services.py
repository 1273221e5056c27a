"""
Servicios de negocio para el módulo POS (caixa)

- CashMovementService: libro de suprimentos/sangrias
- CashSessionService: ciclo de vida de la sesión y arqueo
- POSSaleService: vínculo venta-sesión y reglas de propiedad
- CashSessionRegistryService: listado filtrado de sesiones

Cada transición es una única transacción: o se aplica completa (incluidos
contadores y auditoría) o se hace rollback de todo.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4
import logging

from sqlalchemy import String, cast, exists, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.common.dates import local_range_utc, local_today, to_local, utcnow
from app.common.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from app.common.retry import retry_on_transient
from app.core.config import settings
from app.modules.auth.models import User
from app.modules.auth.schemas import AuthContext
from app.modules.pos import reconciliation
from app.modules.pos.models import (
    AuditAction,
    CashAuditLog,
    CashMovement,
    CashSession,
    CashSessionStatus,
    MovementType,
)
from app.modules.pos.permissions import (
    AuthorizationDecision,
    Capability,
    authorize,
    capability_for_operation,
    ensure_authorized,
)
from app.modules.pos.schemas import (
    CashMovementCreate,
    CashMovementOut,
    CashSessionFilters,
    CashSessionListItem,
    CashSessionOut,
    CashSessionSummary,
)
from app.modules.sales.models import Sale, SaleOrigin, SaleStatus
from app.modules.sales.schemas import SaleCreate, SaleFilters, SaleUpdate
from app.modules.sales.service import InventoryRestorer, SaleService

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    action: AuditAction,
    user_id,
    description: str,
    session_id=None,
    sale_id: Optional[str] = None,
) -> CashAuditLog:
    """Agrega la entrada de auditoría a la transacción en curso."""
    entry = CashAuditLog(
        action=action,
        user_id=user_id,
        description=description,
        session_id=session_id,
        sale_id=sale_id,
        created_at=utcnow(),
    )
    db.add(entry)
    return entry


def _money(value) -> str:
    return f"R$ {reconciliation.to_decimal(value):.2f}"


class CashMovementService:
    """Servicio para el libro de movimientos de caja"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def validate(data: CashMovementCreate) -> Tuple[MovementType, Decimal, str]:
        """Valida antes de cualquier escritura; devuelve (tipo, monto, motivo)."""
        try:
            movement_type = MovementType(data.type)
        except ValueError:
            raise ValidationError("Tipo de movimentação inválido.")

        try:
            amount = reconciliation.to_decimal(data.amount)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("Valor inválido para a movimentação.")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("O valor da movimentação deve ser maior que zero.")
        if not reconciliation.fits_money_column(amount):
            raise ValidationError("Valor inválido: use no máximo duas casas decimais e até 13 dígitos inteiros.")

        reason = (data.reason or "").strip()
        if not reason:
            raise ValidationError("Informe o motivo da movimentação.")

        return movement_type, amount, reason

    def append(
        self,
        session: CashSession,
        movement_type: MovementType,
        amount: Decimal,
        reason: str,
        user_id,
    ) -> CashMovement:
        """
        Inserta el movimiento y actualiza los agregados de la sesión sin
        hacer commit. Único camino que modifica deposits / withdrawals.
        """
        movement = CashMovement(
            id=uuid4(),
            session_id=session.id,
            type=movement_type,
            amount=amount,
            reason=reason,
            user_id=user_id,
            timestamp=utcnow(),
        )
        self.db.add(movement)

        if movement_type == MovementType.SUPRIMENTO:
            session.deposits = reconciliation.to_decimal(session.deposits) + amount
            session.cash_in_register = reconciliation.to_decimal(session.cash_in_register) + amount
            action, label = AuditAction.CASH_SUPPLY, "Suprimento"
        else:
            session.withdrawals = reconciliation.to_decimal(session.withdrawals) + amount
            session.cash_in_register = reconciliation.to_decimal(session.cash_in_register) - amount
            action, label = AuditAction.CASH_WITHDRAWAL, "Sangria"

        record_audit(
            self.db,
            action,
            user_id,
            f"{label} de {_money(amount)} no {session.label}: {reason}",
            session_id=session.id,
        )
        return movement

    def add_movement(self, session_id: UUID, data: CashMovementCreate, user_id) -> CashSession:
        """Registra un movimiento y devuelve la sesión actualizada."""
        movement_type, amount, reason = self.validate(data)

        session = (
            self.db.query(CashSession)
            .filter(CashSession.id == session_id)
            .with_for_update()
            .first()
        )
        if not session:
            raise NotFoundError("Caixa não encontrado.")

        try:
            self.append(session, movement_type, amount, reason, user_id)
            self.db.commit()
            self.db.refresh(session)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error registrando movimiento en sesión {session_id}")
            raise

        logger.info(f"{movement_type.value} de {amount} en {session.label} por {user_id}")
        return session

    @retry_on_transient
    def list_movements(self, session_id: UUID, movement_type: Optional[MovementType] = None) -> List[CashMovement]:
        """Movimientos de la sesión, más recientes primero"""
        if not self.db.query(exists().where(CashSession.id == session_id)).scalar():
            raise NotFoundError("Caixa não encontrado.")

        query = self.db.query(CashMovement).filter(CashMovement.session_id == session_id)
        if movement_type:
            query = query.filter(CashMovement.type == movement_type)
        return query.order_by(CashMovement.timestamp.desc()).all()

    @staticmethod
    def summarize(movements: List[CashMovement]) -> Dict:
        deposits = sum(
            (m.amount for m in movements if m.type == MovementType.SUPRIMENTO), Decimal("0")
        )
        withdrawals = sum(
            (m.amount for m in movements if m.type == MovementType.SANGRIA), Decimal("0")
        )
        return {
            "total_deposits": deposits,
            "total_withdrawals": withdrawals,
            "count": len(movements),
        }

    def ledger_totals(self, session_id: UUID) -> Tuple[Decimal, Decimal]:
        """(suprimentos, sangrias) sumados desde las filas del libro"""
        rows = (
            self.db.query(CashMovement.type, CashMovement.amount)
            .filter(CashMovement.session_id == session_id)
            .all()
        )
        deposits = sum((amount for kind, amount in rows if kind == MovementType.SUPRIMENTO), Decimal("0"))
        withdrawals = sum((amount for kind, amount in rows if kind == MovementType.SANGRIA), Decimal("0"))
        return deposits, withdrawals


class CashSessionService:
    """Servicio para el ciclo de vida de las sesiones de caja"""

    def __init__(self, db: Session):
        self.db = db

    def get_session(self, session_id: UUID) -> CashSession:
        session = self.db.query(CashSession).filter(CashSession.id == session_id).first()
        if not session:
            raise NotFoundError("Caixa não encontrado.")
        return session

    def _get_for_update(self, session_id: UUID) -> CashSession:
        session = (
            self.db.query(CashSession)
            .filter(CashSession.id == session_id)
            .with_for_update()
            .first()
        )
        if not session:
            raise NotFoundError("Caixa não encontrado.")
        return session

    def ensure_can_view(self, session_id: UUID, actor: AuthContext) -> CashSession:
        session = self.get_session(session_id)
        ensure_authorized(Capability.VIEW_SESSION, actor, session)
        return session

    def get_current_session(self, user_id) -> Optional[CashSession]:
        """Sesión abierta del operador, si existe"""
        return (
            self.db.query(CashSession)
            .filter(
                CashSession.user_id == user_id,
                CashSession.status == CashSessionStatus.ABERTO,
            )
            .first()
        )

    def _open_session_of(self, user_id, exclude_id=None) -> Optional[CashSession]:
        query = self.db.query(CashSession).filter(
            CashSession.user_id == user_id,
            CashSession.status == CashSessionStatus.ABERTO,
        )
        if exclude_id is not None:
            query = query.filter(CashSession.id != exclude_id)
        return query.first()

    def _next_display_id(self) -> int:
        return (self.db.query(func.max(CashSession.display_id)).scalar() or 0) + 1

    def open_session(self, user_id, opening_balance) -> CashSession:
        """
        Abrir caja para el operador.

        La verificación previa cubre el caso normal; el índice único parcial
        rechaza en el commit la apertura concurrente desde otro dispositivo.
        """
        try:
            balance = reconciliation.to_decimal(opening_balance)
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError("Fundo de troco inválido.")
        if not balance.is_finite() or balance < 0:
            raise ValidationError("O fundo de troco não pode ser negativo.")
        if not reconciliation.fits_money_column(balance):
            raise ValidationError("Fundo de troco inválido: use no máximo duas casas decimais e até 13 dígitos inteiros.")

        current = self.get_current_session(user_id)
        if current:
            raise ConflictError(
                f"Você já possui um caixa aberto ({current.label}). Feche-o antes de abrir outro."
            )

        session = CashSession(
            id=uuid4(),
            display_id=self._next_display_id(),
            user_id=user_id,
            status=CashSessionStatus.ABERTO,
            opening_balance=balance,
            deposits=Decimal("0"),
            withdrawals=Decimal("0"),
            transactions_value=Decimal("0"),
            cash_in_register=balance,
            open_time=utcnow(),
            close_time=None,
        )
        self.db.add(session)
        record_audit(
            self.db,
            AuditAction.CASH_OPEN,
            user_id,
            f"{session.label} aberto com fundo de troco de {_money(balance)}",
            session_id=session.id,
        )

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self._open_session_of(user_id):
                logger.warning(f"Apertura concurrente rechazada para usuario {user_id}")
                raise ConflictError("Você já possui um caixa aberto. Feche-o antes de abrir outro.")
            raise ConflictError("Não foi possível abrir o caixa agora. Tente novamente.")
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error abriendo caja para usuario {user_id}")
            raise

        self.db.refresh(session)
        logger.info(f"{session.label} abierto por {user_id} con {balance}")
        return session

    def close_session(self, session_id: UUID, actor: AuthContext) -> CashSession:
        """Cerrar caja: sólo el dueño o un administrador"""
        session = self._get_for_update(session_id)
        ensure_authorized(Capability.CLOSE_SESSION, actor, session)

        if not session.is_open:
            raise InvalidStateError(f"O {session.label} já está fechado.")

        session.status = CashSessionStatus.FECHADO
        session.close_time = utcnow()
        record_audit(
            self.db,
            AuditAction.CASH_CLOSE,
            actor.user_id,
            f"{session.label} fechado com {_money(session.cash_in_register)} em caixa",
            session_id=session.id,
        )

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error cerrando {session.label}")
            raise

        self.db.refresh(session)
        logger.info(f"{session.label} cerrado por {actor.user_id}")
        return session

    def _opened_today(self, session: CashSession) -> bool:
        return to_local(session.open_time).date() == local_today()

    def reopen_session(self, session_id: UUID, actor: AuthContext) -> CashSession:
        """
        Reabrir caja cerrada.

        Ni quien reabre ni el dueño de la sesión pueden quedar con dos
        sesiones abiertas. Fuera de administradores, sólo se reabren cajas
        abiertas el mismo día (CASH_SESSION_REOPEN_SAME_DAY_ONLY).
        """
        session = self._get_for_update(session_id)
        ensure_authorized(Capability.REOPEN_SESSION, actor, session)

        if session.is_open:
            raise InvalidStateError(f"O {session.label} já está aberto.")

        if settings.CASH_SESSION_REOPEN_SAME_DAY_ONLY and not actor.is_admin and not self._opened_today(session):
            raise PolicyViolation("Só é possível reabrir caixas abertos hoje.")

        if self._open_session_of(actor.user_id, exclude_id=session.id):
            raise ConflictError("Você já possui um caixa aberto. Feche-o antes de reabrir este.")
        if session.user_id != actor.user_id and self._open_session_of(session.user_id, exclude_id=session.id):
            raise ConflictError("O operador deste caixa já possui outro caixa aberto.")

        session.status = CashSessionStatus.ABERTO
        session.close_time = None
        record_audit(
            self.db,
            AuditAction.CASH_REOPEN,
            actor.user_id,
            f"{session.label} reaberto",
            session_id=session.id,
        )

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Este operador já possui um caixa aberto.")
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error reabriendo {session.label}")
            raise

        self.db.refresh(session)
        logger.info(f"{session.label} reabierto por {actor.user_id}")
        return session

    def register_movement(self, session_id: UUID, data: CashMovementCreate, actor: AuthContext) -> CashSession:
        """Suprimento/sangria desde la caja: dueño o admin, sesión abierta"""
        ledger = CashMovementService(self.db)
        movement_type, amount, reason = ledger.validate(data)

        session = self._get_for_update(session_id)
        ensure_authorized(Capability.MOVE_CASH, actor, session)
        if not session.is_open:
            raise InvalidStateError(f"O {session.label} está fechado; não é possível movimentá-lo.")

        try:
            ledger.append(session, movement_type, amount, reason, actor.user_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error registrando movimiento en {session.label}")
            raise

        self.db.refresh(session)
        logger.info(f"{movement_type.value} de {amount} en {session.label} por {actor.user_id}")
        return session

    @staticmethod
    def apply_sale_posting(session: CashSession, total_delta, cash_delta) -> None:
        """Único camino por el que las ventas tocan los contadores de la sesión"""
        session.transactions_value = (
            reconciliation.to_decimal(session.transactions_value) + reconciliation.to_decimal(total_delta)
        )
        session.cash_in_register = (
            reconciliation.to_decimal(session.cash_in_register) + reconciliation.to_decimal(cash_delta)
        )

    def session_sales(self, session_id: UUID) -> List[Sale]:
        return SaleService(self.db).sales_for_sessions([session_id])

    def derive_cash_in_register(self, session: CashSession, sales: Optional[List[Sale]] = None) -> Decimal:
        if sales is None:
            sales = self.session_sales(session.id)
        return reconciliation.derive_cash_in_register(
            session.opening_balance, sales, session.deposits, session.withdrawals
        )

    @retry_on_transient
    def totals_by_method(self, session_id: UUID) -> Dict[str, Decimal]:
        self.get_session(session_id)
        return reconciliation.totals_by_method(self.session_sales(session_id))

    @retry_on_transient
    def get_summary(self, session_id: UUID, actor: AuthContext) -> CashSessionSummary:
        """Resumen del caixa recalculado desde ventas y movimientos"""
        session = self.get_session(session_id)
        ensure_authorized(Capability.VIEW_SESSION, actor, session)

        sales = self.session_sales(session.id)
        movements = sorted(session.movements, key=lambda m: m.timestamp, reverse=True)

        return CashSessionSummary(
            session=CashSessionOut.model_validate(session),
            opening_balance=session.opening_balance,
            deposits=session.deposits,
            withdrawals=session.withdrawals,
            transactions_value=reconciliation.transactions_total(sales),
            cash_sales=reconciliation.cash_sales_total(sales),
            cash_in_register=self.derive_cash_in_register(session, sales),
            persisted_cash_in_register=session.cash_in_register,
            totals_by_method=reconciliation.totals_by_method(sales),
            movements=[CashMovementOut.model_validate(m) for m in movements],
        )

    def reconcile(self, session_id: UUID, actor: AuthContext, repair: bool = False) -> reconciliation.ReconciliationReport:
        """
        Compara contadores persistidos con los recalculados. Con ``repair``
        (sólo admin) el valor recalculado sobrescribe la caché.
        """
        session = self._get_for_update(session_id) if repair else self.get_session(session_id)
        ensure_authorized(Capability.VIEW_SESSION, actor, session)
        if repair:
            ensure_authorized(Capability.REPAIR_SESSION, actor, session)

        deposits, withdrawals = CashMovementService(self.db).ledger_totals(session.id)
        report = reconciliation.build_report(session, self.session_sales(session.id), deposits, withdrawals)

        if report.is_consistent:
            return report

        logger.warning(
            f"{session.label} con contadores divergentes: "
            + ", ".join(f"{c.name} {c.persisted} != {c.derived}" for c in report.mismatches)
        )
        if not repair:
            return report

        for check in report.mismatches:
            setattr(session, check.name, check.derived)
        record_audit(
            self.db,
            AuditAction.CASH_REPAIR,
            actor.user_id,
            f"{session.label} conciliado: " + ", ".join(c.name for c in report.mismatches),
            session_id=session.id,
        )

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error reparando {session.label}")
            raise

        report.repaired = True
        return report


class POSSaleService:
    """Vínculo venta-sesión y reglas de propiedad sobre ventas"""

    def __init__(self, db: Session, restorer: Optional[InventoryRestorer] = None):
        self.db = db
        self.sales = SaleService(db, restorer)
        self.sessions = CashSessionService(db)

    def _linked_session(self, sale: Sale, for_update: bool = False) -> Optional[CashSession]:
        if sale.cash_session_id is None:
            return None
        query = self.db.query(CashSession).filter(CashSession.id == sale.cash_session_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def authorize(self, sale: Sale, operation: str, actor: AuthContext) -> AuthorizationDecision:
        capability = capability_for_operation(operation)
        session = self._linked_session(sale)
        return authorize(
            capability,
            actor,
            sale,
            session_owner_id=session.user_id if session else None,
        )

    def _ensure(self, sale: Sale, capability: Capability, actor: AuthContext) -> None:
        session = self._linked_session(sale)
        ensure_authorized(
            capability,
            actor,
            sale,
            session_owner_id=session.user_id if session else None,
        )

    def create_sale(self, data: SaleCreate, actor: AuthContext, via_register: bool = True) -> Sale:
        """
        Registrar venta. En el flujo de caja se vincula a la sesión abierta
        de quien la registra y se suma a los contadores de esa sesión.
        """
        session = None
        if via_register:
            session = (
                self.db.query(CashSession)
                .filter(
                    CashSession.user_id == actor.user_id,
                    CashSession.status == CashSessionStatus.ABERTO,
                )
                .with_for_update()
                .first()
            )

        sale = self.sales.build_sale(
            total=data.total,
            payments=data.payments,
            items=data.items,
            status=data.status,
            origin=SaleOrigin.PDV if via_register else SaleOrigin.VENDAS,
            salesperson_id=data.salesperson_id or actor.user_id,
            created_by=actor.user_id,
            cash_session_id=session.id if session else None,
            cash_session_display_id=session.display_id if session else None,
        )

        if session is not None:
            self.sessions.apply_sale_posting(session, sale.total, reconciliation.sale_cash_total(sale))

        record_audit(
            self.db,
            AuditAction.SALE_CREATE,
            actor.user_id,
            f"Venda {sale.id} registrada ({_money(sale.total)})"
            + (f" no {session.label}" if session else ""),
            session_id=session.id if session else None,
            sale_id=sale.id,
        )

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Número de venda já utilizado. Tente novamente.")
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Error registrando venta")
            raise

        self.db.refresh(sale)
        logger.info(
            f"Venta {sale.id} registrada por {actor.user_id}"
            + (f" en {session.label}" if session else " fuera de caja")
        )
        return sale

    def get_sale(self, sale_id: str, actor: AuthContext) -> Sale:
        sale = self.sales.get(sale_id)
        self._ensure(sale, Capability.VIEW_SALE, actor)
        return sale

    def print_sale(self, sale_id: str, actor: AuthContext) -> Dict:
        """Datos del comprobante; la impresión en sí es de otro servicio"""
        sale = self.sales.get(sale_id)
        self._ensure(sale, Capability.PRINT_SALE, actor)
        salesperson = self.db.query(User).filter(User.id == sale.salesperson_id).first()
        return {
            "sale": sale,
            "salesperson_name": salesperson.name if salesperson else None,
            "cash_session_label": (
                f"Caixa #{sale.cash_session_display_id}" if sale.cash_session_display_id else None
            ),
            "printed_at": utcnow(),
        }

    def update_sale(self, sale_id: str, data: SaleUpdate, actor: AuthContext, origin: SaleOrigin) -> Sale:
        """
        Editar venta. Las ventas del PDV se editan en el PDV; desde el
        listado general sólo se permite si la sesión ya no existe.
        """
        sale = self.sales.get(sale_id)
        self._ensure(sale, Capability.EDIT_SALE, actor)

        if sale.is_cancelled:
            raise InvalidStateError("Vendas canceladas não podem ser editadas.")

        session = self._linked_session(sale, for_update=True)
        has_session_reference = sale.cash_session_id is not None or sale.cash_session_display_id is not None

        if origin == SaleOrigin.VENDAS and sale.origin == SaleOrigin.PDV and has_session_reference:
            if session is not None:
                raise PolicyViolation(
                    f"Vendas feitas pelo PDV (Caixa #{sale.cash_session_display_id or '?'}) "
                    "devem ser editadas no próprio PDV."
                )
            logger.warning(f"Venta {sale.id} con caja inexistente; edición permitida desde el listado")

        if session is not None and not session.is_open:
            raise InvalidStateError(f"O {session.label} está fechado; reabra-o para editar esta venda.")

        old_total = reconciliation.to_decimal(sale.total)
        old_cash = reconciliation.sale_cash_total(sale)

        if data.total is not None:
            sale.total = data.total
        if data.payments is not None:
            self.sales.replace_payments(sale, data.payments)
        if data.items is not None:
            sale.items = list(data.items)
        sale.status = SaleStatus.EDITADA

        if session is not None:
            self.sessions.apply_sale_posting(
                session,
                reconciliation.to_decimal(sale.total) - old_total,
                reconciliation.sale_cash_total(sale) - old_cash,
            )

        record_audit(
            self.db,
            AuditAction.SALE_UPDATE,
            actor.user_id,
            f"Venda {sale.id} editada ({_money(old_total)} -> {_money(sale.total)})",
            session_id=session.id if session else None,
            sale_id=sale.id,
        )

        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error editando venta {sale.id}")
            raise

        self.db.refresh(sale)
        return sale

    def cancel_sale(self, sale_id: str, reason: str, actor: AuthContext) -> Sale:
        """
        Cancelar venta: revierte su aporte a los contadores de la sesión y
        pide la restauración de inventario dentro de la misma transacción.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Informe o motivo do cancelamento.")

        sale = self.sales.get(sale_id)
        self._ensure(sale, Capability.CANCEL_SALE, actor)

        if sale.is_cancelled:
            raise InvalidStateError("Esta venda já está cancelada.")

        session = self._linked_session(sale, for_update=True)
        if session is not None:
            self.sessions.apply_sale_posting(
                session,
                -reconciliation.to_decimal(sale.total),
                -reconciliation.sale_cash_total(sale),
            )

        self.sales.mark_cancelled(sale, reason)
        record_audit(
            self.db,
            AuditAction.SALE_CANCEL,
            actor.user_id,
            f"Venda {sale.id} cancelada: {reason}",
            session_id=session.id if session else None,
            sale_id=sale.id,
        )

        try:
            self.sales.restore_inventory(sale)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Error cancelando venta {sale.id}")
            raise

        self.db.refresh(sale)
        logger.info(f"Venta {sale.id} cancelada por {actor.user_id}")
        return sale

    @retry_on_transient
    def list_session_sales(self, session_id: UUID, actor: AuthContext) -> List[Sale]:
        session = self.sessions.get_session(session_id)
        ensure_authorized(Capability.VIEW_SESSION, actor, session)
        return self.sales.sales_for_sessions([session.id])

    def list_sales(self, filters: SaleFilters, actor: AuthContext) -> List[Sale]:
        """Listado general: cada usuario ve las ventas que puede ver"""
        conditions = []
        if not actor.is_admin:
            owned_sessions = select(CashSession.id).where(CashSession.user_id == actor.user_id)
            conditions.append(
                or_(
                    Sale.salesperson_id == actor.user_id,
                    Sale.cash_session_id.in_(owned_sessions),
                )
            )
        return self.sales.list_sales(filters, extra_conditions=conditions)


def normalize_search(term: Optional[str]) -> str:
    """minúsculas, sin espacios ni '#' inicial"""
    return (term or "").strip().lower().lstrip("#").strip()


class CashSessionRegistryService:
    """Registro de sesiones visible para cada usuario"""

    def __init__(self, db: Session):
        self.db = db

    @retry_on_transient
    def list_sessions(self, actor: AuthContext, filters: CashSessionFilters) -> List[CashSessionListItem]:
        """
        Filtros combinados con AND: rango de fechas (día local, inclusivo),
        operador y búsqueda libre por número de caixa, nombre del operador
        o identificador de venta.
        """
        query = self.db.query(CashSession, User.name).join(User, CashSession.user_id == User.id)

        if not actor.is_admin:
            query = query.filter(CashSession.user_id == actor.user_id)
        if filters.user_id:
            query = query.filter(CashSession.user_id == filters.user_id)

        lower, upper = local_range_utc(filters.start_date, filters.end_date)
        if lower:
            query = query.filter(CashSession.open_time >= lower)
        if upper:
            query = query.filter(CashSession.open_time < upper)

        term = normalize_search(filters.search)
        if term:
            sale_term = term[3:] if term.startswith("id-") and len(term) > 3 else term
            query = query.filter(
                or_(
                    cast(CashSession.display_id, String).contains(term, autoescape=True),
                    func.lower(User.name).contains(term, autoescape=True),
                    exists().where(
                        Sale.cash_session_id == CashSession.id,
                        func.lower(Sale.id).contains(sale_term, autoescape=True),
                    ),
                )
            )

        rows = (
            query.order_by(CashSession.open_time.desc(), CashSession.display_id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
            .all()
        )

        sales_by_session: Dict[UUID, List[Sale]] = {}
        for sale in SaleService(self.db).sales_for_sessions([session.id for session, _ in rows]):
            sales_by_session.setdefault(sale.cash_session_id, []).append(sale)

        items = []
        for session, operator_name in rows:
            sales = sales_by_session.get(session.id, [])
            items.append(
                CashSessionListItem(
                    id=session.id,
                    display_id=session.display_id,
                    user_id=session.user_id,
                    operator_name=operator_name,
                    status=session.status,
                    opening_balance=session.opening_balance,
                    deposits=session.deposits,
                    withdrawals=session.withdrawals,
                    transactions_value=reconciliation.transactions_total(sales),
                    cash_in_register=reconciliation.derive_cash_in_register(
                        session.opening_balance, sales, session.deposits, session.withdrawals
                    ),
                    open_time=session.open_time,
                    close_time=session.close_time,
                )
            )
        return items
