"""
Routers FastAPI para el módulo POS (caixa)

Define los endpoints REST para:
- CashSessions: apertura, cierre, reapertura, resumen y registro de caixas
- CashMovements: suprimentos y sangrias
- POS sales: ventas registradas en la caja
- Sales: listado general de ventas con reglas de propiedad

Los errores de negocio se propagan como DomainError y los traduce el
handler registrado en app.main.
"""

from fastapi import APIRouter, Depends, status, Query, Path
from typing import Optional, List
from uuid import UUID
from datetime import date

from app.core.config import settings
from app.dependencies.dbDependecies import db_dependency
from app.common.exceptions import NotFoundError
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.pos.models import MovementType
from app.modules.pos.services import (
    CashSessionService, CashMovementService,
    POSSaleService, CashSessionRegistryService,
)
from app.modules.pos.schemas import (
    CashSessionOpen, CashSessionOut, CashSessionSummary, CashSessionListItem,
    CashSessionFilters, CashMovementCreate, CashMovementOut, CashMovementList,
    CashMovementsSummary, ReconciliationReportOut, FieldCheckOut,
    AuthorizationDecisionOut,
)
from app.modules.sales.models import SaleOrigin, SaleStatus
from app.modules.sales.schemas import (
    SaleCreate, SaleUpdate, SaleCancel, SaleOut, SalePrintOut, SaleFilters,
)

POS_ROLES = ["owner", "admin", "seller", "cashier"]


# ===== CASH SESSIONS ROUTER =====

cash_sessions_router = APIRouter(prefix="/cash-sessions", tags=["Caixa"])


@cash_sessions_router.post("/open", response_model=CashSessionOut, status_code=status.HTTP_201_CREATED)
async def open_cash_session(
    db: db_dependency,
    session_data: CashSessionOpen,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Abrir caixa para el operador autenticado.

    - **opening_balance**: fundo de troco inicial

    Validaciones:
    - El operador no puede tener otro caixa aberto (409)
    - El fundo de troco no puede ser negativo (400)
    """
    service = CashSessionService(db)
    return service.open_session(auth_context.user_id, session_data.opening_balance)


@cash_sessions_router.get("/current", response_model=CashSessionOut)
async def get_current_cash_session(
    db: db_dependency,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Devuelve el caixa aberto del operador autenticado.

    - 404 si no hay caixa aberto
    """
    session = CashSessionService(db).get_current_session(auth_context.user_id)
    if not session:
        raise NotFoundError("Nenhum caixa aberto para este operador.")
    return session


@cash_sessions_router.get("", response_model=List[CashSessionListItem])
async def list_cash_sessions(
    db: db_dependency,
    start_date: Optional[date] = Query(None, description="Fecha inicial (día local, inclusiva)"),
    end_date: Optional[date] = Query(None, description="Fecha final (día local, inclusiva)"),
    user_id: Optional[UUID] = Query(None, description="Filtrar por operador"),
    search: Optional[str] = Query(None, max_length=100, description="Número do caixa, operador o ID de venta"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Registro de caixas.

    - Usuarios no administradores sólo ven sus propios caixas
    - Los filtros se combinan con AND
    - transactions_value y cash_in_register se recalculan en cada lectura
    """
    filters = CashSessionFilters(
        start_date=start_date, end_date=end_date, user_id=user_id,
        search=search, limit=limit, offset=offset,
    )
    return CashSessionRegistryService(db).list_sessions(auth_context, filters)


@cash_sessions_router.get("/{session_id}", response_model=CashSessionSummary)
async def get_cash_session_summary(
    db: db_dependency,
    session_id: UUID = Path(..., description="ID del caixa"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Resumen del caixa: saldos, totales por método de pago y movimientos.
    """
    return CashSessionService(db).get_summary(session_id, auth_context)


@cash_sessions_router.post("/{session_id}/close", response_model=CashSessionOut)
async def close_cash_session(
    db: db_dependency,
    session_id: UUID = Path(..., description="ID del caixa"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Fechar caixa.

    - Sólo el dueño o un administrador (403)
    - Un caixa ya fechado responde 409 sin cambios
    """
    return CashSessionService(db).close_session(session_id, auth_context)


@cash_sessions_router.post("/{session_id}/reopen", response_model=CashSessionOut)
async def reopen_cash_session(
    db: db_dependency,
    session_id: UUID = Path(..., description="ID del caixa"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Reabrir caixa fechado.

    - Quien reabre no puede tener otro caixa aberto (409)
    - Fuera de administradores, sólo caixas abiertos hoy (422)
    """
    return CashSessionService(db).reopen_session(session_id, auth_context)


@cash_sessions_router.post("/{session_id}/movements", response_model=CashSessionOut, status_code=status.HTTP_201_CREATED)
async def create_cash_movement(
    db: db_dependency,
    movement_data: CashMovementCreate,
    session_id: UUID = Path(..., description="ID del caixa"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Registrar suprimento o sangria.

    - **type**: suprimento | sangria
    - **amount**: valor positivo
    - **reason**: motivo obligatorio
    """
    return CashSessionService(db).register_movement(session_id, movement_data, auth_context)


@cash_sessions_router.get("/{session_id}/movements", response_model=CashMovementList)
async def list_cash_movements(
    db: db_dependency,
    session_id: UUID = Path(..., description="ID del caixa"),
    movement_type: Optional[MovementType] = Query(None, alias="type", description="Filtrar por tipo"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Movimientos del caixa, más recientes primero, con totales.
    """
    CashSessionService(db).ensure_can_view(session_id, auth_context)
    service = CashMovementService(db)
    movements = service.list_movements(session_id, movement_type)
    return CashMovementList(
        movements=[CashMovementOut.model_validate(m) for m in movements],
        summary=CashMovementsSummary(**service.summarize(movements)),
    )


@cash_sessions_router.get("/{session_id}/sales", response_model=List[SaleOut])
async def list_cash_session_sales(
    db: db_dependency,
    session_id: UUID = Path(..., description="ID del caixa"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """Ventas vinculadas al caixa, más recientes primero."""
    return POSSaleService(db).list_session_sales(session_id, auth_context)


@cash_sessions_router.post("/{session_id}/reconcile", response_model=ReconciliationReportOut)
async def reconcile_cash_session(
    db: db_dependency,
    session_id: UUID = Path(..., description="ID del caixa"),
    repair: bool = Query(False, description="Sobrescribir los contadores divergentes (sólo admin)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Conciliación de contadores persistidos contra los valores derivados.
    """
    report = CashSessionService(db).reconcile(session_id, auth_context, repair=repair)
    return ReconciliationReportOut(
        session_id=report.session_id,
        is_consistent=report.is_consistent,
        repaired=report.repaired,
        checks=[
            FieldCheckOut(name=c.name, persisted=c.persisted, derived=c.derived, matches=c.matches)
            for c in report.checks
        ],
    )


# ===== POS SALES ROUTER =====

pos_sales_router = APIRouter(prefix="/pos/sales", tags=["PDV"])


@pos_sales_router.post("", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
async def create_pos_sale(
    db: db_dependency,
    sale_data: SaleCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Registrar venta en la caja.

    - Se vincula al caixa aberto de quien la registra (si existe)
    - Su total y la parte en Dinheiro se suman al caixa
    """
    return POSSaleService(db).create_sale(sale_data, auth_context, via_register=True)


@pos_sales_router.patch("/{sale_id}", response_model=SaleOut)
async def update_pos_sale(
    db: db_dependency,
    sale_data: SaleUpdate,
    sale_id: str = Path(..., description="ID de la venta (ID-n)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """Editar una venta desde la caja."""
    return POSSaleService(db).update_sale(sale_id, sale_data, auth_context, origin=SaleOrigin.PDV)


# ===== SALES ROUTER =====

sales_router = APIRouter(prefix="/sales", tags=["Vendas"])


@sales_router.get("", response_model=List[SaleOut])
async def list_sales(
    db: db_dependency,
    salesperson_id: Optional[UUID] = Query(None),
    cash_session_id: Optional[UUID] = Query(None),
    sale_status: Optional[SaleStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Listado de ventas.

    Usuarios no administradores ven las ventas propias y las de sus caixas.
    """
    filters = SaleFilters(
        salesperson_id=salesperson_id, cash_session_id=cash_session_id, status=sale_status,
        start_date=start_date, end_date=end_date, limit=limit, offset=offset,
    )
    return POSSaleService(db).list_sales(filters, auth_context)


@sales_router.post("", response_model=SaleOut, status_code=status.HTTP_201_CREATED)
async def create_sale(
    db: db_dependency,
    sale_data: SaleCreate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """Registrar venta fuera de la caja (sin vínculo con caixa)."""
    return POSSaleService(db).create_sale(sale_data, auth_context, via_register=False)


@sales_router.get("/{sale_id}", response_model=SaleOut)
async def get_sale(
    db: db_dependency,
    sale_id: str = Path(..., description="ID de la venta (ID-n)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    return POSSaleService(db).get_sale(sale_id, auth_context)


@sales_router.get("/{sale_id}/print", response_model=SalePrintOut)
async def print_sale(
    db: db_dependency,
    sale_id: str = Path(..., description="ID de la venta (ID-n)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """Datos para imprimir el comprobante."""
    payload = POSSaleService(db).print_sale(sale_id, auth_context)
    return SalePrintOut(
        sale=SaleOut.model_validate(payload["sale"]),
        salesperson_name=payload["salesperson_name"],
        cash_session_label=payload["cash_session_label"],
        printed_at=payload["printed_at"],
    )


@sales_router.patch("/{sale_id}", response_model=SaleOut)
async def update_sale(
    db: db_dependency,
    sale_data: SaleUpdate,
    sale_id: str = Path(..., description="ID de la venta (ID-n)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Editar venta desde el listado general.

    Las ventas hechas en el PDV se editan en el PDV (422), salvo registros
    cuyo caixa ya no existe.
    """
    return POSSaleService(db).update_sale(sale_id, sale_data, auth_context, origin=SaleOrigin.VENDAS)


@sales_router.post("/{sale_id}/cancel", response_model=SaleOut)
async def cancel_sale(
    db: db_dependency,
    cancel_data: SaleCancel,
    sale_id: str = Path(..., description="ID de la venta (ID-n)"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """
    Cancelar venta. Deja de contar en los totales del caixa y el stock
    se restaura.
    """
    return POSSaleService(db).cancel_sale(sale_id, cancel_data.reason, auth_context)


@sales_router.get("/{sale_id}/authorization", response_model=AuthorizationDecisionOut)
async def get_sale_authorization(
    db: db_dependency,
    sale_id: str = Path(..., description="ID de la venta (ID-n)"),
    operation: str = Query(..., description="view | edit | print | cancel"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(POS_ROLES))
):
    """Indica si el usuario puede ejecutar la operación y, si no, por qué."""
    service = POSSaleService(db)
    sale = service.sales.get(sale_id)
    decision = service.authorize(sale, operation, auth_context)
    return AuthorizationDecisionOut(operation=operation, allowed=decision.allowed, reason=decision.reason)
