"""
Módulo POS (caixa) - cierre y conciliación de caja

ENTIDADES PRINCIPALES:
- CashSession: sesión de caja de un operador (aberto/fechado)
- CashMovement: suprimentos y sangrias (libro append-only)
- CashAuditLog: rastro de auditoría de transiciones y ventas

FUNCIONALIDADES:
- Apertura, cierre y reapertura de caixa
- Registro de suprimentos y sangrias
- Vínculo de ventas del PDV con el caixa aberto del operador
- Arqueo derivado (fundo + Dinheiro + suprimentos - sangrias)
- Conciliación y reparación de contadores persistidos
- Registro de caixas con filtros por fecha, operador y búsqueda libre

INTEGRACIÓN CON OTROS MÓDULOS:
- Sales: ventas y pagos; restauración de inventario al cancelar
- Auth: identidad del operador y rol administrativo

REGLAS DE NEGOCIO:
- Un único caixa aberto por operador (verificado también en el commit)
- Sólo el dueño o un administrador cierra, reabre o movimenta un caixa
- Ventas: vendedor, dueño del caixa o administrador
- Ventas del PDV se editan en el PDV
- Ventas canceladas no cuentan en ningún total
"""

from .models import (
    CashSession, CashMovement, CashAuditLog,
    CashSessionStatus, MovementType, AuditAction,
)

from .schemas import (
    CashSessionOpen, CashSessionOut, CashSessionSummary, CashSessionListItem,
    CashSessionFilters, CashMovementCreate, CashMovementOut, CashMovementList,
    ReconciliationReportOut, AuthorizationDecisionOut,
)

__all__ = [
    # Models
    "CashSession", "CashMovement", "CashAuditLog",
    "CashSessionStatus", "MovementType", "AuditAction",

    # Schemas
    "CashSessionOpen", "CashSessionOut", "CashSessionSummary", "CashSessionListItem",
    "CashSessionFilters", "CashMovementCreate", "CashMovementOut", "CashMovementList",
    "ReconciliationReportOut", "AuthorizationDecisionOut",
]
