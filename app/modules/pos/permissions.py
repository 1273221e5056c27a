"""
Autorización por capacidades del módulo POS.

Toda decisión de acceso sobre ventas y sesiones de caja pasa por
``authorize``; los servicios y routers no repiten la regla.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from app.common.exceptions import AuthorizationError, ValidationError
from app.modules.auth.schemas import AuthContext

logger = logging.getLogger(__name__)

SALE_DENIED = "Acesso NEGADO: Esta venda pertence a outro vendedor."
SESSION_DENIED = "Acesso NEGADO: Este caixa pertence a outro usuário."
ADMIN_ONLY = "Acesso NEGADO: Somente administradores podem executar esta ação."


class Capability(str, Enum):
    VIEW_SALE = "view_sale"
    EDIT_SALE = "edit_sale"
    PRINT_SALE = "print_sale"
    CANCEL_SALE = "cancel_sale"
    VIEW_SESSION = "view_session"
    CLOSE_SESSION = "close_session"
    REOPEN_SESSION = "reopen_session"
    MOVE_CASH = "move_cash"
    REPAIR_SESSION = "repair_session"


SALE_CAPABILITIES = {
    Capability.VIEW_SALE,
    Capability.EDIT_SALE,
    Capability.PRINT_SALE,
    Capability.CANCEL_SALE,
}

SALE_OPERATIONS = {
    "view": Capability.VIEW_SALE,
    "edit": Capability.EDIT_SALE,
    "print": Capability.PRINT_SALE,
    "cancel": Capability.CANCEL_SALE,
}


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = AuthorizationDecision(True)


def capability_for_operation(operation: str) -> Capability:
    try:
        return SALE_OPERATIONS[operation.strip().lower()]
    except KeyError:
        raise ValidationError(f"Operação desconhecida: {operation}")


def authorize(
    capability: Capability,
    actor: AuthContext,
    resource,
    *,
    session_owner_id=None,
) -> AuthorizationDecision:
    """
    Ventas: permitido al vendedor, al dueño de la sesión de caja de la
    venta (``session_owner_id``) o a un administrador.
    Sesiones: permitido al dueño o a un administrador; la reparación de
    contadores es sólo de administradores.
    """
    if actor.is_admin:
        return ALLOWED

    if capability in SALE_CAPABILITIES:
        if resource.salesperson_id == actor.user_id:
            return ALLOWED
        if session_owner_id is not None and session_owner_id == actor.user_id:
            return ALLOWED
        return AuthorizationDecision(False, SALE_DENIED)

    if capability == Capability.REPAIR_SESSION:
        return AuthorizationDecision(False, ADMIN_ONLY)

    if resource.user_id == actor.user_id:
        return ALLOWED
    return AuthorizationDecision(False, SESSION_DENIED)


def ensure_authorized(capability: Capability, actor: AuthContext, resource, **kwargs) -> None:
    decision = authorize(capability, actor, resource, **kwargs)
    if not decision:
        logger.warning(
            f"Acceso denegado: {capability.value} por usuario {actor.user_id} "
            f"sobre {getattr(resource, 'id', resource)}"
        )
        raise AuthorizationError(decision.reason)
