"""
Cálculos puros del arqueo de caja.

Ninguna función toca la base de datos: reciben ventas (con ``status`` y
``payments``) y los agregados de la sesión, y devuelven valores derivados.
El valor derivado es la fuente de verdad; los contadores persistidos en
``cash_sessions`` son una caché que se compara contra él.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from app.core.config import settings
from app.modules.sales.models import SaleStatus

ZERO = Decimal("0")

# Numeric(15, 2): centavos y hasta 13 dígitos enteros
MONEY_STEP = Decimal("0.01")
MAX_MONEY = Decimal(10) ** 13


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def fits_money_column(value: Decimal) -> bool:
    """Finito, con a lo sumo dos decimales y dentro de Numeric(15, 2)."""
    if not value.is_finite() or abs(value) >= MAX_MONEY:
        return False
    return value == value.quantize(MONEY_STEP)


def normalize_method(method: Optional[str]) -> str:
    return (method or "").strip().lower()


def is_cash_method(method: Optional[str]) -> bool:
    """'dinheiro', 'Dinheiro' y 'DINHEIRO ' cuentan como efectivo."""
    return normalize_method(method) == normalize_method(settings.CASH_PAYMENT_METHOD)


def is_counted(sale) -> bool:
    """Las ventas canceladas nunca entran en los totales de la sesión."""
    status = getattr(sale.status, "value", sale.status)
    return status != SaleStatus.CANCELADA.value


def counted_sales(sales: Iterable) -> List:
    return [sale for sale in sales if is_counted(sale)]


def sale_cash_total(sale) -> Decimal:
    """Parte en efectivo de una venta, sin mirar su estado."""
    return sum(
        (to_decimal(payment.value) for payment in sale.payments if is_cash_method(payment.method)),
        ZERO,
    )


def cash_sales_total(sales: Iterable) -> Decimal:
    return sum((sale_cash_total(sale) for sale in counted_sales(sales)), ZERO)


def transactions_total(sales: Iterable) -> Decimal:
    return sum((to_decimal(sale.total) for sale in counted_sales(sales)), ZERO)


def totals_by_method(sales: Iterable) -> Dict[str, Decimal]:
    """
    Suma de pagos por método. Las variantes de efectivo se agrupan bajo
    el nombre configurado; el resto usa el método tal como se informó.
    """
    totals: Dict[str, Decimal] = {}
    for sale in counted_sales(sales):
        for payment in sale.payments:
            if is_cash_method(payment.method):
                key = settings.CASH_PAYMENT_METHOD
            else:
                key = (payment.method or "").strip()
            totals[key] = totals.get(key, ZERO) + to_decimal(payment.value)
    return totals


def derive_cash_in_register(opening_balance, sales: Iterable, deposits, withdrawals) -> Decimal:
    """opening_balance + efectivo de ventas no canceladas + suprimentos - sangrias"""
    return (
        to_decimal(opening_balance)
        + cash_sales_total(sales)
        + to_decimal(deposits)
        - to_decimal(withdrawals)
    )


@dataclass
class FieldCheck:
    name: str
    persisted: Decimal
    derived: Decimal

    @property
    def matches(self) -> bool:
        return self.persisted == self.derived


@dataclass
class ReconciliationReport:
    session_id: object
    checks: List[FieldCheck] = field(default_factory=list)
    repaired: bool = False

    @property
    def is_consistent(self) -> bool:
        return all(check.matches for check in self.checks)

    @property
    def mismatches(self) -> List[FieldCheck]:
        return [check for check in self.checks if not check.matches]

    def derived(self, name: str) -> Decimal:
        return next(check.derived for check in self.checks if check.name == name)


def build_report(session, sales: Iterable, ledger_deposits, ledger_withdrawals) -> ReconciliationReport:
    """
    Compara los contadores persistidos con los recalculados desde las
    ventas y las filas del libro de movimientos.
    """
    sales = list(sales)
    deposits = to_decimal(ledger_deposits)
    withdrawals = to_decimal(ledger_withdrawals)
    return ReconciliationReport(
        session_id=session.id,
        checks=[
            FieldCheck("deposits", to_decimal(session.deposits), deposits),
            FieldCheck("withdrawals", to_decimal(session.withdrawals), withdrawals),
            FieldCheck("transactions_value", to_decimal(session.transactions_value), transactions_total(sales)),
            FieldCheck(
                "cash_in_register",
                to_decimal(session.cash_in_register),
                derive_cash_in_register(session.opening_balance, sales, deposits, withdrawals),
            ),
        ],
    )
