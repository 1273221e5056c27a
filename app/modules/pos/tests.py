"""
Tests para el módulo POS (caixa)

Tests que cubren:
- Cálculos puros de arqueo (efectivo, totales por método)
- Ciclo de vida del caixa: apertura, cierre, reapertura
- Libro de suprimentos y sangrias
- Vínculo venta-caixa, matriz de autorización y política de edición
- Conciliación de contadores persistidos
- Registro de caixas con filtros
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

from app.common.dates import local_today, utcnow
from app.common.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from app.modules.pos import reconciliation
from app.modules.pos.models import (
    AuditAction,
    CashAuditLog,
    CashMovement,
    CashSession,
    CashSessionStatus,
    MovementType,
)
from app.modules.pos.permissions import Capability, authorize
from app.modules.pos.schemas import CashMovementCreate, CashSessionFilters
from app.modules.pos.services import (
    CashMovementService,
    CashSessionRegistryService,
    CashSessionService,
    POSSaleService,
    normalize_search,
)
from app.modules.sales.models import SaleOrigin, SaleStatus
from app.modules.sales.schemas import SaleCreate, SalePaymentIn, SaleUpdate


# ===== FIXTURES =====

class RecordingRestorer:
    """Restaurador de inventario que sólo anota las ventas recibidas"""

    def __init__(self):
        self.restored = []

    def restore(self, sale):
        self.restored.append(sale.id)


@pytest.fixture
def sessions(db_session):
    return CashSessionService(db_session)


@pytest.fixture
def ledger(db_session):
    return CashMovementService(db_session)


@pytest.fixture
def restorer():
    return RecordingRestorer()


@pytest.fixture
def pos_sales(db_session, restorer):
    return POSSaleService(db_session, restorer)


def sale_data(total, *payments, salesperson_id=None):
    """SaleCreate con pagos (método, valor)"""
    return SaleCreate(
        total=Decimal(str(total)),
        payments=[SalePaymentIn(method=method, value=Decimal(str(value))) for method, value in payments],
        items=[{"product_id": "p-1", "name": "Capa", "quantity": 1}],
        salesperson_id=salesperson_id,
    )


def movement(kind, amount, reason="Troco"):
    return CashMovementCreate(type=kind, amount=Decimal(str(amount)), reason=reason)


# ===== TESTS DE CÁLCULOS PUROS =====

class TestReconciliationMath:
    """Tests para las funciones puras de arqueo"""

    @staticmethod
    def _sale(status, *payments, total=None):
        pays = [SimpleNamespace(method=m, value=Decimal(str(v))) for m, v in payments]
        return SimpleNamespace(
            status=status,
            payments=pays,
            total=Decimal(str(total)) if total is not None else sum((p.value for p in pays), Decimal("0")),
        )

    def test_cash_matching_is_case_insensitive(self):
        """'dinheiro', 'Dinheiro' y 'DINHEIRO ' caen en el mismo grupo"""
        sales = [
            self._sale(SaleStatus.FINALIZADA, ("dinheiro", 10)),
            self._sale(SaleStatus.FINALIZADA, ("Dinheiro", 20)),
            self._sale(SaleStatus.FINALIZADA, ("DINHEIRO ", 30)),
        ]

        assert reconciliation.cash_sales_total(sales) == Decimal("60")
        assert reconciliation.totals_by_method(sales) == {"Dinheiro": Decimal("60")}

    def test_derived_cash_in_register_excludes_cancelled(self):
        """100 + 50 + 20 - 10 = 160; la venta cancelada no cuenta"""
        sales = [
            self._sale(SaleStatus.FINALIZADA, ("Dinheiro", 50)),
            self._sale(SaleStatus.CANCELADA, ("Dinheiro", 9999)),
        ]

        derived = reconciliation.derive_cash_in_register(Decimal("100"), sales, Decimal("20"), Decimal("10"))

        assert derived == Decimal("160")

    def test_totals_by_method_keeps_other_methods(self):
        sales = [
            self._sale(SaleStatus.FINALIZADA, ("Pix", 40), ("Dinheiro", 10)),
            self._sale(SaleStatus.EDITADA, ("Crédito", 100), ("Aparelho na Troca", 300)),
            self._sale(SaleStatus.CANCELADA, ("Pix", 500)),
        ]

        totals = reconciliation.totals_by_method(sales)

        assert totals == {
            "Pix": Decimal("40"),
            "Dinheiro": Decimal("10"),
            "Crédito": Decimal("100"),
            "Aparelho na Troca": Decimal("300"),
        }
        assert reconciliation.transactions_total(sales) == Decimal("450")

    def test_fits_money_column(self):
        assert reconciliation.fits_money_column(Decimal("0.01"))
        assert reconciliation.fits_money_column(Decimal("10.500"))
        assert reconciliation.fits_money_column(Decimal("9999999999999.99"))
        assert not reconciliation.fits_money_column(Decimal("0.001"))
        assert not reconciliation.fits_money_column(Decimal("10000000000000"))
        assert not reconciliation.fits_money_column(Decimal("Infinity"))

    def test_status_as_plain_string(self):
        """Ventas que llegan con status como texto también se filtran"""
        sales = [self._sale("Cancelada", ("Dinheiro", 5)), self._sale("Finalizada", ("Dinheiro", 7))]

        assert reconciliation.cash_sales_total(sales) == Decimal("7")


# ===== TESTS DEL CICLO DE VIDA =====

class TestCashSessionLifecycle:
    """Tests para CashSessionService"""

    def test_open_session(self, sessions, users):
        session = sessions.open_session(users["A"].id, Decimal("100"))

        assert session.status == CashSessionStatus.ABERTO
        assert session.display_id == 1
        assert session.close_time is None
        assert session.opening_balance == Decimal("100")
        assert session.cash_in_register == Decimal("100")
        assert session.deposits == session.withdrawals == session.transactions_value == Decimal("0")

    def test_display_ids_are_sequential(self, sessions, users):
        first = sessions.open_session(users["A"].id, 0)
        second = sessions.open_session(users["B"].id, 0)

        assert (first.display_id, second.display_id) == (1, 2)

    def test_second_open_session_conflicts(self, sessions, users, db_session):
        sessions.open_session(users["A"].id, Decimal("50"))

        with pytest.raises(ConflictError):
            sessions.open_session(users["A"].id, Decimal("10"))

        open_count = (
            db_session.query(CashSession)
            .filter(CashSession.user_id == users["A"].id, CashSession.status == CashSessionStatus.ABERTO)
            .count()
        )
        assert open_count == 1

    def test_open_conflict_detected_at_commit(self, sessions, users, db_session, monkeypatch):
        """Sin la verificación previa, el índice único parcial rechaza la segunda apertura"""
        sessions.open_session(users["A"].id, 0)
        monkeypatch.setattr(CashSessionService, "get_current_session", lambda self, user_id: None)

        with pytest.raises(ConflictError):
            sessions.open_session(users["A"].id, 0)

        assert db_session.query(CashSession).filter(CashSession.user_id == users["A"].id).count() == 1

    def test_negative_opening_balance_rejected(self, sessions, users, db_session):
        with pytest.raises(ValidationError):
            sessions.open_session(users["A"].id, Decimal("-1"))

        assert db_session.query(CashSession).count() == 0

    @pytest.mark.parametrize("balance", ["0.001", "10000000000000"])
    def test_opening_balance_outside_money_column_rejected(self, sessions, users, db_session, balance):
        with pytest.raises(ValidationError):
            sessions.open_session(users["A"].id, Decimal(balance))

        assert db_session.query(CashSession).count() == 0

    def test_close_session(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        assert session.is_open

        closed = sessions.close_session(session.id, ctx["A"])

        assert closed.status == CashSessionStatus.FECHADO
        assert not closed.is_open
        assert closed.close_time is not None

    def test_reclose_is_rejected_without_changes(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        closed = sessions.close_session(session.id, ctx["A"])
        close_time = closed.close_time

        for _ in range(2):
            with pytest.raises(InvalidStateError):
                sessions.close_session(session.id, ctx["A"])

        assert sessions.get_session(session.id).close_time == close_time

    def test_close_requires_owner_or_admin(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(AuthorizationError):
            sessions.close_session(session.id, ctx["C"])
        assert sessions.get_session(session.id).status == CashSessionStatus.ABERTO

        closed = sessions.close_session(session.id, ctx["D"])
        assert closed.status == CashSessionStatus.FECHADO

    def test_close_unknown_session(self, sessions, ctx):
        from uuid import uuid4

        with pytest.raises(NotFoundError):
            sessions.close_session(uuid4(), ctx["A"])

    def test_open_close_reopen_round_trip(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, Decimal("100"))
        sessions.register_movement(session.id, movement(MovementType.SUPRIMENTO, 30), ctx["A"])
        sessions.register_movement(session.id, movement(MovementType.SANGRIA, 5), ctx["A"])
        pos_sales.create_sale(sale_data(40, ("Dinheiro", 40)), ctx["A"])
        before = sessions.get_session(session.id)
        snapshot = (before.deposits, before.withdrawals, before.transactions_value, before.cash_in_register)

        sessions.close_session(session.id, ctx["A"])
        reopened = sessions.reopen_session(session.id, ctx["A"])

        assert reopened.status == CashSessionStatus.ABERTO
        assert reopened.close_time is None
        assert (
            reopened.deposits, reopened.withdrawals, reopened.transactions_value, reopened.cash_in_register
        ) == snapshot

    def test_reopen_open_session_is_invalid(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(InvalidStateError):
            sessions.reopen_session(session.id, ctx["A"])

    def test_reopen_when_actor_has_other_open_session(self, sessions, users, ctx):
        first = sessions.open_session(users["A"].id, 0)
        sessions.close_session(first.id, ctx["A"])
        sessions.open_session(users["A"].id, 0)

        with pytest.raises(ConflictError):
            sessions.reopen_session(first.id, ctx["A"])

    def test_admin_reopen_when_admin_has_open_session(self, sessions, users, ctx):
        session = sessions.open_session(users["B"].id, 0)
        sessions.close_session(session.id, ctx["B"])
        sessions.open_session(users["D"].id, 0)

        with pytest.raises(ConflictError):
            sessions.reopen_session(session.id, ctx["D"])

    def test_admin_reopen_when_owner_has_open_session(self, sessions, users, ctx):
        old = sessions.open_session(users["B"].id, 0)
        sessions.close_session(old.id, ctx["B"])
        sessions.open_session(users["B"].id, 0)

        with pytest.raises(ConflictError):
            sessions.reopen_session(old.id, ctx["D"])

    def test_reopen_requires_owner_or_admin(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        sessions.close_session(session.id, ctx["A"])

        with pytest.raises(AuthorizationError):
            sessions.reopen_session(session.id, ctx["C"])

    def test_reopen_old_session_only_for_admin(self, sessions, users, ctx, db_session):
        session = sessions.open_session(users["A"].id, 0)
        sessions.close_session(session.id, ctx["A"])
        stored = db_session.get(CashSession, session.id)
        stored.open_time = utcnow() - timedelta(days=3)
        stored.close_time = utcnow() - timedelta(days=3) + timedelta(hours=8)
        db_session.commit()

        with pytest.raises(PolicyViolation):
            sessions.reopen_session(session.id, ctx["A"])

        reopened = sessions.reopen_session(session.id, ctx["D"])
        assert reopened.status == CashSessionStatus.ABERTO

    def test_transitions_are_audited(self, sessions, users, ctx, db_session):
        session = sessions.open_session(users["A"].id, 0)
        sessions.close_session(session.id, ctx["A"])
        sessions.reopen_session(session.id, ctx["A"])

        actions = [
            entry.action
            for entry in db_session.query(CashAuditLog)
            .filter(CashAuditLog.session_id == session.id)
            .order_by(CashAuditLog.created_at)
        ]
        assert actions == [AuditAction.CASH_OPEN, AuditAction.CASH_CLOSE, AuditAction.CASH_REOPEN]

    def test_get_current_session(self, sessions, users, ctx):
        assert sessions.get_current_session(users["A"].id) is None

        session = sessions.open_session(users["A"].id, 0)
        assert sessions.get_current_session(users["A"].id).id == session.id

        sessions.close_session(session.id, ctx["A"])
        assert sessions.get_current_session(users["A"].id) is None


# ===== TESTS DEL LIBRO DE MOVIMIENTOS =====

class TestMovementLedger:
    """Tests para CashMovementService"""

    def test_negative_amount_rejected(self, sessions, ledger, users, db_session):
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(ValidationError):
            ledger.add_movement(session.id, movement(MovementType.SANGRIA, -5, "x"), users["A"].id)

        assert db_session.query(CashMovement).count() == 0

    def test_empty_reason_rejected(self, sessions, ledger, users, db_session):
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(ValidationError):
            ledger.add_movement(session.id, movement(MovementType.SANGRIA, 5, ""), users["A"].id)
        with pytest.raises(ValidationError):
            ledger.add_movement(session.id, movement(MovementType.SANGRIA, 5, "   "), users["A"].id)

        assert db_session.query(CashMovement).count() == 0

    def test_zero_and_non_finite_amounts_rejected(self, sessions, ledger, users):
        session = sessions.open_session(users["A"].id, 0)

        for amount in (Decimal("0"), Decimal("Infinity"), Decimal("NaN")):
            data = CashMovementCreate.model_construct(type=MovementType.SUPRIMENTO, amount=amount, reason="x")
            with pytest.raises(ValidationError):
                ledger.add_movement(session.id, data, users["A"].id)

    @pytest.mark.parametrize("amount", ["0.001", "10.005", "10000000000000", "99999999999999.99"])
    def test_amounts_outside_money_column_rejected(self, sessions, ledger, users, db_session, amount):
        """Fracciones de centavo o más de 13 dígitos enteros no llegan al libro"""
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(ValidationError):
            ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, amount), users["A"].id)

        assert db_session.query(CashMovement).count() == 0
        assert sessions.get_session(session.id).deposits == Decimal("0")

    def test_largest_money_amount_accepted(self, sessions, ledger, users):
        session = sessions.open_session(users["A"].id, 0)

        updated = ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, "9999999999999.99"), users["A"].id)

        assert updated.deposits == Decimal("9999999999999.99")
        assert all(m.amount > 0 for m in ledger.list_movements(session.id))

    def test_unknown_session(self, ledger, users):
        from uuid import uuid4

        with pytest.raises(NotFoundError):
            ledger.add_movement(uuid4(), movement(MovementType.SUPRIMENTO, 5), users["A"].id)

    def test_aggregates_match_ledger_rows(self, sessions, ledger, users):
        session = sessions.open_session(users["A"].id, Decimal("100"))
        ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, "20.50"), users["A"].id)
        ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, 10), users["A"].id)
        updated = ledger.add_movement(session.id, movement(MovementType.SANGRIA, "7.25"), users["A"].id)

        deposits, withdrawals = ledger.ledger_totals(session.id)

        assert updated.deposits == deposits == Decimal("30.50")
        assert updated.withdrawals == withdrawals == Decimal("7.25")
        assert updated.cash_in_register == Decimal("123.25")

    def test_list_movements_ordered_and_filtered(self, sessions, ledger, users):
        session = sessions.open_session(users["A"].id, 0)
        ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, 5), users["A"].id)
        ledger.add_movement(session.id, movement(MovementType.SANGRIA, 2), users["A"].id)
        ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, 3), users["A"].id)

        movements = ledger.list_movements(session.id)
        timestamps = [m.timestamp for m in movements]
        assert timestamps == sorted(timestamps, reverse=True)
        assert len(movements) == 3

        only_sangrias = ledger.list_movements(session.id, MovementType.SANGRIA)
        assert [m.amount for m in only_sangrias] == [Decimal("2")]
        assert only_sangrias[0].signed_amount == Decimal("-2")

        summary = ledger.summarize(movements)
        assert summary == {"total_deposits": Decimal("8"), "total_withdrawals": Decimal("2"), "count": 3}

    def test_list_movements_unknown_session(self, ledger):
        from uuid import uuid4

        with pytest.raises(NotFoundError):
            ledger.list_movements(uuid4())

    def test_ledger_accepts_closed_session_when_called_directly(self, sessions, ledger, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        sessions.close_session(session.id, ctx["A"])

        updated = ledger.add_movement(session.id, movement(MovementType.SUPRIMENTO, 5), users["A"].id)

        assert updated.deposits == Decimal("5")

    def test_engine_rejects_movement_on_closed_session(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        sessions.close_session(session.id, ctx["A"])

        with pytest.raises(InvalidStateError):
            sessions.register_movement(session.id, movement(MovementType.SUPRIMENTO, 5), ctx["A"])

    def test_engine_rejects_movement_by_other_operator(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(AuthorizationError):
            sessions.register_movement(session.id, movement(MovementType.SANGRIA, 5), ctx["C"])

        assert sessions.get_session(session.id).withdrawals == Decimal("0")

    def test_movements_are_audited(self, sessions, users, ctx, db_session):
        session = sessions.open_session(users["A"].id, 0)
        sessions.register_movement(session.id, movement(MovementType.SUPRIMENTO, 5), ctx["A"])
        sessions.register_movement(session.id, movement(MovementType.SANGRIA, 1), ctx["A"])

        actions = {
            entry.action
            for entry in db_session.query(CashAuditLog).filter(CashAuditLog.session_id == session.id)
        }
        assert {AuditAction.CASH_SUPPLY, AuditAction.CASH_WITHDRAWAL} <= actions


# ===== TESTS DE ARQUEO =====

class TestCashDerivation:
    """Tests del arqueo derivado y la conciliación"""

    def test_cash_in_register_example(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, Decimal("100"))
        pos_sales.create_sale(sale_data(50, ("Dinheiro", 50)), ctx["A"])
        big = pos_sales.create_sale(sale_data(9999, ("Dinheiro", 9999)), ctx["A"])
        pos_sales.cancel_sale(big.id, "Cliente desistiu", ctx["A"])
        sessions.register_movement(session.id, movement(MovementType.SUPRIMENTO, 20), ctx["A"])
        sessions.register_movement(session.id, movement(MovementType.SANGRIA, 10), ctx["A"])

        summary = sessions.get_summary(session.id, ctx["A"])

        assert summary.cash_in_register == Decimal("160")
        assert summary.persisted_cash_in_register == Decimal("160")
        assert summary.transactions_value == Decimal("50")
        assert summary.cash_sales == Decimal("50")
        assert summary.totals_by_method == {"Dinheiro": Decimal("50")}
        assert len(summary.movements) == 2

    def test_cash_method_variants_share_bucket(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        for method in ("dinheiro", "Dinheiro", "DINHEIRO "):
            pos_sales.create_sale(sale_data(10, (method, 10)), ctx["A"])
        pos_sales.create_sale(sale_data(25, ("Pix", 25)), ctx["A"])

        totals = sessions.totals_by_method(session.id)
        summary = sessions.get_summary(session.id, ctx["A"])

        assert totals == {"Dinheiro": Decimal("30"), "Pix": Decimal("25")}
        assert summary.cash_in_register == Decimal("30")

    def test_summary_requires_owner_or_admin(self, sessions, users, ctx):
        session = sessions.open_session(users["A"].id, 0)

        with pytest.raises(AuthorizationError):
            sessions.get_summary(session.id, ctx["C"])
        assert sessions.get_summary(session.id, ctx["D"]).cash_in_register == Decimal("0")

    def test_reconcile_consistent_session(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, Decimal("10"))
        pos_sales.create_sale(sale_data(15, ("Dinheiro", 5), ("Pix", 10)), ctx["A"])
        sessions.register_movement(session.id, movement(MovementType.SUPRIMENTO, 3), ctx["A"])

        report = sessions.reconcile(session.id, ctx["A"])

        assert report.is_consistent
        assert report.derived("cash_in_register") == Decimal("18")

    def test_reconcile_detects_and_repairs_drift(self, sessions, pos_sales, users, ctx, db_session):
        session = sessions.open_session(users["A"].id, Decimal("10"))
        pos_sales.create_sale(sale_data(5, ("Dinheiro", 5)), ctx["A"])
        stored = db_session.get(CashSession, session.id)
        stored.cash_in_register = Decimal("0")
        db_session.commit()

        report = sessions.reconcile(session.id, ctx["A"])
        assert not report.is_consistent
        assert [c.name for c in report.mismatches] == ["cash_in_register"]

        with pytest.raises(AuthorizationError):
            sessions.reconcile(session.id, ctx["A"], repair=True)

        repaired = sessions.reconcile(session.id, ctx["D"], repair=True)
        assert repaired.repaired
        db_session.expire_all()
        assert db_session.get(CashSession, session.id).cash_in_register == Decimal("15")
        assert db_session.query(CashAuditLog).filter(CashAuditLog.action == AuditAction.CASH_REPAIR).count() == 1


# ===== TESTS DEL VÍNCULO VENTA-CAIXA =====

class TestSaleLinking:
    """Tests para POSSaleService"""

    def test_register_sale_is_linked(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, 0)

        sale = pos_sales.create_sale(sale_data(30, ("Dinheiro", 30)), ctx["A"])

        assert sale.id == "ID-1"
        assert sale.cash_session_id == session.id
        assert sale.cash_session_display_id == session.display_id
        assert sale.origin == SaleOrigin.PDV
        updated = sessions.get_session(session.id)
        assert updated.transactions_value == Decimal("30")
        assert updated.cash_in_register == Decimal("30")

    def test_generic_sale_is_not_linked(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, 0)

        sale = pos_sales.create_sale(sale_data(30, ("Dinheiro", 30)), ctx["A"], via_register=False)

        assert sale.cash_session_id is None
        assert sale.cash_session_display_id is None
        assert sale.origin == SaleOrigin.VENDAS
        assert sessions.get_session(session.id).transactions_value == Decimal("0")

    def test_register_sale_without_open_session(self, pos_sales, ctx):
        sale = pos_sales.create_sale(sale_data(12, ("Pix", 12)), ctx["A"])

        assert sale.cash_session_id is None
        assert sale.origin == SaleOrigin.PDV

    def test_sale_links_to_creator_session(self, sessions, pos_sales, users, ctx):
        """Vendedor A, registrada en el caixa de B"""
        session_b = sessions.open_session(users["B"].id, 0)
        sessions.open_session(users["A"].id, 0)

        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10), salesperson_id=users["A"].id), ctx["B"])

        assert sale.cash_session_id == session_b.id
        assert sale.salesperson_id == users["A"].id

    def test_authorization_matrix(self, sessions, pos_sales, users, ctx):
        sessions.open_session(users["B"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Dinheiro", 10), salesperson_id=users["A"].id), ctx["B"])

        for operation in ("view", "edit", "print", "cancel"):
            assert pos_sales.authorize(sale, operation, ctx["A"]).allowed
            assert pos_sales.authorize(sale, operation, ctx["B"]).allowed
            assert pos_sales.authorize(sale, operation, ctx["D"]).allowed
            denied = pos_sales.authorize(sale, operation, ctx["C"])
            assert not denied.allowed
            assert "NEGADO" in denied.reason

    def test_denied_operations_do_not_mutate(self, sessions, pos_sales, users, ctx, restorer):
        session = sessions.open_session(users["B"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Dinheiro", 10), salesperson_id=users["A"].id), ctx["B"])

        with pytest.raises(AuthorizationError):
            pos_sales.get_sale(sale.id, ctx["C"])
        with pytest.raises(AuthorizationError):
            pos_sales.print_sale(sale.id, ctx["C"])
        with pytest.raises(AuthorizationError):
            pos_sales.cancel_sale(sale.id, "fraude", ctx["C"])
        with pytest.raises(AuthorizationError):
            pos_sales.update_sale(sale.id, SaleUpdate(total=Decimal("1")), ctx["C"], origin=SaleOrigin.PDV)

        current = pos_sales.get_sale(sale.id, ctx["A"])
        assert current.status == SaleStatus.FINALIZADA
        assert current.total == Decimal("10")
        assert sessions.get_session(session.id).transactions_value == Decimal("10")
        assert restorer.restored == []

    def test_allowed_view_and_print(self, sessions, pos_sales, users, ctx):
        sessions.open_session(users["B"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Dinheiro", 10), salesperson_id=users["A"].id), ctx["B"])

        for key in ("A", "B", "D"):
            assert pos_sales.get_sale(sale.id, ctx[key]).id == sale.id
            printable = pos_sales.print_sale(sale.id, ctx[key])
            assert printable["salesperson_name"] == "Ana Souza"
            assert printable["cash_session_label"] == "Caixa #1"

    def test_unknown_operation(self, sessions, pos_sales, users, ctx):
        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10)), ctx["A"])

        with pytest.raises(ValidationError):
            pos_sales.authorize(sale, "delete", ctx["A"])

    def test_cancel_sale(self, sessions, pos_sales, users, ctx, restorer):
        session = sessions.open_session(users["A"].id, Decimal("20"))
        sale = pos_sales.create_sale(sale_data(50, ("Dinheiro", 30), ("Pix", 20)), ctx["A"])

        cancelled = pos_sales.cancel_sale(sale.id, "Produto com defeito", ctx["A"])

        assert cancelled.status == SaleStatus.CANCELADA
        assert cancelled.cancellation_reason == "Produto com defeito"
        assert restorer.restored == [sale.id]
        stored = sessions.get_session(session.id)
        assert stored.transactions_value == Decimal("0")
        assert stored.cash_in_register == Decimal("20")
        summary = sessions.get_summary(session.id, ctx["A"])
        assert summary.cash_in_register == Decimal("20")
        assert summary.totals_by_method == {}

    def test_cancel_twice_and_blank_reason(self, pos_sales, ctx):
        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10)), ctx["A"])

        with pytest.raises(ValidationError):
            pos_sales.cancel_sale(sale.id, "  ", ctx["A"])

        pos_sales.cancel_sale(sale.id, "Erro de digitação", ctx["A"])
        with pytest.raises(InvalidStateError):
            pos_sales.cancel_sale(sale.id, "de novo", ctx["A"])

    def test_cancel_rolls_back_when_restorer_fails(self, db_session, sessions, users, ctx):
        class FailingRestorer:
            def restore(self, sale):
                raise RuntimeError("estoque indisponível")

        session = sessions.open_session(users["A"].id, 0)
        service = POSSaleService(db_session, FailingRestorer())
        sale = service.create_sale(sale_data(10, ("Dinheiro", 10)), ctx["A"])

        with pytest.raises(RuntimeError):
            service.cancel_sale(sale.id, "motivo", ctx["A"])

        db_session.expire_all()
        assert service.sales.get(sale.id).status == SaleStatus.FINALIZADA
        assert sessions.get_session(session.id).transactions_value == Decimal("10")

    def test_register_sale_edit_from_sales_list_is_rejected(self, sessions, pos_sales, users, ctx):
        sessions.open_session(users["A"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Dinheiro", 10)), ctx["A"])

        with pytest.raises(PolicyViolation) as exc:
            pos_sales.update_sale(sale.id, SaleUpdate(total=Decimal("12")), ctx["A"], origin=SaleOrigin.VENDAS)

        assert "Caixa #1" in exc.value.detail

    def test_register_sale_edit_from_register(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, Decimal("5"))
        sale = pos_sales.create_sale(sale_data(10, ("Dinheiro", 10)), ctx["A"])

        edited = pos_sales.update_sale(
            sale.id,
            SaleUpdate(total=Decimal("25"), payments=[
                SalePaymentIn(method="Dinheiro", value=Decimal("5")),
                SalePaymentIn(method="Pix", value=Decimal("20")),
            ]),
            ctx["A"],
            origin=SaleOrigin.PDV,
        )

        assert edited.status == SaleStatus.EDITADA
        assert [p.method for p in edited.payments] == ["Dinheiro", "Pix"]
        stored = sessions.get_session(session.id)
        assert stored.transactions_value == Decimal("25")
        assert stored.cash_in_register == Decimal("10")
        assert sessions.reconcile(session.id, ctx["A"]).is_consistent

    def test_legacy_sale_without_session_can_be_edited_from_list(self, sessions, pos_sales, users, ctx, db_session):
        sessions.open_session(users["A"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Dinheiro", 10)), ctx["A"])
        stored = pos_sales.sales.get(sale.id)
        stored.cash_session_id = None
        db_session.commit()

        edited = pos_sales.update_sale(sale.id, SaleUpdate(total=Decimal("11")), ctx["A"], origin=SaleOrigin.VENDAS)

        assert edited.total == Decimal("11")
        assert edited.cash_session_display_id == 1

    def test_generic_sale_edit_from_list(self, pos_sales, ctx):
        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10)), ctx["A"], via_register=False)

        edited = pos_sales.update_sale(sale.id, SaleUpdate(items=[]), ctx["A"], origin=SaleOrigin.VENDAS)

        assert edited.status == SaleStatus.EDITADA
        assert edited.items == []

    def test_cancelled_sale_cannot_be_edited(self, pos_sales, ctx):
        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10)), ctx["A"])
        pos_sales.cancel_sale(sale.id, "motivo", ctx["A"])

        with pytest.raises(InvalidStateError):
            pos_sales.update_sale(sale.id, SaleUpdate(total=Decimal("1")), ctx["A"], origin=SaleOrigin.PDV)

    def test_sale_on_closed_session_cannot_be_edited(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10)), ctx["A"])
        sessions.close_session(session.id, ctx["A"])

        with pytest.raises(InvalidStateError):
            pos_sales.update_sale(sale.id, SaleUpdate(total=Decimal("1")), ctx["A"], origin=SaleOrigin.PDV)

    def test_list_session_sales(self, sessions, pos_sales, users, ctx):
        session = sessions.open_session(users["A"].id, 0)
        first = pos_sales.create_sale(sale_data(1, ("Pix", 1)), ctx["A"])
        second = pos_sales.create_sale(sale_data(2, ("Pix", 2)), ctx["A"])
        pos_sales.create_sale(sale_data(3, ("Pix", 3)), ctx["A"], via_register=False)

        listed = pos_sales.list_session_sales(session.id, ctx["A"])

        assert {sale.id for sale in listed} == {first.id, second.id}
        with pytest.raises(AuthorizationError):
            pos_sales.list_session_sales(session.id, ctx["C"])

    def test_sales_list_visibility(self, sessions, pos_sales, users, ctx):
        from app.modules.sales.schemas import SaleFilters

        sessions.open_session(users["B"].id, 0)
        linked = pos_sales.create_sale(sale_data(10, ("Pix", 10), salesperson_id=users["A"].id), ctx["B"])
        own_b = pos_sales.create_sale(sale_data(5, ("Pix", 5)), ctx["B"], via_register=False)

        assert {s.id for s in pos_sales.list_sales(SaleFilters(), ctx["A"])} == {linked.id}
        assert {s.id for s in pos_sales.list_sales(SaleFilters(), ctx["B"])} == {linked.id, own_b.id}
        assert pos_sales.list_sales(SaleFilters(), ctx["C"]) == []
        assert len(pos_sales.list_sales(SaleFilters(), ctx["D"])) == 2

    def test_sales_are_audited(self, sessions, pos_sales, users, ctx, db_session):
        sessions.open_session(users["A"].id, 0)
        sale = pos_sales.create_sale(sale_data(10, ("Pix", 10)), ctx["A"])
        pos_sales.update_sale(sale.id, SaleUpdate(total=Decimal("9")), ctx["A"], origin=SaleOrigin.PDV)
        pos_sales.cancel_sale(sale.id, "motivo", ctx["A"])

        actions = [
            entry.action
            for entry in db_session.query(CashAuditLog)
            .filter(CashAuditLog.sale_id == sale.id)
            .order_by(CashAuditLog.created_at)
        ]
        assert actions == [AuditAction.SALE_CREATE, AuditAction.SALE_UPDATE, AuditAction.SALE_CANCEL]


# ===== TESTS DE PERMISOS =====

class TestCapabilities:
    """Tests para authorize()"""

    def test_session_capabilities(self, ctx):
        session = SimpleNamespace(id="s-1", user_id=ctx["A"].user_id)

        for capability in (Capability.VIEW_SESSION, Capability.CLOSE_SESSION,
                           Capability.REOPEN_SESSION, Capability.MOVE_CASH):
            assert authorize(capability, ctx["A"], session)
            assert authorize(capability, ctx["D"], session)
            assert not authorize(capability, ctx["C"], session)

    def test_repair_is_admin_only(self, ctx):
        session = SimpleNamespace(id="s-1", user_id=ctx["A"].user_id)

        assert not authorize(Capability.REPAIR_SESSION, ctx["A"], session)
        assert authorize(Capability.REPAIR_SESSION, ctx["D"], session)

    def test_sale_session_owner(self, ctx):
        sale = SimpleNamespace(id="ID-1", salesperson_id=ctx["A"].user_id)

        assert authorize(Capability.CANCEL_SALE, ctx["B"], sale, session_owner_id=ctx["B"].user_id)
        assert not authorize(Capability.CANCEL_SALE, ctx["B"], sale)


# ===== TESTS DEL REGISTRO DE CAIXAS =====

class TestSessionRegistry:
    """Tests para CashSessionRegistryService"""

    @pytest.fixture
    def registry(self, db_session):
        return CashSessionRegistryService(db_session)

    @pytest.fixture
    def populated(self, sessions, pos_sales, users, ctx):
        """Caixa #1 de A con la venta ID-1; Caixa #2 de B sin ventas"""
        first = sessions.open_session(users["A"].id, Decimal("100"))
        pos_sales.create_sale(sale_data(50, ("Dinheiro", 50)), ctx["A"])
        second = sessions.open_session(users["B"].id, Decimal("10"))
        return first, second

    def test_normalize_search(self):
        assert normalize_search("  #12 ") == "12"
        assert normalize_search("ID-7") == "id-7"
        assert normalize_search(None) == ""

    def test_visibility(self, registry, populated, ctx):
        first, second = populated

        assert [item.id for item in registry.list_sessions(ctx["A"], CashSessionFilters())] == [first.id]
        assert [item.id for item in registry.list_sessions(ctx["C"], CashSessionFilters())] == []
        assert {item.id for item in registry.list_sessions(ctx["D"], CashSessionFilters())} == {first.id, second.id}

    def test_operator_filter(self, registry, populated, ctx, users):
        _, second = populated

        items = registry.list_sessions(ctx["D"], CashSessionFilters(user_id=users["B"].id))

        assert [item.id for item in items] == [second.id]

    def test_search_by_display_id(self, registry, populated, ctx):
        _, second = populated

        items = registry.list_sessions(ctx["D"], CashSessionFilters(search="#2"))

        assert [item.id for item in items] == [second.id]

    def test_search_by_operator_name(self, registry, populated, ctx):
        _, second = populated

        for term in ("bruno", "LIMA", "runo li"):
            items = registry.list_sessions(ctx["D"], CashSessionFilters(search=term))
            assert [item.id for item in items] == [second.id]

    def test_search_by_sale_id(self, registry, populated, ctx):
        first, _ = populated

        for term in ("id-1", "ID-1", "#ID-1"):
            items = registry.list_sessions(ctx["D"], CashSessionFilters(search=term))
            assert [item.id for item in items] == [first.id]

    def test_search_composes_with_visibility(self, registry, populated, ctx):
        assert registry.list_sessions(ctx["A"], CashSessionFilters(search="bruno")) == []

    def test_date_range(self, registry, populated, ctx, db_session):
        first, second = populated
        stored = db_session.get(CashSession, first.id)
        stored.open_time = utcnow() - timedelta(days=10)
        db_session.commit()
        today = local_today()

        recent = registry.list_sessions(ctx["D"], CashSessionFilters(start_date=today, end_date=today))
        assert [item.id for item in recent] == [second.id]

        older = registry.list_sessions(
            ctx["D"],
            CashSessionFilters(start_date=today - timedelta(days=11), end_date=today - timedelta(days=9)),
        )
        assert [item.id for item in older] == [first.id]

    def test_page_size_follows_settings(self, registry, populated, ctx):
        from pydantic import ValidationError as SchemaError
        from app.core.config import settings

        assert CashSessionFilters().limit == settings.DEFAULT_PAGE_SIZE
        with pytest.raises(SchemaError):
            CashSessionFilters(limit=settings.MAX_PAGE_SIZE + 1)

        items = registry.list_sessions(ctx["D"], CashSessionFilters(limit=1))
        assert len(items) == 1

    def test_items_carry_derived_values(self, registry, populated, ctx):
        first, _ = populated

        item = registry.list_sessions(ctx["A"], CashSessionFilters())[0]

        assert item.id == first.id
        assert item.operator_name == "Ana Souza"
        assert item.transactions_value == Decimal("50")
        assert item.cash_in_register == Decimal("150")
