"""
Tests para el módulo de ventas
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from pydantic import ValidationError as SchemaError

from app.common.dates import local_today, utcnow
from app.common.exceptions import NotFoundError
from app.modules.sales.models import SaleOrigin, SaleStatus
from app.core.config import settings
from app.modules.sales.schemas import SaleCreate, SaleFilters, SalePaymentIn, SaleUpdate
from app.modules.sales.service import SaleService, normalize_sale_id


@pytest.fixture
def service(db_session):
    return SaleService(db_session)


def add_sale(service, user, total, status=SaleStatus.FINALIZADA):
    sale = service.build_sale(
        total=Decimal(str(total)),
        payments=[SalePaymentIn(method="Pix", value=Decimal(str(total)))],
        items=[],
        status=status,
        origin=SaleOrigin.VENDAS,
        salesperson_id=user.id,
        created_by=user.id,
    )
    service.db.commit()
    return sale


# ===== TESTS DE IDENTIFICADORES =====

class TestSaleIdentifiers:

    @pytest.mark.parametrize("raw", ["ID-12", "id-12", "#ID-12", " 12 ", "#12"])
    def test_normalize_sale_id(self, raw):
        assert normalize_sale_id(raw) == "ID-12"

    def test_sequential_identifiers(self, service, users):
        assert service.next_identifier() == (1, "ID-1")

        add_sale(service, users["A"], 10)

        assert service.next_identifier() == (2, "ID-2")

    def test_get_unknown_sale(self, service):
        with pytest.raises(NotFoundError):
            service.get("ID-404")


# ===== TESTS DE LISTADO =====

class TestSaleListing:

    def test_filters(self, service, users):
        first = add_sale(service, users["A"], 10)
        second = add_sale(service, users["B"], 20, status=SaleStatus.PENDENTE)

        assert {s.id for s in service.list_sales(SaleFilters())} == {first.id, second.id}
        assert [s.id for s in service.list_sales(SaleFilters(salesperson_id=users["A"].id))] == [first.id]
        assert [s.id for s in service.list_sales(SaleFilters(status=SaleStatus.PENDENTE))] == [second.id]

    def test_date_filter(self, service, users, db_session):
        old = add_sale(service, users["A"], 10)
        recent = add_sale(service, users["A"], 20)
        old.date = utcnow() - timedelta(days=5)
        db_session.commit()
        today = local_today()

        listed = service.list_sales(SaleFilters(start_date=today, end_date=today))

        assert [s.id for s in listed] == [recent.id]

    def test_payments_are_kept_in_order(self, service, users):
        sale = service.build_sale(
            total=Decimal("30"),
            payments=[
                SalePaymentIn(method="Pix", value=Decimal("10")),
                SalePaymentIn(method="Dinheiro", value=Decimal("20")),
            ],
            items=[],
            status=SaleStatus.FINALIZADA,
            origin=SaleOrigin.PDV,
            salesperson_id=users["A"].id,
            created_by=users["A"].id,
        )
        service.db.commit()

        stored = service.get(sale.id)

        assert [p.method for p in stored.payments] == ["Pix", "Dinheiro"]

    def test_is_cancelled(self, service, users):
        sale = add_sale(service, users["A"], 10)
        assert not sale.is_cancelled

        service.mark_cancelled(sale, "motivo")

        assert sale.is_cancelled


# ===== TESTS DE ESQUEMAS =====

class TestSaleSchemas:

    @pytest.mark.parametrize("amount", ["0.001", "10000000000000"])
    def test_money_fields_fit_numeric_column(self, amount):
        with pytest.raises(SchemaError):
            SalePaymentIn(method="Pix", value=Decimal(amount))
        with pytest.raises(SchemaError):
            SaleCreate(total=Decimal(amount))
        with pytest.raises(SchemaError):
            SaleUpdate(total=Decimal(amount))

    def test_money_fields_accept_centavos(self):
        assert SaleCreate(total=Decimal("9999999999999.99")).total == Decimal("9999999999999.99")
        assert SalePaymentIn(method="Pix", value=Decimal("0.10")).value == Decimal("0.10")

    def test_page_size_follows_settings(self):
        assert SaleFilters().limit == settings.DEFAULT_PAGE_SIZE
        with pytest.raises(SchemaError):
            SaleFilters(limit=settings.MAX_PAGE_SIZE + 1)
