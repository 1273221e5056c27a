"""
Tests HTTP para los endpoints de caixa, PDV y ventas

Verifican el contrato de la API: códigos de estado, el cuerpo
{"detail", "code"} de los errores de negocio y el control de acceso.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

API = "/api/v1"


def open_session(client, headers, opening_balance="0"):
    response = client.post(f"{API}/cash-sessions/open", json={"opening_balance": opening_balance}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def register_sale(client, headers, total, method="Dinheiro", **extra):
    payload = {"total": str(total), "payments": [{"method": method, "value": str(total)}], **extra}
    response = client.post(f"{API}/pos/sales", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# ===== TESTS GENERALES =====

class TestApplication:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_request_id_header(self, client):
        response = client.get("/health")

        assert response.headers.get("X-Request-ID")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"

    def test_requires_authentication(self, client):
        response = client.get(f"{API}/cash-sessions/current")

        assert response.status_code in (401, 403)

    def test_invalid_token(self, client, users):
        response = client.get(f"{API}/cash-sessions/current", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401


# ===== TESTS DE CAIXA =====

class TestCashSessionEndpoints:

    def test_open_and_conflict(self, client, auth_headers):
        body = open_session(client, auth_headers["A"], "100")

        assert body["status"] == "aberto"
        assert body["display_id"] == 1
        assert Decimal(body["cash_in_register"]) == Decimal("100")

        response = client.post(f"{API}/cash-sessions/open", json={"opening_balance": "10"}, headers=auth_headers["A"])
        assert response.status_code == 409
        assert response.json()["code"] == "conflict"
        assert "Caixa #1" in response.json()["detail"]

    def test_current_session(self, client, auth_headers):
        response = client.get(f"{API}/cash-sessions/current", headers=auth_headers["A"])
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

        body = open_session(client, auth_headers["A"])
        response = client.get(f"{API}/cash-sessions/current", headers=auth_headers["A"])
        assert response.status_code == 200
        assert response.json()["id"] == body["id"]

    def test_invalid_movement(self, client, auth_headers):
        session = open_session(client, auth_headers["A"])

        response = client.post(
            f"{API}/cash-sessions/{session['id']}/movements",
            json={"type": "sangria", "amount": "-5", "reason": "x"},
            headers=auth_headers["A"],
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.parametrize("amount", ["0.001", "10000000000000"])
    def test_movement_outside_money_column(self, client, auth_headers, amount):
        session = open_session(client, auth_headers["A"])

        response = client.post(
            f"{API}/cash-sessions/{session['id']}/movements",
            json={"type": "suprimento", "amount": amount, "reason": "Troco"},
            headers=auth_headers["A"],
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        movements = client.get(f"{API}/cash-sessions/{session['id']}/movements", headers=auth_headers["A"])
        assert movements.json()["summary"]["count"] == 0

    def test_registry_page_size_limit(self, client, auth_headers):
        from app.core.config import settings

        response = client.get(
            f"{API}/cash-sessions", params={"limit": settings.MAX_PAGE_SIZE + 1}, headers=auth_headers["D"]
        )

        assert response.status_code == 422

    def test_summary_after_sales_and_movements(self, client, auth_headers):
        session = open_session(client, auth_headers["A"], "100")
        register_sale(client, auth_headers["A"], 50)
        big = register_sale(client, auth_headers["A"], 9999)
        response = client.post(
            f"{API}/sales/{big['id']}/cancel", json={"reason": "Cliente desistiu"}, headers=auth_headers["A"]
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Cancelada"
        for kind, amount in (("suprimento", "20"), ("sangria", "10")):
            response = client.post(
                f"{API}/cash-sessions/{session['id']}/movements",
                json={"type": kind, "amount": amount, "reason": "Troco"},
                headers=auth_headers["A"],
            )
            assert response.status_code == 201

        response = client.get(f"{API}/cash-sessions/{session['id']}", headers=auth_headers["A"])

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["cash_in_register"]) == Decimal("160")
        assert Decimal(body["persisted_cash_in_register"]) == Decimal("160")
        assert Decimal(body["transactions_value"]) == Decimal("50")
        assert {k: Decimal(v) for k, v in body["totals_by_method"].items()} == {"Dinheiro": Decimal("50")}

    def test_list_movements(self, client, auth_headers):
        session = open_session(client, auth_headers["A"])
        for kind, amount in (("suprimento", "5"), ("sangria", "2")):
            client.post(
                f"{API}/cash-sessions/{session['id']}/movements",
                json={"type": kind, "amount": amount, "reason": "Troco"},
                headers=auth_headers["A"],
            )

        response = client.get(f"{API}/cash-sessions/{session['id']}/movements", headers=auth_headers["A"])
        assert response.status_code == 200
        assert response.json()["summary"]["count"] == 2

        response = client.get(
            f"{API}/cash-sessions/{session['id']}/movements", params={"type": "sangria"}, headers=auth_headers["A"]
        )
        assert [m["type"] for m in response.json()["movements"]] == ["sangria"]

        response = client.get(f"{API}/cash-sessions/{session['id']}/movements", headers=auth_headers["C"])
        assert response.status_code == 403

    def test_close_permissions_and_reclose(self, client, auth_headers):
        session = open_session(client, auth_headers["A"])

        response = client.post(f"{API}/cash-sessions/{session['id']}/close", headers=auth_headers["B"])
        assert response.status_code == 403
        assert response.json()["code"] == "authorization_error"

        response = client.post(f"{API}/cash-sessions/{session['id']}/close", headers=auth_headers["A"])
        assert response.status_code == 200
        assert response.json()["status"] == "fechado"
        close_time = response.json()["close_time"]

        response = client.post(f"{API}/cash-sessions/{session['id']}/close", headers=auth_headers["A"])
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_state"

        response = client.get(f"{API}/cash-sessions/{session['id']}", headers=auth_headers["A"])
        assert response.json()["session"]["close_time"] == close_time

    def test_reopen(self, client, auth_headers):
        session = open_session(client, auth_headers["A"])
        client.post(f"{API}/cash-sessions/{session['id']}/close", headers=auth_headers["A"])

        response = client.post(f"{API}/cash-sessions/{session['id']}/reopen", headers=auth_headers["A"])

        assert response.status_code == 200
        assert response.json()["status"] == "aberto"
        assert response.json()["close_time"] is None

    def test_unknown_session(self, client, auth_headers):
        response = client.get(f"{API}/cash-sessions/{uuid4()}", headers=auth_headers["D"])

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_reconcile(self, client, auth_headers):
        session = open_session(client, auth_headers["A"], "10")
        register_sale(client, auth_headers["A"], 5)

        response = client.post(f"{API}/cash-sessions/{session['id']}/reconcile", headers=auth_headers["A"])
        assert response.status_code == 200
        assert response.json()["is_consistent"] is True

        response = client.post(
            f"{API}/cash-sessions/{session['id']}/reconcile", params={"repair": "true"}, headers=auth_headers["A"]
        )
        assert response.status_code == 403
        assert response.json()["code"] == "authorization_error"

    def test_registry_search(self, client, auth_headers):
        first = open_session(client, auth_headers["A"])
        register_sale(client, auth_headers["A"], 7)
        second = open_session(client, auth_headers["B"])

        response = client.get(f"{API}/cash-sessions", params={"search": "bruno"}, headers=auth_headers["D"])
        assert [item["id"] for item in response.json()] == [second["id"]]

        response = client.get(f"{API}/cash-sessions", params={"search": "#ID-1"}, headers=auth_headers["D"])
        assert [item["id"] for item in response.json()] == [first["id"]]

        response = client.get(f"{API}/cash-sessions", headers=auth_headers["A"])
        body = response.json()
        assert [item["id"] for item in body] == [first["id"]]
        assert body[0]["operator_name"] == "Ana Souza"
        assert Decimal(body[0]["cash_in_register"]) == Decimal("7")


# ===== TESTS DE VENTAS =====

class TestSaleEndpoints:

    def test_register_sale_links_session(self, client, auth_headers):
        session = open_session(client, auth_headers["A"])

        sale = register_sale(client, auth_headers["A"], 30)

        assert sale["id"] == "ID-1"
        assert sale["cash_session_id"] == session["id"]
        assert sale["cash_session_display_id"] == 1
        assert sale["origin"] == "PDV"

    def test_generic_patch_of_register_sale(self, client, auth_headers):
        open_session(client, auth_headers["A"])
        sale = register_sale(client, auth_headers["A"], 30)

        response = client.patch(f"{API}/sales/{sale['id']}", json={"total": "31"}, headers=auth_headers["A"])
        assert response.status_code == 422
        assert response.json()["code"] == "policy_violation"

        response = client.patch(f"{API}/pos/sales/{sale['id']}", json={"total": "31"}, headers=auth_headers["A"])
        assert response.status_code == 200
        assert response.json()["status"] == "Editada"

    def test_authorization_endpoint(self, client, auth_headers, users):
        open_session(client, auth_headers["B"])
        sale = register_sale(client, auth_headers["B"], 10, salesperson_id=str(users["A"].id))

        response = client.get(
            f"{API}/sales/{sale['id']}/authorization", params={"operation": "cancel"}, headers=auth_headers["C"]
        )
        assert response.status_code == 200
        assert response.json()["allowed"] is False
        assert "NEGADO" in response.json()["reason"]

        response = client.get(
            f"{API}/sales/{sale['id']}/authorization", params={"operation": "edit"}, headers=auth_headers["A"]
        )
        assert response.json() == {"operation": "edit", "allowed": True, "reason": None}

    def test_view_and_print(self, client, auth_headers):
        open_session(client, auth_headers["A"])
        sale = register_sale(client, auth_headers["A"], 10)

        response = client.get(f"{API}/sales/{sale['id']}", headers=auth_headers["C"])
        assert response.status_code == 403

        response = client.get(f"{API}/sales/{sale['id']}/print", headers=auth_headers["A"])
        assert response.status_code == 200
        assert response.json()["cash_session_label"] == "Caixa #1"
        assert response.json()["salesperson_name"] == "Ana Souza"

    def test_sale_id_variants(self, client, auth_headers):
        sale = register_sale(client, auth_headers["A"], 10)

        for variant in ("1", "id-1"):
            response = client.get(f"{API}/sales/{variant}", headers=auth_headers["A"])
            assert response.status_code == 200
            assert response.json()["id"] == sale["id"]

    def test_list_sales_visibility(self, client, auth_headers):
        register_sale(client, auth_headers["A"], 10)

        assert len(client.get(f"{API}/sales", headers=auth_headers["A"]).json()) == 1
        assert client.get(f"{API}/sales", headers=auth_headers["C"]).json() == []
        assert len(client.get(f"{API}/sales", headers=auth_headers["D"]).json()) == 1

    def test_cancel_requires_reason(self, client, auth_headers):
        sale = register_sale(client, auth_headers["A"], 10)

        response = client.post(f"{API}/sales/{sale['id']}/cancel", json={"reason": " "}, headers=auth_headers["A"])

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.parametrize("status_value", ["Cancelada", "Editada"])
    def test_invalid_initial_status(self, client, auth_headers, status_value):
        response = client.post(
            f"{API}/sales",
            json={"total": "1", "payments": [], "status": status_value},
            headers=auth_headers["A"],
        )

        assert response.status_code == 422

    @pytest.mark.parametrize("total", ["0.001", "10000000000000"])
    def test_sale_total_outside_money_column(self, client, auth_headers, total):
        response = client.post(
            f"{API}/pos/sales",
            json={"total": total, "payments": [{"method": "Pix", "value": total}]},
            headers=auth_headers["A"],
        )

        assert response.status_code == 422
        assert client.get(f"{API}/sales", headers=auth_headers["A"]).json() == []
