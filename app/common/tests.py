"""
Tests para utilidades comunes: reintentos, fechas y errores de dominio
"""

import pytest
from datetime import date, datetime
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, OperationalError

from app.common import retry
from app.common.dates import local_range_utc, to_local
from app.common.exceptions import ConflictError, DomainError, domain_error_handler


class FakeSession:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


class FlakyReader:
    def __init__(self, failures, error):
        self.db = FakeSession()
        self.calls = 0
        self.failures = failures
        self.error = error

    @retry.retry_on_transient
    def read(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return value


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(retry.settings, "DB_RETRY_BASE_DELAY", 0)
    monkeypatch.setattr(retry.settings, "DB_RETRY_ATTEMPTS", 3)


# ===== TESTS DE REINTENTOS =====

class TestRetryOnTransient:

    def test_recovers_after_transient_errors(self):
        reader = FlakyReader(2, OperationalError("SELECT 1", {}, Exception("server closed the connection")))

        assert reader.read("ok") == "ok"
        assert reader.calls == 3
        assert reader.db.rollbacks == 2

    def test_gives_up_after_max_attempts(self):
        reader = FlakyReader(10, OperationalError("SELECT 1", {}, Exception("timeout")))

        with pytest.raises(OperationalError):
            reader.read("ok")
        assert reader.calls == 3

    def test_non_transient_errors_are_not_retried(self):
        reader = FlakyReader(1, IntegrityError("INSERT", {}, Exception("duplicate")))

        with pytest.raises(IntegrityError):
            reader.read("ok")
        assert reader.calls == 1
        assert reader.db.rollbacks == 0


# ===== TESTS DE FECHAS =====

class TestLocalDates:

    def test_local_range_covers_whole_days(self, monkeypatch):
        monkeypatch.setattr("app.common.dates.settings.TIMEZONE", "America/Sao_Paulo")

        lower, upper = local_range_utc(date(2024, 3, 10), date(2024, 3, 10))

        assert lower == datetime(2024, 3, 10, 3, 0)
        assert upper == datetime(2024, 3, 11, 3, 0)

    def test_open_bounds(self):
        assert local_range_utc(None, None) == (None, None)

    def test_to_local_from_naive_utc(self, monkeypatch):
        monkeypatch.setattr("app.common.dates.settings.TIMEZONE", "America/Sao_Paulo")

        local = to_local(datetime(2024, 3, 10, 2, 30))

        assert local.date() == date(2024, 3, 9)
        assert local.hour == 23


# ===== TESTS DEL HANDLER DE ERRORES =====

class TestDomainErrorHandler:

    def test_renders_detail_and_code(self):
        app = FastAPI()
        app.add_exception_handler(DomainError, domain_error_handler)

        @app.get("/boom")
        async def boom():
            raise ConflictError("Você já possui um caixa aberto.")

        response = TestClient(app).get("/boom")

        assert response.status_code == 409
        assert response.json() == {"detail": "Você já possui um caixa aberto.", "code": "conflict"}

    def test_code_override(self):
        error = ConflictError("x", code="custom")

        assert error.code == "custom"
        assert ConflictError("y").code == "conflict"
