"""
Fixtures compartidos por los tests de todos los módulos.

La base es SQLite en memoria (StaticPool): los tests de servicio y el
TestClient comparten la misma conexión, así que lo que un test confirma
con commit es visible para la API.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("APP_SECRET_STRING", "test-secret-key-with-enough-length-for-hs256")

import pytest
from fastapi.testclient import TestClient
from uuid import uuid4

from app.database.database import Base, SessionLocal, engine
from app.main import app
from app.modules.auth.models import User
from app.modules.auth.schemas import AuthContext
from app.modules.auth.utils import create_access_token


def _context(user: User) -> AuthContext:
    return AuthContext(user_id=user.id, user_role=user.role, user_name=user.name)


@pytest.fixture
def db_session():
    """Sesión sobre un esquema recién creado"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def users(db_session):
    """
    A y B vendedores, C vendedor sin relación, D administrador.
    """
    people = {
        "A": User(id=uuid4(), name="Ana Souza", email="ana@loja.com", role="seller"),
        "B": User(id=uuid4(), name="Bruno Lima", email="bruno@loja.com", role="seller"),
        "C": User(id=uuid4(), name="Carla Dias", email="carla@loja.com", role="seller"),
        "D": User(id=uuid4(), name="Diego Admin", email="diego@loja.com", role="admin"),
    }
    db_session.add_all(people.values())
    db_session.commit()
    return people


@pytest.fixture
def ctx(users):
    """AuthContext por usuario"""
    return {key: _context(user) for key, user in users.items()}


@pytest.fixture
def client(db_session):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(users):
    """Headers Bearer por usuario"""
    return {
        key: {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
        for key, user in users.items()
    }
