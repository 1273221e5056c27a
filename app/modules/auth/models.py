from sqlalchemy import Column, String, Boolean
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.database.database import Base
from app.common.mixins import TimestampMixin


class User(Base, TimestampMixin):
    """
    Operador del sistema. El login y la gestión de contraseñas viven fuera
    de este servicio; aquí sólo se resuelve identidad, nombre y rol.
    """
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)
    email = Column(String, unique=True, nullable=False)
    role = Column(String(30), nullable=False, default="seller")  # owner, admin, seller, viewer
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role}')>"
