from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from app.core.config import settings


class AuthContext(BaseModel):
    """Identidad del operador que ejecuta la acción."""
    user_id: UUID
    user_role: Optional[str] = None
    user_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.user_role in settings.admin_roles
