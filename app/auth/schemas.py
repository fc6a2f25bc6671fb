from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC checks.
    school_id is the tenant every query is scoped to; SUPER_ADMIN may act on any school.
    """

    id: UUID
    school_id: Optional[UUID] = None
    role: str
    permissions: Dict[str, Dict[str, bool]]

    @property
    def is_super_admin(self) -> bool:
        return self.role == "SUPER_ADMIN"
