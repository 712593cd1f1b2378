from typing import Dict
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC checks.
    coaching_id scopes every query; it comes from the access token.
    """

    id: UUID
    coaching_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]]
