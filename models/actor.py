"""
Authenticated actor as handed over by the auth layer.

Identity verification happens upstream; the import pipeline only checks
capabilities and ownership.
"""

from pydantic import Field

from models.base import BaseSchema

IMPORT_WRITE = "import:write"
IMPORT_ADMIN = "import:admin"


class Actor(BaseSchema):
    """Caller identity plus granted capabilities."""

    id: str = Field(..., min_length=1, description="Actor identifier")
    capabilities: frozenset[str] = Field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def is_import_admin(self) -> bool:
        return self.can(IMPORT_ADMIN)
