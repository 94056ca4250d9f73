"""
Base schema and mixins shared by the import models.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base for all schemas.

    Top-level string fields are stripped; dict payloads such as draft
    values are left exactly as mapped. Assignments are re-validated so a
    session mutated in place stays consistent before it is saved.
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class TimestampMixin(BaseModel):
    """Row timestamps set by the session store."""
    created_at: datetime
    updated_at: Optional[datetime] = None
