"""
Base models and common mixins.
Provides reusable functionality for all models.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from issa.core.utils.datetime_utils import utc_now


class TimestampMixin(BaseModel):
    """
    Mixin for automatic timestamps.
    Adds created_at and updated_at to any model.
    """

    created_at: datetime = Field(default_factory=utc_now, description="UTC creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="UTC last update timestamp")

    def touch(self) -> None:
        """Updates the modification timestamp."""
        self.updated_at = utc_now()


class IssaBaseModel(BaseModel):
    """
    Base model for all ISSA models.
    Common configuration and enhanced validation.
    """

    model_config = ConfigDict(
        # Validate values on assignment
        validate_assignment=True,
        # Use enum values
        use_enum_values=True,
        # Prevent extra fields
        extra="forbid",
        json_schema_extra={"additionalProperties": False},
    )
