"""
Field mapping profile schemas.

A profile is a named, reusable list of field mappings for one provider.
At most one profile per (company, provider) is the default.
"""

from pydantic import Field, field_validator
from typing import Optional
from datetime import datetime

from models.base import BaseSchema
from models.field_mapping import FieldMapping


class FieldMappingProfileCreate(BaseSchema):
    """
    Create a field mapping profile.

    Required: provider, name, mappings
    Optional: is_default
    """

    provider: str = Field(..., min_length=1, max_length=50, description="Provider key, e.g. ROASTIFY")
    name: str = Field(..., min_length=1, max_length=100, description="Profile name")
    mappings: list[FieldMapping] = Field(..., min_length=1, description="Ordered mapping rules")
    is_default: bool = Field(default=False, description="Use when a job names no profile")

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        """Providers are stored uppercase."""
        return v.upper()


class FieldMappingProfileUpdate(BaseSchema):
    """
    Update a profile.

    All fields optional - only provided fields are updated.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    mappings: Optional[list[FieldMapping]] = Field(None, min_length=1)
    is_default: Optional[bool] = None


class FieldMappingProfileResponse(BaseSchema):
    """Field mapping profile as stored."""

    id: str = Field(..., description="Profile UUID")
    company_id: str = Field(..., description="Owning company")
    provider: str
    name: str
    mappings: list[FieldMapping] = Field(default_factory=list)
    is_default: bool = False
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
