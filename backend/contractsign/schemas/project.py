from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ProjectRecord(BaseModel):
    """Business record a document is rendered from (a construction project)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: Optional[str] = None

    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_street: Optional[str] = None
    client_city: Optional[str] = None
    client_zip: Optional[str] = None
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    client_birth_place: Optional[str] = None
    client_birth_date: Optional[Union[date, str]] = None
    client_mother_name: Optional[str] = None
    client_tax_id: Optional[str] = None

    property_address_same: Optional[bool] = None
    property_street: Optional[str] = None
    property_city: Optional[str] = None
    property_zip: Optional[str] = None
    property_hrsz: Optional[str] = None

    area_sqm: Optional[float] = None
    floor_material: Optional[str] = None
    floor_material_extra: Optional[str] = None
    insulation_option: Optional[str] = None
    hem_value: Optional[str] = None

    created_at: Optional[Union[datetime, str]] = Field(default=None, alias="createdAt")
    updated_at: Optional[Union[datetime, str]] = Field(default=None, alias="updatedAt")
