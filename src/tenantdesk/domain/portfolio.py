from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class AccountInfo(BaseModel):
    phone_number: str
    profile_name: Optional[str] = None
    subscription: Optional[str] = None
    verified: bool = False
    verified_date: Optional[str] = None


class PropertyRecord(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    units: Optional[int] = None
    total_amount: Optional[float] = None


class UnitRecord(BaseModel):
    id: str
    unit_number: str
    property_id: Optional[str] = None
    rent_amount: Optional[float] = None


class TenantRecord(BaseModel):
    id: str
    name: str
    rent_amount: Optional[float] = None
    unit_id: Optional[str] = None


class PortfolioSnapshot(BaseModel):
    """Everything a recipient owns, as handed over by the CRUD layer."""

    account: AccountInfo
    properties: List[PropertyRecord] = Field(default_factory=list)
    units: List[UnitRecord] = Field(default_factory=list)
    tenants: List[TenantRecord] = Field(default_factory=list)
