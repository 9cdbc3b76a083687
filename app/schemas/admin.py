from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class AddInventoryRequest(BaseModel):
    city_id: int
    product_id: int
    quantity: int = Field(ge=1, le=500)


class InventorySummaryQuery(BaseModel):
    city_id: int
    on_date: Optional[date] = None


class ForecastQuery(BaseModel):
    city_id: int
    start: date
    end: date


class OrderListQuery(BaseModel):
    status: Optional[str] = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1, le=200)


class AdminCancelRequest(BaseModel):
    reason: str = ""
    refund: bool = True


class StatusUpdateRequest(BaseModel):
    status: str


class RouteQuery(BaseModel):
    city_id: int
    day: Optional[date] = None
