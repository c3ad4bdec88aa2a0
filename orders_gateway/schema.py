from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

# largest value NUMERIC(10,2) holds
MAX_ORDER_TOTAL = Decimal("99999999.99")


class OrderItem(BaseModel):
    id: str = Field(..., min_length=1)
    qty: StrictInt = Field(..., gt=0)


class NewOrderReq(BaseModel):
    items: list[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0, le=float(MAX_ORDER_TOTAL), allow_inf_nan=False)
    address: Optional[str] = None


class OrderInfo(BaseModel):
    id:        int
    items:     list[OrderItem]
    total:     float
    address:   Optional[str] = None
    createdAt: datetime = Field(..., validation_alias="created_at")

    # --- Pydantic-v2 options ---
    model_config = ConfigDict(
        from_attributes=True,   # built straight from Order rows
    )


class OrderList(BaseModel):
    orders: list[OrderInfo]


class OrderSummary(BaseModel):
    """Compact view handed to the machine-to-machine summary caller."""
    id:        int
    total:     float
    createdAt: datetime = Field(..., validation_alias="created_at")

    model_config = ConfigDict(from_attributes=True)


class Health(BaseModel):
    ok: bool = True
