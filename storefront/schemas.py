"""
Pydantic schemas for request/response validation in the Storefront service.

These schemas define the structure of data for API requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from . import config
from .models import OrderStatus


class CartItemCreate(BaseModel):
    """Schema for adding a product to the cart."""
    product_id: int
    count: int = Field(1, gt=0, le=config.MAX_LINE_QUANTITY)


class CartItem(BaseModel):
    id: int
    product_id: int
    product_name: str
    unit_price: Decimal
    count: int
    subtotal: Decimal

    class Config:
        from_attributes = True


class CartSummary(BaseModel):
    items: List[CartItem]
    total_amount: Decimal


class CheckoutRequest(BaseModel):
    """Schema for standard checkout."""
    shipping_address: str = Field(
        ...,
        min_length=config.SHIPPING_ADDRESS_MIN_LENGTH,
        max_length=config.SHIPPING_ADDRESS_MAX_LENGTH,
        description="Delivery address",
    )


class OneClickBuyRequest(CheckoutRequest):
    """Schema for one-click checkout."""
    payment_method: str = Field("Default", max_length=config.PAYMENT_METHOD_MAX_LENGTH)


class OrderStatusUpdate(BaseModel):
    """Schema for the administrative status update."""
    status: str
    note: Optional[str] = Field(None, max_length=300)

    @field_validator("status")
    @classmethod
    def status_must_be_known(cls, value: str) -> str:
        if value not in OrderStatus.ALL:
            raise ValueError(f"must be one of {', '.join(OrderStatus.ALL)}")
        return value


class OrderItem(BaseModel):
    """Schema for an order line snapshot."""
    id: int
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal

    class Config:
        from_attributes = True


class Order(BaseModel):
    """
    Schema for order responses.

    Attributes:
        id (int): Order identifier
        user_id (int): ID of the user who placed the order
        status (str): Order status
        order_date (datetime): When the order was placed
        shipping_address (str): Delivery address
        total_amount (Decimal): Total fixed at creation
        items (List[OrderItem]): Line snapshots
    """
    id: int
    user_id: int
    status: str
    order_date: datetime
    shipping_address: str
    total_amount: Decimal
    items: List[OrderItem] = Field(default_factory=list)

    class Config:
        from_attributes = True


class OneClickBuyResponse(BaseModel):
    order: Order
    payment_transaction_id: Optional[str] = None
    payment_status: Optional[str] = None
    message: Optional[str] = None


class Page(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_previous: bool
    has_next: bool


class PagedOrders(Page):
    items: List[Order]


class OrderEvent(BaseModel):
    """
    Schema for order timeline events.

    Attributes:
        id (int): Event ID
        order_id (int): Order identifier
        event_type (str): Type of event (created, cancelled, status_changed, return_*)
        description (str): Human-readable event description
        old_value (str): Previous value (optional)
        new_value (str): New value (optional)
        user_id (int): User who triggered the event (optional)
        created_at (datetime): When the event occurred
    """
    id: int
    order_id: int
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReturnCreate(BaseModel):
    """Schema for opening a return request."""
    return_reason: str = Field(..., min_length=1, max_length=config.RETURN_REASON_MAX_LENGTH)
    return_description: Optional[str] = Field(None, max_length=config.RETURN_DESCRIPTION_MAX_LENGTH)


class ReturnApprove(BaseModel):
    refund_amount: Decimal = Field(..., ge=Decimal("0.01"), max_digits=18, decimal_places=2)
    admin_note: Optional[str] = Field(None, max_length=config.ADMIN_NOTE_MAX_LENGTH)


class ReturnReject(BaseModel):
    admin_note: str = Field(..., min_length=1, max_length=config.ADMIN_NOTE_MAX_LENGTH)


class OrderReturn(BaseModel):
    """Schema for return request responses."""
    id: int
    order_id: int
    user_id: int
    return_reason: str
    return_description: Optional[str] = None
    status: str
    refund_amount: Optional[Decimal] = None
    admin_note: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    refund_transaction_id: Optional[int] = None

    class Config:
        from_attributes = True


class PagedReturns(Page):
    items: List[OrderReturn]


class Transaction(BaseModel):
    """Schema for ledger entries."""
    id: int
    transaction_type: str
    amount: Decimal
    transaction_date: datetime
    description: Optional[str] = None
    status: str
    order_id: int
    user_id: int
    gateway_transaction_id: Optional[str] = None

    class Config:
        from_attributes = True


class PagedTransactions(Page):
    items: List[Transaction]


class AdjustmentCreate(BaseModel):
    order_id: int
    amount: Decimal = Field(..., max_digits=18, decimal_places=2)
    description: Optional[str] = Field(None, max_length=500)


class TransactionStatistics(BaseModel):
    total_transactions: int
    total_revenue: Decimal
    total_refunds: Decimal
    cancelled_purchases: Decimal
    net_revenue: Decimal
    average_order_value: Decimal
    count_by_status: Dict[str, int]
    count_by_type: Dict[str, int]
    amount_by_type: Dict[str, Decimal]
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ReconciliationIssue(BaseModel):
    kind: str
    message: str
    order_id: Optional[int] = None
    return_id: Optional[int] = None
    product_id: Optional[int] = None


class ReconciliationReport(BaseModel):
    generated_at: datetime
    orders_checked: int
    transactions_checked: int
    consistent: bool
    issues: List[ReconciliationIssue]
