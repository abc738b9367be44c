"""
SQLAlchemy ORM models for the Storefront service.

Defines the database schema for products, carts, orders, returns, the
append-only transaction ledger and the order timeline.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base


class OrderStatus:
    """Order lifecycle states."""
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"

    ALL = (PENDING, PROCESSING, SHIPPED, DELIVERED, COMPLETED, CANCELLED, RETURNED)


class ReturnStatus:
    """Return request states."""
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    COMPLETED = "Completed"

    ALL = (PENDING, APPROVED, REJECTED, COMPLETED)


class TransactionType:
    PURCHASE = "Purchase"
    REFUND = "Refund"
    ADJUSTMENT = "Adjustment"

    ALL = (PURCHASE, REFUND, ADJUSTMENT)


class TransactionStatus:
    COMPLETED = "Completed"
    FAILED = "Failed"

    ALL = (COMPLETED, FAILED)


class Product(Base):
    """
    Product model, referenced by carts and order lines.

    Only the fields the order engine needs are mapped; catalog management
    lives elsewhere.

    Attributes:
        id (int): Primary key
        name (str): Display name
        price (Decimal): Current catalog price
        stock (int): Units available, never negative
        critical_stock_level (int): Threshold for low-stock reporting
        is_active (bool): Whether the product can be bought
        created_at (datetime): Timestamp when the product was created
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(18, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    critical_stock_level = Column(Integer, nullable=False, default=5)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class CartItem(Base):
    """
    A product line in a user's cart.

    Attributes:
        id (int): Primary key
        user_id (int): Owner of the cart
        product_id (int): Product in the cart
        count (int): Requested quantity
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product", lazy="joined")

    @property
    def product_name(self) -> str:
        return self.product.name

    @property
    def unit_price(self) -> Decimal:
        return self.product.price

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.count


class Order(Base):
    """
    Order header.

    The total is computed once at creation from the line snapshots and never
    recomputed. After creation only the status changes.

    Attributes:
        id (int): Primary key
        user_id (int): ID of the user who placed the order
        status (str): One of OrderStatus
        order_date (datetime): When the order was placed
        shipping_address (str): Free-text delivery address
        total_amount (Decimal): Sum of line subtotals at order time
        items (list): Ordered OrderItem line snapshots
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING, index=True)
    order_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    shipping_address = Column(String(500), nullable=False)
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    """
    Immutable order line snapshot.

    Attributes:
        id (int): Primary key
        order_id (int): Owning order
        product_id (int): Ordered product
        product_name (str): Product name at order time
        unit_price (Decimal): Product price at order time
        quantity (int): Units ordered
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    product_name = Column(String(200), nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Transaction(Base):
    """
    Ledger entry. Rows are appended and never updated or deleted.

    Attributes:
        id (int): Primary key
        transaction_type (str): Purchase, Refund or Adjustment
        amount (Decimal): Monetary amount
        transaction_date (datetime): When the entry was written
        description (str): Human-readable description
        status (str): Completed or Failed
        order_id (int): Related order
        user_id (int): Related user
        gateway_transaction_id (str): Payment gateway reference, one-click purchases only
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(String(50), nullable=False, index=True)
    amount = Column(Numeric(18, 2), nullable=False)
    transaction_date = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    description = Column(String(500), nullable=True)
    status = Column(String(50), nullable=False, default=TransactionStatus.COMPLETED)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    gateway_transaction_id = Column(String(100), nullable=True)


class OrderReturn(Base):
    """
    Return request for an order.

    At most one request per order may be Pending; the partial unique index
    enforces it at the storage layer.

    Attributes:
        id (int): Primary key
        order_id (int): Order being returned
        user_id (int): Requesting user
        return_reason (str): Short reason code, e.g. "Defective"
        return_description (str): Optional free text
        status (str): One of ReturnStatus
        refund_amount (Decimal): Set on approval
        admin_note (str): Set on approval or rejection
        created_at (datetime): When the request was opened
        updated_at (datetime): Last status change
        refund_transaction_id (int): Ledger entry written on approval
    """
    __tablename__ = "order_returns"
    __table_args__ = (
        Index(
            "uq_order_returns_pending_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'Pending'"),
            sqlite_where=text("status = 'Pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    return_reason = Column(String(50), nullable=False)
    return_description = Column(String(1000), nullable=True)
    status = Column(String(20), nullable=False, default=ReturnStatus.PENDING)
    refund_amount = Column(Numeric(18, 2), nullable=True)
    admin_note = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True)
    refund_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)

    order = relationship("Order")
    refund_transaction = relationship("Transaction")


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (int): Foreign key to the order
        event_type (str): Type of event (e.g., "created", "cancelled", "return_approved")
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        user_id (int): ID of the user who triggered the event (optional)
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
