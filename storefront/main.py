"""
Storefront Service API

This module implements the FastAPI application for the order engine: cart,
checkout, one-click-buy, cancellation, the return/refund workflow, the
transaction ledger and the reconciliation report.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    GET/POST/DELETE /cart: The caller's cart
    POST /orders, POST /orders/one-click-buy: Place an order
    GET /orders, GET /orders/admin/all, GET /orders/{order_id}: Read orders
    GET /orders/{order_id}/timeline: Order event history
    PATCH /orders/{order_id}/cancel, PATCH /orders/{order_id}/status: Change an order
    POST /orders/{order_id}/returns: Open a return request
    GET /returns/mine, GET /returns, GET /returns/{return_id}: Read return requests
    PATCH /returns/{return_id}/approve, PATCH /returns/{return_id}/reject: Decide a return
    GET /transactions, /transactions/mine, /transactions/statistics, /transactions/{id}: Ledger
    POST /transactions/adjustments: Append an adjustment entry
    GET /admin/reconciliation: Ledger drift report

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "storefront-service"
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import auth, cart, clients, config, crud, ledger, lifecycle, models, reconciliation, returns, schemas, webhooks
from .clients.payment_gateway import PaymentGateway
from .database import engine, get_db
from .exceptions import StorefrontError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="storefront-service", lifespan=lifespan)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Render typed engine failures as JSON error bodies with their HTTP status."""
    if exc.status_code >= 500:
        body = {"detail": exc.message, "errors": []}
    else:
        body = {"detail": exc.message, "errors": exc.errors, **exc.extra()}
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies and parameters in the same shape as engine validation failures."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"][1:])
        errors.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation failed", "errors": errors},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred", "errors": []},
    )


def get_payment_gateway() -> PaymentGateway:
    return clients.get_gateway()


def _paged(items, total: int, page: int, page_size: int) -> dict:
    return {"items": items, **crud.paginate(total, page, page_size)}


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the storefront service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

@app.get("/cart", response_model=schemas.CartSummary)
def get_cart(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    return cart.cart_summary(db, current_user.id)


@app.post("/cart/items", response_model=schemas.CartItem, status_code=status.HTTP_201_CREATED)
def add_cart_item(
    item: schemas.CartItemCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Add a product to the caller's cart, merging with an existing line."""
    return cart.add_to_cart(db, current_user.id, item.product_id, item.count)


@app.delete("/cart", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    cart.empty_cart(db, current_user.id)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@app.post("/orders", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
def create_order(
    request: schemas.CheckoutRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Create an order from the caller's cart.

    Stock is reserved for every line, prices are snapshotted, a Purchase
    entry is written to the ledger and the cart is cleared.

    Raises:
        EmptyCart (400), InsufficientStock (409), ValidationError (422)
    """
    order = lifecycle.checkout(db, current_user.id, request.shipping_address)
    background_tasks.add_task(webhooks.send_webhook, "order.created", webhooks.order_payload(order))
    return order


@app.post("/orders/one-click-buy", response_model=schemas.OneClickBuyResponse, status_code=status.HTTP_201_CREATED)
async def one_click_buy(
    request: schemas.OneClickBuyRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Charge the cart total through the payment gateway, then create the order.

    Raises:
        PaymentDeclined (402): gateway status and message passed through
        EmptyCart (400), InsufficientStock (409), ValidationError (422)
    """
    order, payment = await lifecycle.one_click_buy(
        db, current_user.id, request.shipping_address, request.payment_method, gateway
    )
    background_tasks.add_task(webhooks.send_webhook, "order.created", webhooks.order_payload(order))
    return {
        "order": order,
        "payment_transaction_id": payment.transaction_id,
        "payment_status": payment.status,
        "message": payment.message,
    }


@app.get("/orders", response_model=schemas.PagedOrders)
def list_my_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """List the caller's orders, newest first."""
    orders, total = crud.get_orders_for_user(db, current_user.id, page, page_size, order_status)
    return _paged(orders, total, page, page_size)


@app.get("/orders/admin/all", response_model=schemas.PagedOrders)
def list_all_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    sort_by: str = Query("order_date", pattern="^(order_date|total_amount)$"),
    descending: bool = True,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """List every order with filters (admin)."""
    orders, total = crud.get_all_orders(
        db,
        status=order_status,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        min_amount=min_amount,
        max_amount=max_amount,
        sort_by=sort_by,
        descending=descending,
        page=page,
        page_size=page_size,
    )
    return _paged(orders, total, page, page_size)


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Get a single order by ID (owner or admin).

    Raises:
        NotFound (404), Forbidden (403)
    """
    return crud.get_order_for_actor(db, order_id, current_user.id, current_user.is_admin)


@app.get("/orders/{order_id}/timeline", response_model=List[schemas.OrderEvent])
def get_order_timeline(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """Get the event timeline for an order, oldest first (owner or admin)."""
    crud.get_order_for_actor(db, order_id, current_user.id, current_user.is_admin)
    return crud.get_order_events(db, order_id)


@app.patch("/orders/{order_id}/cancel", response_model=schemas.Order)
def cancel_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Cancel a pending order and release its stock (owner or admin).

    Raises:
        InvalidStateTransition (409): if the order is not Pending
    """
    order = lifecycle.cancel_order(db, order_id, current_user.id, current_user.is_admin)
    background_tasks.add_task(webhooks.send_webhook, "order.cancelled", webhooks.order_payload(order))
    return order


@app.patch("/orders/{order_id}/status", response_model=schemas.Order)
def update_order_status(
    order_id: int,
    update: schemas.OrderStatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """Set any order status (admin). No stock or ledger effect."""
    order, old_status = lifecycle.update_order_status(db, order_id, update.status, current_user.id, update.note)
    background_tasks.add_task(
        webhooks.send_webhook, "order.status_changed", webhooks.status_change_payload(order, old_status)
    )
    return order


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------

@app.post("/orders/{order_id}/returns", response_model=schemas.OrderReturn, status_code=status.HTTP_201_CREATED)
def create_return(
    order_id: int,
    request: schemas.ReturnCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    """
    Open a return request for a delivered or completed order (owner or admin).

    Raises:
        InvalidStateTransition (409): order not returnable, or a request is already pending
    """
    order_return = returns.request_return(
        db,
        order_id,
        current_user.id,
        request.return_reason,
        request.return_description,
        current_user.is_admin,
    )
    background_tasks.add_task(webhooks.send_webhook, "return.requested", webhooks.return_payload(order_return))
    return order_return


@app.get("/returns/mine", response_model=schemas.PagedReturns)
def list_my_returns(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    items, total = returns.list_my_returns(db, current_user.id, page, page_size)
    return _paged(items, total, page, page_size)


@app.get("/returns", response_model=schemas.PagedReturns)
def list_all_returns(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    return_status: Optional[str] = Query(None, alias="status"),
    reason: Optional[str] = None,
    order_id: Optional[int] = None,
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """List return requests with filters (admin)."""
    items, total = returns.list_all_returns(
        db,
        status=return_status,
        reason=reason,
        order_id=order_id,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return _paged(items, total, page, page_size)


@app.get("/returns/{return_id}", response_model=schemas.OrderReturn)
def get_return(
    return_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    return returns.get_return(db, return_id, current_user.id, current_user.is_admin)


@app.patch("/returns/{return_id}/approve", response_model=schemas.OrderReturn)
def approve_return(
    return_id: int,
    request: schemas.ReturnApprove,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """
    Approve a pending return (admin).

    Writes the Refund entry, marks the order Returned and releases stock,
    all in one transaction.
    """
    order_return = returns.approve_return(
        db, return_id, request.refund_amount, request.admin_note, current_user.id
    )
    background_tasks.add_task(webhooks.send_webhook, "return.approved", webhooks.return_payload(order_return))
    return order_return


@app.patch("/returns/{return_id}/reject", response_model=schemas.OrderReturn)
def reject_return(
    return_id: int,
    request: schemas.ReturnReject,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    order_return = returns.reject_return(db, return_id, request.admin_note, current_user.id)
    background_tasks.add_task(webhooks.send_webhook, "return.rejected", webhooks.return_payload(order_return))
    return order_return


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

@app.get("/transactions", response_model=schemas.PagedTransactions)
def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    transaction_type: Optional[str] = None,
    transaction_status: Optional[str] = Query(None, alias="status"),
    user_id: Optional[int] = None,
    order_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = Query("transaction_date", pattern="^(transaction_date|amount)$"),
    descending: bool = True,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """List ledger entries with filters (admin)."""
    items, total = ledger.list_transactions(
        db,
        transaction_type=transaction_type,
        status=transaction_status,
        user_id=user_id,
        order_id=order_id,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        descending=descending,
        page=page,
        page_size=page_size,
    )
    return _paged(items, total, page, page_size)


@app.get("/transactions/mine", response_model=schemas.PagedTransactions)
def list_my_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    items, total = ledger.list_my_transactions(db, current_user.id, page, page_size)
    return _paged(items, total, page, page_size)


@app.get("/transactions/statistics", response_model=schemas.TransactionStatistics)
def get_transaction_statistics(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """
    Revenue, refunds and net revenue derived from the ledger (admin).

    Net revenue also subtracts purchases of orders that were later cancelled.
    """
    return ledger.statistics(db, start_date, end_date)


@app.get("/transactions/{transaction_id}", response_model=schemas.Transaction)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user)
):
    return ledger.get_transaction(db, transaction_id, current_user.id, current_user.is_admin)


@app.post("/transactions/adjustments", response_model=schemas.Transaction, status_code=status.HTTP_201_CREATED)
def create_adjustment(
    request: schemas.AdjustmentCreate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """Append an Adjustment entry for an order (admin)."""
    return ledger.record_adjustment(db, request.order_id, request.amount, request.description, current_user.id)


@app.get("/admin/reconciliation", response_model=schemas.ReconciliationReport)
def get_reconciliation_report(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin)
):
    """Compare orders, returns and stock against the ledger (admin, read-only)."""
    return reconciliation.reconcile(db)
