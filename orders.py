"""
Order placement and order administration.

``place_order`` turns the caller's active cart into an order:

1. validate shipping and payment input (no database access yet)
2. for gateway-referenced payments, return the already-placed order when the
   same reference was used before, otherwise verify the payment with the gateway
3. load the active cart and snapshot its lines
4. price the order and reconcile it against the verified paid amount
5. insert the order under a fresh order number, then retire the cart

The cart is retired with a conditional update. If the cart changed after it was
read, the freshly inserted order is deleted again so no half-placed order
survives.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, Response, status
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from cart import PRODUCT_SUMMARY, calculate_total_amount, find_active_cart, load_products
from database import get_db, get_documents, next_sequence, parse_object_id, serialize_document, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from payments import PortOneClient, get_payment_gateway
from responses import ok
from schemas import (
    CANCELLABLE_STATUSES,
    UNDELETABLE_STATUSES,
    Amount,
    CartStatus,
    Order,
    OrderCancel,
    OrderCreate,
    OrderItem,
    OrderStatus,
    OrderStatusChange,
    OrderUpdate,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Points,
    Shipping,
    ShippingRequest,
)
from security import Identity, get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

FREE_SHIPPING_THRESHOLD = 50000
SHIPPING_FEE = 3000
REQUIRED_SHIPPING_FIELDS = ("recipient_name", "recipient_phone", "postal_code", "address")
USER_SUMMARY = {"name": 1, "email": 1, "phone": 1}


# ---------- Pricing & numbering ----------

def calculate_amounts(items_total: float, points_used: float = 0) -> Dict[str, float]:
    shipping_fee = 0 if items_total >= FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    discount = points_used or 0
    return {
        "itemsTotal": items_total,
        "shippingFee": shipping_fee,
        "discount": discount,
        "total": items_total + shipping_fee - discount,
    }


def points_earned(total: float) -> int:
    """1% of the order total, rounded down"""
    return int(math.floor(total / 100))


def format_order_number(day: datetime, sequence: int) -> str:
    return f"ORD-{day.strftime('%Y%m%d')}-{sequence:03d}"


def generate_order_number(db: Database, now: Optional[datetime] = None) -> str:
    day = (now or utcnow()).astimezone(timezone.utc)
    sequence = next_sequence(db, f"order-{day.strftime('%Y%m%d')}")
    return format_order_number(day, sequence)


# ---------- Lookups ----------

def find_order(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")})
    if not order:
        raise NotFoundError("Order not found.")
    return order


def populate_order(db: Database, order: dict, with_user: bool = True) -> dict:
    data = serialize_document(order)
    products = load_products(db, (item["product"] for item in order.get("items", [])), PRODUCT_SUMMARY)
    for line, item in zip(data.get("items", []), order.get("items", [])):
        product = products.get(item["product"])
        line["product"] = serialize_document(product) if product else None
    if with_user:
        user = db["user"].find_one({"_id": order.get("user")}, USER_SUMMARY)
        data["user"] = serialize_document(user) if user else data.get("user")
    return data


def paginated(db: Database, query: dict, page: int, limit: int, with_user: bool) -> dict:
    orders = get_documents(
        db,
        "order",
        query,
        sort=[("createdAt", DESCENDING), ("_id", DESCENDING)],
        skip=(page - 1) * limit,
        limit=limit,
    )
    total = db["order"].count_documents(query)
    return ok(
        [populate_order(db, order, with_user=with_user) for order in orders],
        count=len(orders),
        total=total,
        page=page,
        totalPages=math.ceil(total / limit),
    )


# ---------- Order placement ----------

def _validate_request(payload: OrderCreate) -> None:
    shipping = payload.shipping
    if shipping is None or any(not getattr(shipping, name) for name in REQUIRED_SHIPPING_FIELDS):
        raise ValidationError("Please fill in all shipping details.")
    if payload.payment is None or not payload.payment.method:
        raise ValidationError("Please choose a payment method.")
    if payload.points_used < 0:
        raise ValidationError("Points used cannot be negative.")


def snapshot_items(cart_items: List[dict], products: Dict) -> List[OrderItem]:
    """Copy product details onto each line so later catalog edits leave the order intact"""
    if any(item["product"] not in products for item in cart_items):
        raise ValidationError("Your cart contains products that no longer exist. Please review your cart.")
    snapshot = []
    for item in cart_items:
        product = products[item["product"]]
        if not product.get("productCode") or not product.get("name") or not product.get("image"):
            raise ValidationError(f"Product information is incomplete for {product.get('productCode') or product['_id']}.")
        snapshot.append(
            OrderItem(
                product=product["_id"],
                product_code=product["productCode"],
                product_name=product["name"],
                product_image=product["image"],
                quantity=item["quantity"],
                price=item["price"],
                subtotal=item["price"] * item["quantity"],
            )
        )
    return snapshot


def _existing_payment_order(db: Database, user_id, payment_id: str) -> Optional[dict]:
    return db["order"].find_one({"payment.paymentId": payment_id, "user": user_id})


def _retire_cart(db: Database, cart: dict, order_id) -> None:
    """Flip the cart to ordered; undo the order insert if the cart moved underneath us"""
    try:
        res = db["cart"].update_one(
            {"_id": cart["_id"], "status": CartStatus.active.value, "updatedAt": cart.get("updatedAt")},
            {"$set": {"status": CartStatus.ordered.value, "updatedAt": utcnow()}},
        )
    except PyMongoError:
        logger.exception("Failed to retire cart %s, removing order %s", cart["_id"], order_id)
        db["order"].delete_one({"_id": order_id})
        raise
    if res.matched_count == 0:
        logger.warning("Cart %s changed during checkout, removing order %s", cart["_id"], order_id)
        db["order"].delete_one({"_id": order_id})
        raise ConflictError("Your cart changed while the order was being placed. Please review it and try again.")


def place_order(db: Database, gateway: PortOneClient, identity: Identity, payload: OrderCreate) -> Tuple[dict, bool]:
    """Create an order from the caller's active cart.

    Returns the order document and whether it was created by this call. A
    payment reference that was already used by the same user yields the
    existing order instead of a second one.
    """
    _validate_request(payload)
    user_id = parse_object_id(identity.user_id, "user")
    payment_in = payload.payment
    payment_info = dict(payment_in.payment_info or {})
    external = bool(payment_in.payment_id) and payment_in.method != PaymentMethod.bank_transfer.value

    verified_amount = None
    if not payment_in.payment_id and payment_in.method != PaymentMethod.bank_transfer.value:
        logger.warning("Accepting unverified %s payment from user %s (no payment reference)", payment_in.method, identity.user_id)
    if external:
        existing = _existing_payment_order(db, user_id, payment_in.payment_id)
        if existing:
            logger.warning(
                "Duplicate order attempt for payment %s by user %s (order %s)",
                payment_in.payment_id, identity.user_id, existing.get("orderNumber"),
            )
            return existing, False

        verification = gateway.fetch_payment(payment_in.payment_id)
        if not verification.is_paid:
            raise ValidationError(f"Payment has not been completed. (status: {verification.status})")
        verified_amount = verification.amount
        payment_info["verifiedAmount"] = verification.amount
        payment_info["verifiedStatus"] = verification.status

    cart = find_active_cart(db, user_id)
    if not cart or not cart.get("items"):
        raise ValidationError("Your cart is empty.")
    products = load_products(db, (item["product"] for item in cart["items"]))
    items = snapshot_items(cart["items"], products)

    amounts = calculate_amounts(calculate_total_amount(cart["items"]), payload.points_used)
    total = amounts["total"]
    if total < 0:
        raise ValidationError("Points used cannot exceed the order amount.")

    paid_amount = verified_amount
    if paid_amount is None:
        paid_amount = payment_info.get("paidAmount") or payment_info.get("amount")
    if paid_amount is not None:
        try:
            paid_amount = float(paid_amount)
        except (TypeError, ValueError):
            raise ValidationError("The paid amount is not a number.")
        if paid_amount != total:
            logger.error(
                "Payment amount mismatch for %s: paid=%s calculated=%s",
                payment_in.payment_id, paid_amount, total,
            )
            raise ValidationError(
                f"Payment amount does not match the order total. (paid: {paid_amount:,.0f}, order: {total:,.0f})"
            )

    shipping = payload.shipping
    now = utcnow()
    deferred = payment_in.method == PaymentMethod.bank_transfer.value
    order = Order(
        order_number=generate_order_number(db, now),
        user=user_id,
        items=items,
        shipping=Shipping(
            recipient_name=shipping.recipient_name,
            recipient_phone=shipping.recipient_phone,
            postal_code=shipping.postal_code,
            address=shipping.address,
            detail_address=shipping.detail_address or "",
            shipping_request=shipping.shipping_request or ShippingRequest.front_door,
            shipping_memo=shipping.shipping_memo or "",
        ),
        amount=Amount(
            items_total=amounts["itemsTotal"],
            shipping_fee=amounts["shippingFee"],
            discount=amounts["discount"],
            total=total,
        ),
        payment=Payment(
            method=payment_in.method,
            status=PaymentStatus.pending if deferred else PaymentStatus.completed,
            paid_at=None if deferred else now,
            payment_id=payment_in.payment_id or None,
            payment_info=payment_info or None,
        ),
        status=OrderStatus.awaiting_payment if deferred else OrderStatus.paid,
        points=Points(earned=points_earned(total), used=payload.points_used),
        memo=payload.memo,
    )

    doc = order.model_dump(by_alias=True)
    doc["createdAt"] = now
    doc["updatedAt"] = now
    try:
        order_id = db["order"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        if external:
            existing = _existing_payment_order(db, user_id, payment_in.payment_id)
            if existing:
                return existing, False
        raise ConflictError("This order conflicts with an existing one. Please try again.")

    _retire_cart(db, cart, order_id)
    logger.info(
        "Order %s placed by user %s: %d items, total %s, %s",
        doc["orderNumber"], identity.user_id, len(items), total, payment_in.method,
    )
    return db["order"].find_one({"_id": order_id}), True


# ---------- Routes ----------

@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    response: Response,
    db: Database = Depends(get_db),
    gateway: PortOneClient = Depends(get_payment_gateway),
    identity: Identity = Depends(get_current_user),
):
    order, created = place_order(db, gateway, identity, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
        return ok(populate_order(db, order), "This payment has already been processed.", duplicate=True)
    return ok(populate_order(db, order), "Order placed successfully.")


@router.get("/my")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    db: Database = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    query = {"user": parse_object_id(identity.user_id, "user")}
    if status:
        query["status"] = status.value
    return paginated(db, query, page, limit, with_user=False)


@router.get("/number/{order_number}")
def get_order_by_number(order_number: str, db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    order = db["order"].find_one({"orderNumber": order_number.strip().upper()})
    if not order:
        raise NotFoundError("Order not found.")
    identity.ensure_can_access(order["user"], "You do not have permission to view this order.")
    return ok(populate_order(db, order))


@router.get("")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Database = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    query = {}
    if status:
        query["status"] = status.value
    if payment_status:
        query["payment.status"] = payment_status.value
    if start_date or end_date:
        query["createdAt"] = {}
        if start_date:
            query["createdAt"]["$gte"] = _as_utc(start_date)
        if end_date:
            query["createdAt"]["$lte"] = _as_utc(end_date)
    return paginated(db, query, page, limit, with_user=True)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@router.get("/{order_id}")
def get_order(order_id: str, db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    order = find_order(db, order_id)
    identity.ensure_can_access(order["user"], "You do not have permission to view this order.")
    return ok(populate_order(db, order))


@router.put("/{order_id}")
def update_order(
    order_id: str,
    payload: OrderUpdate,
    db: Database = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    oid = parse_object_id(order_id, "order")
    changes = {}
    if payload.shipping:
        shipping = payload.shipping
        for name in REQUIRED_SHIPPING_FIELDS + ("shipping_request",):
            value = getattr(shipping, name)
            if value:
                changes[f"shipping.{Shipping.model_fields[name].alias}"] = value
        for name in ("detail_address", "shipping_memo"):
            value = getattr(shipping, name)
            if value is not None:
                changes[f"shipping.{Shipping.model_fields[name].alias}"] = value
    if payload.payment:
        payment = payload.payment
        if payment.method:
            changes["payment.method"] = payment.method
        if payment.status:
            changes["payment.status"] = payment.status
        for name in ("payment_id", "payment_info", "paid_at"):
            if name in payment.model_fields_set:
                changes[f"payment.{Payment.model_fields[name].alias}"] = getattr(payment, name)
    if payload.memo is not None:
        changes["memo"] = payload.memo
    if payload.points:
        if payload.points.earned is not None:
            changes["points.earned"] = payload.points.earned
        if payload.points.used is not None:
            changes["points.used"] = payload.points.used
    changes["updatedAt"] = utcnow()

    order = db["order"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not order:
        raise NotFoundError("Order not found.")
    return ok(populate_order(db, order), "Order updated.")


@router.put("/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: OrderStatusChange,
    db: Database = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    oid = parse_object_id(order_id, "order")
    if not payload.status:
        raise ValidationError("Order status is required.")

    now = utcnow()
    changes = {"status": payload.status, "updatedAt": now}
    if payload.status == OrderStatus.shipping.value and payload.tracking_number:
        changes["delivery.trackingNumber"] = payload.tracking_number
        changes["delivery.carrier"] = payload.carrier or None
        changes["delivery.shippedAt"] = now
    if payload.status == OrderStatus.delivered.value:
        changes["delivery.deliveredAt"] = now

    order = db["order"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not order:
        raise NotFoundError("Order not found.")
    logger.info("Order %s moved to %s", order.get("orderNumber"), payload.status)
    return ok(populate_order(db, order), "Order status updated.")


@router.put("/{order_id}/cancel")
def cancel_order(
    order_id: str,
    payload: Optional[OrderCancel] = None,
    db: Database = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    order = find_order(db, order_id)
    identity.ensure_can_access(order["user"], "You do not have permission to cancel this order.")
    if order.get("status") not in CANCELLABLE_STATUSES:
        raise ValidationError("This order can no longer be cancelled.")

    now = utcnow()
    changes = {
        "status": OrderStatus.cancelled.value,
        "cancellation": {
            "reason": (payload.reason if payload else None) or "Customer request",
            "requestedAt": now,
            "processedAt": None,
            "refundAmount": None,
        },
        "updatedAt": now,
    }
    if order.get("payment", {}).get("status") == PaymentStatus.completed.value:
        changes["payment.status"] = PaymentStatus.cancelled.value

    order = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": {"$in": list(CANCELLABLE_STATUSES)}},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise ValidationError("This order can no longer be cancelled.")
    logger.info("Order %s cancelled by %s", order.get("orderNumber"), identity.user_id)
    return ok(populate_order(db, order), "Order cancelled.")


@router.delete("/{order_id}")
def delete_order(order_id: str, db: Database = Depends(get_db), admin: Identity = Depends(require_admin)):
    order = find_order(db, order_id)
    if order.get("status") in UNDELETABLE_STATUSES:
        raise ValidationError("Orders that are shipping or delivered cannot be deleted. Cancel them instead.")
    db["order"].delete_one({"_id": order["_id"]})
    return ok({}, "Order deleted.")
