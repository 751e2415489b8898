import logging
from typing import Iterable, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, parse_object_id, serialize_document, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from responses import ok
from schemas import Cart, CartItem, CartItemAdd, CartItemUpdate, CartStatus
from security import Identity, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

PRODUCT_SUMMARY = {"name": 1, "price": 1, "image": 1, "category": 1, "productCode": 1}
CART_CONFLICT = "Another request changed your cart at the same time. Please try again."


def calculate_total_amount(items: Iterable[dict]) -> float:
    return sum(item["price"] * item["quantity"] for item in items)


def find_active_cart(db: Database, user_id: ObjectId) -> Optional[dict]:
    return db["cart"].find_one({"user": user_id, "status": CartStatus.active.value})


def load_products(db: Database, product_ids: Iterable[ObjectId], projection: Optional[dict] = None) -> dict:
    ids = list(set(product_ids))
    if not ids:
        return {}
    return {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, projection)}


def populate_items(db: Database, items: List[dict]) -> List[dict]:
    """Replace product ids with a product summary (None when the product is gone)"""
    products = load_products(db, (item["product"] for item in items), PRODUCT_SUMMARY)
    populated = []
    for item in items:
        line = serialize_document(item)
        product = products.get(item["product"])
        line["product"] = serialize_document(product) if product else None
        populated.append(line)
    return populated


def cart_payload(db: Database, cart: dict) -> dict:
    data = serialize_document(cart)
    data["items"] = populate_items(db, cart.get("items", []))
    return data


def insert_cart(db: Database, user_id: ObjectId, items: Optional[List[dict]] = None) -> dict:
    items = items or []
    cart = Cart(user=user_id, items=items, total_amount=calculate_total_amount(items))
    try:
        cart_id = create_document(db, "cart", cart)
    except DuplicateKeyError:
        logger.warning("Concurrent active cart creation for user %s", user_id)
        raise ConflictError(CART_CONFLICT)
    return db["cart"].find_one({"_id": ObjectId(cart_id)})


def save_items(db: Database, cart: dict, items: List[dict]) -> dict:
    """Persist the new line items and recomputed total in a single write"""
    update = {
        "items": items,
        "totalAmount": calculate_total_amount(items),
        "updatedAt": utcnow(),
    }
    res = db["cart"].update_one(
        {"_id": cart["_id"], "status": CartStatus.active.value, "updatedAt": cart.get("updatedAt")},
        {"$set": update},
    )
    if res.matched_count == 0:
        raise ConflictError(CART_CONFLICT)
    cart.update(update)
    return cart


def cart_line(product_id: ObjectId, quantity: int, price: float) -> dict:
    return CartItem(product=product_id, quantity=quantity, price=price).model_dump(by_alias=True)


def require_quantity(quantity: Optional[int]) -> int:
    if quantity is None:
        raise ValidationError("Quantity is required.")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1.")
    return quantity


def require_cart(db: Database, user_id: ObjectId) -> dict:
    cart = find_active_cart(db, user_id)
    if not cart:
        raise NotFoundError("Cart not found.")
    return cart


def line_index(cart: dict, product_id: ObjectId) -> int:
    for index, item in enumerate(cart.get("items", [])):
        if item["product"] == product_id:
            return index
    raise NotFoundError("This product is not in the cart.")


@router.get("")
def get_cart(db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    user_id = parse_object_id(identity.user_id, "user")
    cart = find_active_cart(db, user_id)
    if not cart:
        cart = insert_cart(db, user_id)
    elif cart.get("totalAmount") != calculate_total_amount(cart.get("items", [])):
        cart = save_items(db, cart, cart.get("items", []))
    return ok(cart_payload(db, cart))


@router.post("/items")
def add_item(payload: CartItemAdd, db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    if not payload.product_id:
        raise ValidationError("Product ID is required.")
    quantity = require_quantity(payload.quantity)
    product_id = parse_object_id(payload.product_id, "product")
    product = db["product"].find_one({"_id": product_id})
    if not product:
        raise NotFoundError("Product not found.")

    user_id = parse_object_id(identity.user_id, "user")
    cart = find_active_cart(db, user_id)
    items = list(cart.get("items", [])) if cart else []
    for index, item in enumerate(items):
        if item["product"] == product_id:
            # refresh to the current price while bumping the quantity
            items[index] = cart_line(product_id, item["quantity"] + quantity, product["price"])
            break
    else:
        items.append(cart_line(product_id, quantity, product["price"]))

    cart = save_items(db, cart, items) if cart else insert_cart(db, user_id, items)
    logger.info("User %s added %s x%d to cart", identity.user_id, product.get("productCode"), quantity)
    return ok(cart_payload(db, cart), "Product added to cart.")


@router.put("/items/{product_id}")
def update_item(
    product_id: str,
    payload: CartItemUpdate,
    db: Database = Depends(get_db),
    identity: Identity = Depends(get_current_user),
):
    oid = parse_object_id(product_id, "product")
    quantity = require_quantity(payload.quantity)
    cart = require_cart(db, parse_object_id(identity.user_id, "user"))
    index = line_index(cart, oid)

    items = list(cart["items"])
    price = items[index]["price"]
    product = db["product"].find_one({"_id": oid}, {"price": 1})
    if product:
        price = product["price"]
    items[index] = cart_line(oid, quantity, price)
    cart = save_items(db, cart, items)
    return ok(cart_payload(db, cart), "Cart item updated.")


@router.delete("/items/{product_id}")
def remove_item(product_id: str, db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    oid = parse_object_id(product_id, "product")
    cart = require_cart(db, parse_object_id(identity.user_id, "user"))
    index = line_index(cart, oid)
    items = [item for i, item in enumerate(cart["items"]) if i != index]
    cart = save_items(db, cart, items)
    return ok(cart_payload(db, cart), "Item removed from cart.")


@router.delete("")
def clear_cart(db: Database = Depends(get_db), identity: Identity = Depends(get_current_user)):
    cart = require_cart(db, parse_object_id(identity.user_id, "user"))
    cart = save_items(db, cart, [])
    return ok(cart_payload(db, cart), "Cart cleared.")
