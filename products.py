import logging
import math
import re
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, status
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, parse_object_id, serialize_document, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from responses import ok
from schemas import ProductCategory, ProductCreate, ProductUpdate
from security import Identity, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])

CODE_PREFIX = "BG"
CODE_TAKEN = "Product code already exists."
SORTABLE_FIELDS = {"createdAt", "price", "name", "productCode"}

_TRAILING_DIGITS = re.compile(r"(\d+)$")


def code_number(code: Optional[str]) -> int:
    match = _TRAILING_DIGITS.search(code or "")
    return int(match.group(1)) if match else 0


def next_product_code(last_code: Optional[str]) -> str:
    """BG007 -> BG008; no previous code (or no trailing number) -> BG001"""
    return f"{CODE_PREFIX}{code_number(last_code) + 1:03d}"


def parse_sort(sort: str) -> List[Tuple[str, int]]:
    """Turn "-createdAt,price" into a pymongo sort specification"""
    spec = []
    for token in re.split(r"[,\s]+", sort.strip()):
        if not token:
            continue
        direction = DESCENDING if token.startswith("-") else ASCENDING
        name = token.lstrip("+-")
        if name not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{name}'.")
        spec.append((name, direction))
    if not spec:
        spec = [("createdAt", DESCENDING)]
    spec.append(("_id", spec[-1][1]))
    return spec


def find_product(db: Database, product_id: str) -> dict:
    doc = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not doc:
        raise NotFoundError("Product not found.")
    return doc


@router.get("")
def list_products(
    category: Optional[ProductCategory] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort: str = "-createdAt",
    db: Database = Depends(get_db),
):
    query = {}
    if category:
        query["category"] = category.value
    items = get_documents(db, "product", query, sort=parse_sort(sort), skip=(page - 1) * limit, limit=limit)
    total = db["product"].count_documents(query)
    return ok(
        serialize_document(items),
        count=len(items),
        total=total,
        page=page,
        totalPages=math.ceil(total / limit),
    )


@router.get("/generate-code")
def generate_product_code(db: Database = Depends(get_db), admin: Identity = Depends(require_admin)):
    # compare numerically: a string sort puts BG1000 before BG999
    codes = (doc.get("productCode") for doc in db["product"].find({}, {"productCode": 1}))
    last = max(codes, key=code_number, default=None)
    return ok({"productCode": next_product_code(last)})


@router.get("/code/{code}")
def get_product_by_code(code: str, db: Database = Depends(get_db)):
    doc = db["product"].find_one({"productCode": code.strip().upper()})
    if not doc:
        raise NotFoundError("Product not found.")
    return ok(serialize_document(doc))


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(serialize_document(find_product(db, product_id)))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductCreate, db: Database = Depends(get_db), admin: Identity = Depends(require_admin)):
    code = payload.product_code.upper()
    # Ensure unique product code
    if db["product"].find_one({"productCode": code}):
        raise ConflictError(CODE_TAKEN)
    try:
        pid = create_document(db, "product", payload.model_copy(update={"product_code": code}))
    except DuplicateKeyError:
        raise ConflictError(CODE_TAKEN)
    logger.info("Created product %s (%s)", pid, code)
    return ok(serialize_document(find_product(db, pid)), "Product created successfully.")


@router.put("/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Database = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    oid = parse_object_id(product_id, "product")
    data = payload.model_dump(by_alias=True, exclude_none=True)
    if "productCode" in data:
        data["productCode"] = data["productCode"].upper()
        if db["product"].find_one({"productCode": data["productCode"], "_id": {"$ne": oid}}):
            raise ConflictError(CODE_TAKEN)
    data["updatedAt"] = utcnow()
    try:
        doc = db["product"].find_one_and_update({"_id": oid}, {"$set": data}, return_document=ReturnDocument.AFTER)
    except DuplicateKeyError:
        raise ConflictError(CODE_TAKEN)
    if not doc:
        raise NotFoundError("Product not found.")
    return ok(serialize_document(doc), "Product updated successfully.")


@router.delete("/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), admin: Identity = Depends(require_admin)):
    res = db["product"].delete_one({"_id": parse_object_id(product_id, "product")})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found.")
    return ok({}, "Product deleted successfully.")
