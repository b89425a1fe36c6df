"""
Per-user shopping cart

Stock is never reserved or debited here. Every mutation checks the requested
quantity against the product's current stock, and repeated adds grow an
existing line only through a conditional update, so a line can never be
pushed past the stock that was read for the request.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, serialize_doc, to_object_id
from schemas import AddToCartInput, CartItem, CartOut, UpdateCartItemInput
from security import CurrentUser, ensure_self_or_admin, get_current_user

router = APIRouter(prefix="/cart", tags=["cart"])

logger = structlog.get_logger(__name__)

SNAPSHOT_FIELDS = {"name": 1, "price": 1, "image_url": 1, "stock": 1}


def insufficient_stock(product: Dict[str, Any]) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=f"Insufficient stock for {product['name']}. Available: {product.get('stock', 0)}",
    )


def get_or_create_cart(db: Database, user_id: str) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    try:
        return db["cart"].find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # Another request created it between our match and insert
        return db["cart"].find_one({"user_id": user_id})


def _increment_within_stock(db: Database, cart_id: str, product_id: str, quantity: int, stock: int) -> Optional[Dict[str, Any]]:
    return db["cartitem"].find_one_and_update(
        {"cart_id": cart_id, "product_id": product_id, "quantity": {"$lte": stock - quantity}},
        {"$inc": {"quantity": quantity}, "$set": {"updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )


def add_item(db: Database, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": ObjectId(product_id)})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    stock = int(product.get("stock", 0))
    if quantity > stock:
        raise insufficient_stock(product)

    cart_id = str(get_or_create_cart(db, user_id)["_id"])

    item = _increment_within_stock(db, cart_id, product_id, quantity, stock)
    if item:
        return item
    if db["cartitem"].find_one({"cart_id": cart_id, "product_id": product_id}):
        raise insufficient_stock(product)

    new_item = CartItem(cart_id=cart_id, product_id=product_id, quantity=quantity)
    try:
        return create_document(db, "cartitem", new_item.model_dump())
    except DuplicateKeyError:
        # A concurrent add created the line first; fold into it instead
        item = _increment_within_stock(db, cart_id, product_id, quantity, stock)
        if item:
            return item
        raise insufficient_stock(product)


def _owned_item(db: Database, cart_item_id: str, current_user: CurrentUser) -> Dict[str, Any]:
    obj_id = to_object_id(cart_item_id)
    item = db["cartitem"].find_one({"_id": obj_id}) if obj_id else None
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    cart = db["cart"].find_one({"_id": ObjectId(item["cart_id"])})
    ensure_self_or_admin(current_user, cart["user_id"] if cart else "")
    return item


def snapshot(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(product["_id"]),
        "name": product["name"],
        "price": product["price"],
        "image_url": product.get("image_url"),
        "stock": product.get("stock", 0),
    }


@router.get("/{user_id}", response_model=CartOut)
def get_cart(user_id: str, db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id)
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return {"user_id": user_id, "cart_items": []}

    cart_id = str(cart["_id"])
    items = list(db["cartitem"].find({"cart_id": cart_id}))
    product_ids = [ObjectId(it["product_id"]) for it in items]
    products = {
        str(p["_id"]): p
        for p in db["product"].find({"_id": {"$in": product_ids}}, SNAPSHOT_FIELDS)
    } if product_ids else {}

    cart_items = []
    for it in items:
        product = products.get(it["product_id"])
        cart_items.append({
            **serialize_doc(it),
            "product": snapshot(product) if product else None,
        })
    return {"id": cart_id, "user_id": user_id, "cart_items": cart_items}


@router.post("/add")
def add_to_cart(payload: AddToCartInput, db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    item = add_item(db, current_user.id, payload.product_id, payload.quantity)
    return {"message": "Item added to cart", "cart_item": serialize_doc(item)}


@router.put("/update/{cart_item_id}")
def update_cart_item(cart_item_id: str, payload: UpdateCartItemInput, db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    item = _owned_item(db, cart_item_id, current_user)
    product = db["product"].find_one({"_id": ObjectId(item["product_id"])})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if payload.quantity > int(product.get("stock", 0)):
        raise insufficient_stock(product)

    updated = db["cartitem"].find_one_and_update(
        {"_id": item["_id"]},
        {"$set": {"quantity": payload.quantity, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return {"message": "Cart item quantity updated", "cart_item": serialize_doc(updated)}


@router.delete("/remove/{cart_item_id}")
def remove_cart_item(cart_item_id: str, db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    item = _owned_item(db, cart_item_id, current_user)
    db["cartitem"].delete_one({"_id": item["_id"]})
    return {"message": "Item removed from cart"}


@router.post("/checkout")
def checkout(db: Database = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    cart = db["cart"].find_one({"user_id": current_user.id})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found")
    # The cart row stays for reuse; only its lines go
    result = db["cartitem"].delete_many({"cart_id": str(cart["_id"])})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Cart is empty")
    logger.info("checkout_completed", user_id=current_user.id, items=result.deleted_count)
    return {"message": "Purchase completed. Cart emptied."}
