import re
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, get_documents, serialize_doc, to_object_id
from schemas import Product, ProductUpdate
from security import CurrentUser, require_admin

router = APIRouter(prefix="/products", tags=["products"])

logger = structlog.get_logger(__name__)

SEARCH_FIELDS = ("name", "description", "category", "color")


@router.get("")
def list_products(db: Database = Depends(get_db)):
    return [serialize_doc(p) for p in get_documents(db, "product")]


@router.get("/search/{term}")
def search_products(term: str, db: Database = Depends(get_db)):
    pattern = re.escape(term)
    query = {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS]}
    return [serialize_doc(p) for p in get_documents(db, "product", query)]


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    obj_id = to_object_id(product_id)
    product = db["product"].find_one({"_id": obj_id}) if obj_id else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(product)


@router.post("", status_code=201)
def create_product(payload: Product, db: Database = Depends(get_db), _admin: CurrentUser = Depends(require_admin)):
    doc = create_document(db, "product", payload.model_dump(mode="json"))
    logger.info("product_created", product_id=str(doc["_id"]))
    return serialize_doc(doc)


@router.put("/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db), _admin: CurrentUser = Depends(require_admin)):
    obj_id = to_object_id(product_id)
    if obj_id is None:
        raise HTTPException(status_code=404, detail="Product not found")
    update_dict = payload.model_dump(mode="json", exclude_unset=True)
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields to update")
    update_dict["updated_at"] = datetime.now(timezone.utc)
    product = db["product"].find_one_and_update(
        {"_id": obj_id}, {"$set": update_dict}, return_document=ReturnDocument.AFTER
    )
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(product)


@router.delete("/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), _admin: CurrentUser = Depends(require_admin)):
    obj_id = to_object_id(product_id)
    product = db["product"].find_one_and_delete({"_id": obj_id}) if obj_id else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    # Checked after the delete so a line added meanwhile is still seen
    if db["cartitem"].find_one({"product_id": product_id}):
        db["product"].insert_one(product)
        raise HTTPException(status_code=409, detail="Product is referenced by cart items")
    logger.info("product_deleted", product_id=product_id)
    return {"message": f"Product {product['name']} deleted"}
