import logging
import re
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import clamp_page, create_document, now, serialize, to_object_id
from errors import InvalidInput, NotFound
from schemas import Product

logger = logging.getLogger("aynwine.catalog")

# Fields an admin may change on an existing product
EDITABLE_FIELDS = set(Product.model_fields)


class CatalogService:
    def __init__(self, db: Database):
        self.db = db

    def list_products(self, page: Any = 1, page_size: Any = 20, category: Optional[str] = None,
                      search: Optional[str] = None) -> Dict[str, Any]:
        page, size = clamp_page(page, page_size, 20)
        skip = (page - 1) * size
        query: Dict[str, Any] = {}
        if category:
            query["category"] = category
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
                {"tags": search},
            ]
        total = self.db["product"].count_documents(query)
        cursor = self.db["product"].find(query).sort("created_at", -1).skip(skip).limit(size)
        return {
            "items": [serialize(p) for p in cursor],
            "total": total,
            "page": page,
            "pageSize": size,
            "hasMore": skip + size < total,
        }

    def trending(self, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self.db["product"].find({"stock": {"$gt": 0}}).sort("reviews", -1).limit(limit)
        return [serialize(p) for p in cursor]

    def get_product(self, product_id: str) -> Dict[str, Any]:
        product = self.db["product"].find_one({"_id": to_object_id(product_id, "Product")})
        if not product:
            raise NotFound("Product not found")
        return serialize(product)

    def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not all(data.get(f) not in (None, "") for f in ("name", "description", "price", "category")):
            raise InvalidInput("Missing required fields")
        try:
            product = Product(**data)
        except ValueError as exc:
            raise InvalidInput(str(exc))
        product_id = create_document(self.db, "product", product)
        logger.info("Product %s created: %s", product_id, product.name)
        return self.get_product(product_id)

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        current = self.db["product"].find_one({"_id": to_object_id(product_id, "Product")})
        if not current:
            raise NotFound("Product not found")
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        merged = {k: current[k] for k in EDITABLE_FIELDS if k in current} | changes
        try:
            Product(**merged)
        except ValueError as exc:
            raise InvalidInput(str(exc))
        self.db["product"].update_one({"_id": current["_id"]}, {"$set": changes | {"updated_at": now()}})
        logger.info("Product %s updated: %s", product_id, sorted(changes))
        return self.get_product(product_id)

    def delete_product(self, product_id: str) -> None:
        result = self.db["product"].delete_one({"_id": to_object_id(product_id, "Product")})
        if result.deleted_count == 0:
            raise NotFound("Product not found")
        logger.info("Product %s deleted", product_id)
