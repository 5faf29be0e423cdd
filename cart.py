"""
Cart accumulator.

A cart is one document per user holding its lines and a stored ``total``.
Every write goes through ``CartService._mutate``: read the cart, apply the
change to its lines, recompute the total from current product prices and
write back only if the cart ``version`` is still the one that was read. A lost
race re-reads and re-applies the change, so concurrent writers on one cart are
serialised and ``total`` always matches the item set it was stored with.

Stock is checked when adding but never reserved or decremented.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from pymongo.database import Database

from database import create_document, now, parse_object_id, serialize
from errors import Conflict, InsufficientStock, InvalidInput, NotFound
from schemas import Cart

logger = logging.getLogger("aynwine.cart")

MAX_ATTEMPTS = 5

Lines = List[Dict[str, Any]]


def compute_total(items: Iterable[Dict[str, Any]], products: Dict[str, Dict[str, Any]]) -> float:
    """Sum of price x quantity; lines whose product no longer exists count for nothing."""
    total = 0.0
    for item in items:
        product = products.get(item["product_id"])
        if product is not None:
            total += float(product["price"]) * item["quantity"]
    return round(total, 2)


def load_products(db: Database, product_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    oids = [oid for oid in (parse_object_id(pid) for pid in product_ids) if oid is not None]
    if not oids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}


class CartService:
    def __init__(self, db: Database):
        self.db = db

    def create_cart(self, user_id: str) -> str:
        return create_document(self.db, "cart", Cart(user_id=user_id))

    def find_cart(self, user_id: str) -> Dict[str, Any]:
        cart = self.db["cart"].find_one({"user_id": user_id})
        if not cart:
            raise NotFound("Cart not found")
        return cart

    def get_cart(self, user_id: str) -> Dict[str, Any]:
        return self._expand(self.find_cart(user_id))

    def add_item(self, user_id: str, product_id: str, quantity: Any) -> Dict[str, Any]:
        if not product_id or not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise InvalidInput("Invalid product or quantity")
        oid = parse_object_id(product_id)
        product = self.db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise NotFound("Product not found")
        if product.get("stock", 0) < quantity:
            raise InsufficientStock()

        def change(items: Lines) -> Lines:
            for item in items:
                if item["product_id"] == product_id:
                    item["quantity"] += quantity
                    return items
            items.append({"product_id": product_id, "quantity": quantity})
            return items

        cart = self._mutate(user_id, change)
        line = next(i for i in cart["items"] if i["product_id"] == product_id)
        logger.info("Cart %s: added %s x %s", cart["_id"], quantity, product_id)
        return {"product_id": product_id, "quantity": line["quantity"], "product": serialize(product)}

    def update_item(self, user_id: str, product_id: str, quantity: Any) -> Dict[str, Any]:
        """Set a line's quantity outright; zero removes the line."""
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise InvalidInput("Invalid quantity")

        def change(items: Lines) -> Lines:
            if quantity == 0:
                return [i for i in items if i["product_id"] != product_id]
            for item in items:
                if item["product_id"] == product_id:
                    item["quantity"] = quantity
                    return items
            raise NotFound("Item not in cart")

        return self._expand(self._mutate(user_id, change))

    def remove_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        cart = self._mutate(user_id, lambda items: [i for i in items if i["product_id"] != product_id])
        return self._expand(cart)

    def clear(self, user_id: str) -> Dict[str, Any]:
        return self._expand(self._mutate(user_id, lambda items: []))

    def swap(self, cart: Dict[str, Any], items: Lines, total: float) -> Optional[Dict[str, Any]]:
        """Replace lines and total if the cart is still at the version read; None on a lost race."""
        updated = {
            "items": items,
            "total": total,
            "version": cart.get("version", 0) + 1,
            "updated_at": now(),
        }
        result = self.db["cart"].update_one(
            {"_id": cart["_id"], "version": cart.get("version", 0)},
            {"$set": updated},
        )
        if result.matched_count == 0:
            return None
        return cart | updated

    def _mutate(self, user_id: str, change: Callable[[Lines], Lines]) -> Dict[str, Any]:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            cart = self.find_cart(user_id)
            items = change([dict(i) for i in cart.get("items", [])])
            products = load_products(self.db, (i["product_id"] for i in items))
            stored = self.swap(cart, items, compute_total(items, products))
            if stored is not None:
                return stored
            logger.debug("Cart %s changed underneath write (attempt %d)", cart["_id"], attempt)
        logger.warning("Giving up on cart write for user %s after %d attempts", user_id, MAX_ATTEMPTS)
        raise Conflict("Cart was modified concurrently, please retry")

    def _expand(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        products = load_products(self.db, (i["product_id"] for i in cart.get("items", [])))
        out = serialize(cart)
        out["items"] = [
            {
                "product_id": i["product_id"],
                "quantity": i["quantity"],
                "product": serialize(products.get(i["product_id"])),
            }
            for i in cart.get("items", [])
        ]
        return out
