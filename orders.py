"""
Checkout and order lifecycle.

``create_order`` turns the caller's cart into an order whose lines snapshot
each product's name and price at checkout time. The cart is drained first
(compare-and-swap on its version, so only one concurrent checkout can claim
it) and the order is written second; if that write fails the drained lines
are put back before the error propagates.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

import notifications
from cart import MAX_ATTEMPTS, CartService, load_products
from database import clamp_page, create_document, now, parse_object_id, serialize, to_object_id
from errors import Conflict, EmptyCart, Forbidden, InvalidAddress, InvalidInput, InvalidState, NotFound
from notifications import Notifier
from schemas import Order, OrderItem

logger = logging.getLogger("aynwine.orders")

# Forward order of the fulfilment lifecycle; "cancelled" sits outside it.
STATUS_FLOW = ["pending", "processing", "shipped", "delivered"]
CANCELLABLE = ("pending", "processing")
ORDER_STATUSES = STATUS_FLOW + ["cancelled"]
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


class OrderService:
    def __init__(self, db: Database, carts: CartService, notifier: Optional[Notifier] = None):
        self.db = db
        self.carts = carts
        self.notifier = notifier

    def create_order(self, user_id: str, shipping_address_id: Optional[str]) -> Dict[str, Any]:
        if not shipping_address_id:
            raise InvalidInput("Shipping address required")
        address_oid = parse_object_id(shipping_address_id)
        address = self.db["address"].find_one({"_id": address_oid}) if address_oid else None
        if not address or address.get("user_id") != user_id:
            raise InvalidAddress()

        for _ in range(MAX_ATTEMPTS):
            cart = self.db["cart"].find_one({"user_id": user_id})
            if not cart or not cart.get("items"):
                raise EmptyCart()

            products = load_products(self.db, (i["product_id"] for i in cart["items"]))
            lines = []
            for item in cart["items"]:
                product = products.get(item["product_id"])
                if product is None:
                    raise NotFound(f"Product {item['product_id']} is no longer available")
                lines.append(OrderItem(
                    product_id=item["product_id"],
                    product_name=product["name"],
                    price=float(product["price"]),
                    quantity=item["quantity"],
                ))
            # The stored cart total is charged as is; it was recomputed on the last cart write.
            order = Order(user_id=user_id, shipping_address_id=shipping_address_id,
                          items=lines, total=cart.get("total", 0.0))

            drained = self.carts.swap(cart, [], 0.0)
            if drained is None:
                continue
            try:
                order_id = create_document(self.db, "order", order)
            except PyMongoError:
                if self.carts.swap(drained, cart["items"], cart.get("total", 0.0)) is None:
                    logger.error("Could not restore cart %s after failed checkout", cart["_id"])
                raise
            logger.info("Order %s created for user %s (%d items, total %.2f)",
                        order_id, user_id, len(lines), order.total)
            return self._with_address(self.db["order"].find_one({"_id": to_object_id(order_id)}))

        raise Conflict("Cart was modified concurrently, please retry")

    def cancel_order(self, user_id: str, order_id: str) -> Dict[str, Any]:
        order = self._owned(user_id, order_id)
        if order.get("status") not in CANCELLABLE:
            raise InvalidState()
        result = self.db["order"].update_one(
            {"_id": order["_id"], "status": {"$in": list(CANCELLABLE)}},
            {"$set": {"status": "cancelled", "updated_at": now()}},
        )
        if result.matched_count == 0:
            raise InvalidState()
        logger.info("Order %s cancelled by user %s", order_id, user_id)
        return serialize(self.db["order"].find_one({"_id": order["_id"]}))

    def get_order(self, user_id: str, order_id: str) -> Dict[str, Any]:
        return self._with_address(self._owned(user_id, order_id))

    def list_orders(self, user_id: str, page: Any = 1, page_size: Any = 10) -> Dict[str, Any]:
        page, size = clamp_page(page, page_size, 10)
        skip = (page - 1) * size
        query = {"user_id": user_id}
        total = self.db["order"].count_documents(query)
        cursor = self.db["order"].find(query).sort("created_at", -1).skip(skip).limit(size)
        return {
            "items": [self._with_address(o) for o in cursor],
            "total": total,
            "page": page,
            "pageSize": size,
            "hasMore": skip + size < total,
        }

    # Admin
    def list_all_orders(self) -> List[Dict[str, Any]]:
        orders = list(self.db["order"].find({}).sort("created_at", -1))
        user_oids = {parse_object_id(o["user_id"]) for o in orders} - {None}
        users = {str(u["_id"]): u for u in self.db["user"].find({"_id": {"$in": list(user_oids)}})}
        items = []
        for o in orders:
            out = serialize(o)
            user = users.get(o["user_id"])
            out["user"] = {"id": o["user_id"], "name": user["name"], "email": user["email"]} if user else None
            items.append(out)
        return items

    def update_status(self, order_id: str, status: str, payment_status: Optional[str] = None,
                      tracking_number: Optional[str] = None) -> Dict[str, Any]:
        if status not in ORDER_STATUSES:
            raise InvalidInput(f"Unknown order status: {status}")
        if payment_status is not None and payment_status not in PAYMENT_STATUSES:
            raise InvalidInput(f"Unknown payment status: {payment_status}")
        order = self.db["order"].find_one({"_id": to_object_id(order_id, "Order")})
        if not order:
            raise NotFound("Order not found")

        current = order.get("status", "pending")
        if status == "cancelled":
            allowed = current in CANCELLABLE
        else:
            allowed = current in STATUS_FLOW and STATUS_FLOW.index(status) > STATUS_FLOW.index(current)
        if not allowed:
            raise InvalidState(f"Cannot move order from {current} to {status}")

        update: Dict[str, Any] = {"status": status, "updated_at": now()}
        if payment_status:
            update["payment_status"] = payment_status
        if tracking_number:
            update["tracking_number"] = tracking_number
        result = self.db["order"].update_one({"_id": order["_id"], "status": current}, {"$set": update})
        if result.matched_count == 0:
            raise InvalidState("Order status changed, please retry")
        logger.info("Order %s moved from %s to %s", order_id, current, status)

        if status == "shipped" and tracking_number and self.notifier:
            user_oid = parse_object_id(order["user_id"])
            user = self.db["user"].find_one({"_id": user_oid}) if user_oid else None
            if user:
                template = notifications.order_shipped(order_id, tracking_number)
                self.notifier.send_quietly(user["email"], template["subject"], template["html"])
        return serialize(self.db["order"].find_one({"_id": order["_id"]}))

    def _owned(self, user_id: str, order_id: str) -> Dict[str, Any]:
        order = self.db["order"].find_one({"_id": to_object_id(order_id, "Order")})
        if not order:
            raise NotFound("Order not found")
        if order.get("user_id") != user_id:
            raise Forbidden("Unauthorized")
        return order

    def _with_address(self, order: Dict[str, Any]) -> Dict[str, Any]:
        out = serialize(order)
        address_oid = parse_object_id(order.get("shipping_address_id"))
        address = self.db["address"].find_one({"_id": address_oid}) if address_oid else None
        out["shipping_address"] = serialize(address)
        return out


def dashboard(db: Database) -> Dict[str, Any]:
    revenue = 0.0
    for o in db["order"].find({"status": "delivered"}, {"total": 1}):
        revenue += float(o.get("total", 0))
    return {
        "totalOrders": db["order"].count_documents({}),
        "totalRevenue": round(revenue, 2),
        "totalProducts": db["product"].count_documents({}),
        "totalUsers": db["user"].count_documents({}),
    }
