import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import notifications
import settings
from cart import CartService, load_products
from database import create_document, get_documents, now, parse_object_id, serialize, to_object_id
from errors import Conflict, Forbidden, NotFound, Unauthenticated
from notifications import Notifier
from schemas import Address, User, WishlistItem
from security import create_token, hash_password, verify_password

logger = logging.getLogger("aynwine.accounts")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user["name"],
        "phone": user.get("phone"),
        "role": user.get("role", "customer"),
    }


class AccountService:
    def __init__(self, db: Database, carts: CartService, notifier: Optional[Notifier] = None,
                 jwt_secret: str = settings.JWT_SECRET):
        self.db = db
        self.carts = carts
        self.notifier = notifier
        self.jwt_secret = jwt_secret

    # Auth
    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        if self.db["user"].find_one({"email": email}):
            raise Conflict("Email already registered")
        user = User(name=name, email=email, password_hash=hash_password(password), role="customer")
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            raise Conflict("Email already registered")
        self.carts.create_cart(user_id)
        logger.info("Registered user %s", user_id)

        if self.notifier:
            template = notifications.welcome(name)
            self.notifier.send_quietly(email, template["subject"], template["html"])

        doc = self.db["user"].find_one({"_id": to_object_id(user_id)})
        return {"token": create_token(doc, self.jwt_secret), "user": public_user(doc)}

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"email": email})
        if not user or not verify_password(password, user.get("password_hash", "")):
            logger.info("Failed login for %s", email)
            raise Unauthenticated("Invalid email or password")
        return {"token": create_token(user, self.jwt_secret), "user": public_user(user)}

    # Profile
    def get_profile(self, user_id: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"_id": to_object_id(user_id, "User")})
        if not user:
            raise NotFound("User not found")
        return public_user(user)

    def update_profile(self, user_id: str, name: Optional[str] = None, phone: Optional[str] = None) -> Dict[str, Any]:
        changes = {k: v for k, v in (("name", name), ("phone", phone)) if v}
        if changes:
            self.db["user"].update_one({"_id": to_object_id(user_id, "User")},
                                       {"$set": changes | {"updated_at": now()}})
        return self.get_profile(user_id)

    # Addresses
    def list_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, "address", {"user_id": user_id})

    def create_address(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        address = Address(user_id=user_id, **data)
        if address.is_default:
            self.db["address"].update_many({"user_id": user_id, "is_default": True},
                                           {"$set": {"is_default": False, "updated_at": now()}})
        address_id = create_document(self.db, "address", address)
        return serialize(self.db["address"].find_one({"_id": to_object_id(address_id)}))

    def delete_address(self, user_id: str, address_id: str) -> None:
        oid = parse_object_id(address_id)
        address = self.db["address"].find_one({"_id": oid}) if oid else None
        if not address or address.get("user_id") != user_id:
            raise Forbidden("Unauthorized")
        self.db["address"].delete_one({"_id": oid})

    # Wishlist
    def list_wishlist(self, user_id: str) -> List[Dict[str, Any]]:
        entries = list(self.db["wishlist"].find({"user_id": user_id}))
        products = load_products(self.db, (e["product_id"] for e in entries))
        items = []
        for e in entries:
            out = serialize(e)
            out["product"] = serialize(products.get(e["product_id"]))
            items.append(out)
        return items

    def add_to_wishlist(self, user_id: str, product_id: str) -> Dict[str, Any]:
        oid = parse_object_id(product_id)
        product = self.db["product"].find_one({"_id": oid}) if oid else None
        if not product:
            raise NotFound("Product not found")
        try:
            entry_id = create_document(self.db, "wishlist", WishlistItem(user_id=user_id, product_id=product_id))
        except DuplicateKeyError:
            raise Conflict("Product already in wishlist")
        out = serialize(self.db["wishlist"].find_one({"_id": to_object_id(entry_id)}))
        out["product"] = serialize(product)
        return out

    def remove_from_wishlist(self, user_id: str, product_id: str) -> None:
        self.db["wishlist"].delete_many({"user_id": user_id, "product_id": product_id})
