import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import notifications
import settings
from accounts import AccountService
from cart import CartService
from catalog import CatalogService
from database import connect, ensure_indexes
from errors import StoreError
from notifications import Notifier, SmtpMailer
from orders import OrderService, dashboard
from payments import PaymentService, StripeGateway
from security import RequestContext, get_request_context, require_admin

# Logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
                    format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("aynwine")


class Services:
    def __init__(self, db: Database, gateway: Any, mailer: Any, jwt_secret: str):
        self.db = db
        self.notifier = Notifier(db, mailer)
        self.carts = CartService(db)
        self.orders = OrderService(db, self.carts, self.notifier)
        self.payments = PaymentService(db, gateway, self.notifier)
        self.catalog = CatalogService(db)
        self.accounts = AccountService(db, self.carts, self.notifier, jwt_secret)
        self.gateway = gateway


def get_services(request: Request) -> Services:
    return request.app.state.services


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


def admin_context(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    require_admin(ctx)
    return ctx


# DTOs
class RegisterDTO(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


class CartItemDTO(BaseModel):
    productId: str
    quantity: int


class CartQuantityDTO(BaseModel):
    quantity: int


class CreateOrderDTO(BaseModel):
    shippingAddressId: Optional[str] = None


class PaymentIntentDTO(BaseModel):
    amount: float
    orderId: Optional[str] = None


class ConfirmPaymentDTO(BaseModel):
    paymentIntentId: Optional[str] = None


class ProfileDTO(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class AddressDTO(BaseModel):
    street: str
    city: str
    state: str
    zipCode: str
    country: str
    isDefault: bool = False


class WishlistDTO(BaseModel):
    productId: str


class ProductDTO(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: str
    stock: int = Field(0, ge=0)
    image: Optional[str] = None
    tags: List[str] = []
    volume: Optional[str] = None
    alcohol: Optional[float] = None
    origin: Optional[str] = None


class ProductUpdateDTO(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    tags: Optional[List[str]] = None
    volume: Optional[str] = None
    alcohol: Optional[float] = None
    origin: Optional[str] = None


class OrderStatusDTO(BaseModel):
    status: str
    paymentStatus: Optional[str] = None
    trackingNumber: Optional[str] = None


class ContactDTO(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    message: str = Field(..., min_length=1)


router = APIRouter()


# Health and config
@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/config")
def get_config(s: Services = Depends(get_services)):
    return {
        "storeName": settings.STORE_NAME,
        "currency": settings.PRIMARY_CURRENCY,
        "payments": {"stripe": bool(getattr(s.gateway, "api_key", None))},
    }


# Auth
@router.post("/api/auth/register", status_code=201)
def register(data: RegisterDTO, s: Services = Depends(get_services)):
    return ok(s.accounts.register(data.name, data.email, data.password))


@router.post("/api/auth/login")
def login(data: LoginDTO, s: Services = Depends(get_services)):
    return ok(s.accounts.login(data.email, data.password))


@router.get("/api/auth/me")
def me(ctx: RequestContext = Depends(get_request_context), s: Services = Depends(get_services)):
    return ok(s.accounts.get_profile(ctx.user_id))


# Products
@router.get("/api/products")
def list_products(page: Optional[str] = None, pageSize: Optional[str] = None, category: Optional[str] = None, search: Optional[str] = None,
                  s: Services = Depends(get_services)):
    return ok(s.catalog.list_products(page, pageSize, category, search))


@router.get("/api/products/trending")
def trending_products(s: Services = Depends(get_services)):
    return ok(s.catalog.trending())


@router.get("/api/products/{product_id}")
def get_product(product_id: str, s: Services = Depends(get_services)):
    return ok(s.catalog.get_product(product_id))


# Cart
@router.get("/api/cart")
def get_cart(ctx: RequestContext = Depends(get_request_context), s: Services = Depends(get_services)):
    return ok(s.carts.get_cart(ctx.user_id))


@router.post("/api/cart/items")
def add_cart_item(data: CartItemDTO, ctx: RequestContext = Depends(get_request_context),
                  s: Services = Depends(get_services)):
    return ok(s.carts.add_item(ctx.user_id, data.productId, data.quantity))


@router.put("/api/cart/items/{product_id}")
def update_cart_item(product_id: str, data: CartQuantityDTO, ctx: RequestContext = Depends(get_request_context),
                     s: Services = Depends(get_services)):
    return ok(s.carts.update_item(ctx.user_id, product_id, data.quantity))


@router.delete("/api/cart/items/{product_id}")
def remove_cart_item(product_id: str, ctx: RequestContext = Depends(get_request_context),
                     s: Services = Depends(get_services)):
    return ok(s.carts.remove_item(ctx.user_id, product_id))


@router.delete("/api/cart")
def clear_cart(ctx: RequestContext = Depends(get_request_context), s: Services = Depends(get_services)):
    return ok(s.carts.clear(ctx.user_id))


# Orders
@router.get("/api/orders")
def list_orders(page: Optional[str] = None, pageSize: Optional[str] = None, ctx: RequestContext = Depends(get_request_context),
                s: Services = Depends(get_services)):
    return ok(s.orders.list_orders(ctx.user_id, page, pageSize))


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, ctx: RequestContext = Depends(get_request_context),
              s: Services = Depends(get_services)):
    return ok(s.orders.get_order(ctx.user_id, order_id))


@router.post("/api/orders", status_code=201)
def create_order(data: CreateOrderDTO, ctx: RequestContext = Depends(get_request_context),
                 s: Services = Depends(get_services)):
    return ok(s.orders.create_order(ctx.user_id, data.shippingAddressId))


@router.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, ctx: RequestContext = Depends(get_request_context),
                 s: Services = Depends(get_services)):
    return ok(s.orders.cancel_order(ctx.user_id, order_id))


# Users
@router.get("/api/users/profile")
def get_profile(ctx: RequestContext = Depends(get_request_context), s: Services = Depends(get_services)):
    return ok(s.accounts.get_profile(ctx.user_id))


@router.put("/api/users/profile")
def update_profile(data: ProfileDTO, ctx: RequestContext = Depends(get_request_context),
                   s: Services = Depends(get_services)):
    return ok(s.accounts.update_profile(ctx.user_id, data.name, data.phone))


@router.get("/api/users/addresses")
def list_addresses(ctx: RequestContext = Depends(get_request_context), s: Services = Depends(get_services)):
    return ok(s.accounts.list_addresses(ctx.user_id))


@router.post("/api/users/addresses", status_code=201)
def create_address(data: AddressDTO, ctx: RequestContext = Depends(get_request_context),
                   s: Services = Depends(get_services)):
    return ok(s.accounts.create_address(ctx.user_id, {
        "street": data.street,
        "city": data.city,
        "state": data.state,
        "zip_code": data.zipCode,
        "country": data.country,
        "is_default": data.isDefault,
    }))


@router.delete("/api/users/addresses/{address_id}")
def delete_address(address_id: str, ctx: RequestContext = Depends(get_request_context),
                   s: Services = Depends(get_services)):
    s.accounts.delete_address(ctx.user_id, address_id)
    return ok(message="Address deleted")


# Payments
@router.post("/api/payments/intent")
def create_payment_intent(data: PaymentIntentDTO, ctx: RequestContext = Depends(get_request_context),
                          s: Services = Depends(get_services)):
    return ok(s.payments.create_intent(ctx.user_id, data.amount, data.orderId))


@router.post("/api/payments/confirm")
def confirm_payment(data: ConfirmPaymentDTO, ctx: RequestContext = Depends(get_request_context),
                    s: Services = Depends(get_services)):
    s.payments.confirm_payment(data.paymentIntentId)
    return ok(message="Payment confirmed successfully")


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, s: Services = Depends(get_services)):
    payload = await request.body()
    event = s.gateway.parse_event(payload, request.headers.get("Stripe-Signature"))
    s.payments.handle_event(event)
    return {"received": True}


# Wishlist
@router.get("/api/wishlist")
def list_wishlist(ctx: RequestContext = Depends(get_request_context), s: Services = Depends(get_services)):
    return ok(s.accounts.list_wishlist(ctx.user_id))


@router.post("/api/wishlist", status_code=201)
def add_to_wishlist(data: WishlistDTO, ctx: RequestContext = Depends(get_request_context),
                    s: Services = Depends(get_services)):
    return ok(s.accounts.add_to_wishlist(ctx.user_id, data.productId))


@router.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, ctx: RequestContext = Depends(get_request_context),
                         s: Services = Depends(get_services)):
    s.accounts.remove_from_wishlist(ctx.user_id, product_id)
    return ok(message="Product removed from wishlist")


# Admin
@router.post("/api/admin/products", status_code=201)
def admin_create_product(data: ProductDTO, ctx: RequestContext = Depends(admin_context),
                         s: Services = Depends(get_services)):
    return ok(s.catalog.create_product(data.model_dump()))


@router.put("/api/admin/products/{product_id}")
def admin_update_product(product_id: str, data: ProductUpdateDTO, ctx: RequestContext = Depends(admin_context),
                         s: Services = Depends(get_services)):
    return ok(s.catalog.update_product(product_id, data.model_dump(exclude_unset=True)))


@router.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: str, ctx: RequestContext = Depends(admin_context),
                         s: Services = Depends(get_services)):
    s.catalog.delete_product(product_id)
    return ok(message="Product deleted")


@router.get("/api/admin/orders")
def admin_list_orders(ctx: RequestContext = Depends(admin_context), s: Services = Depends(get_services)):
    return ok(s.orders.list_all_orders())


@router.post("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, data: OrderStatusDTO, ctx: RequestContext = Depends(admin_context),
                              s: Services = Depends(get_services)):
    return ok(s.orders.update_status(order_id, data.status, data.paymentStatus, data.trackingNumber))


@router.get("/api/admin/dashboard")
def admin_dashboard(ctx: RequestContext = Depends(admin_context), s: Services = Depends(get_services)):
    return ok(dashboard(s.db))


# Contact
@router.post("/api/contact")
def contact(data: ContactDTO, s: Services = Depends(get_services)):
    support = notifications.contact_support(data.name, data.email, data.message)
    s.notifier.send_quietly(settings.SUPPORT_EMAIL, support["subject"], support["html"])
    receipt = notifications.contact_receipt(data.name, data.message)
    s.notifier.send_quietly(data.email, receipt["subject"], receipt["html"])
    return ok(message="Thank you for your message. We will reply soon.")


# Error handlers
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"success": False, "error": "; ".join(problems) or "Invalid input"})


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": message})


async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


def create_app(db: Optional[Database] = None, gateway: Any = None, mailer: Any = None,
               jwt_secret: str = settings.JWT_SECRET) -> FastAPI:
    if db is None:
        db = connect(settings.DATABASE_URL, settings.DATABASE_NAME)
    ensure_indexes(db)

    app = FastAPI(title=f"{settings.STORE_NAME} API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.ALLOWED_ORIGINS] if settings.ALLOWED_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.db = db
    app.state.jwt_secret = jwt_secret
    app.state.services = Services(db, gateway or StripeGateway(), mailer or SmtpMailer(), jwt_secret)

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.PORT)
