import logging
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from config import Settings, get_settings
from database import (
    connect,
    create_document,
    ensure_indexes,
    get_db,
    populate_products,
    populate_user_emails,
    serialize_doc,
    to_object_id,
)
from errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    RoleMismatchError,
    ValidationError,
    register_error_handlers,
)
from schemas import Category, Order as OrderSchema, OrderLine, OrderStatus, Product as ProductSchema, Role, User as UserSchema

logger = logging.getLogger(__name__)

# cost 10 matches the hashes already stored by the previous service
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

router = APIRouter()

# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def find_user(db: Database, email: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": normalize_email(email)})
    if not user:
        raise NotFoundError("User not found")
    return user


# Auth models
class SignupInput(BaseModel):
    name: str
    email: EmailStr
    password: str
    confirm: str
    role: Role = Role.user


class LoginInput(BaseModel):
    # plain lookup key; older accounts were stored without address validation
    email: str
    password: str
    role: Optional[Role] = None


# Routes
@router.get("/test")
def test_database(db: Database = Depends(get_db), settings: Settings = Depends(app_settings)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": settings.database_name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@router.get("/")
def frontend_index(settings: Settings = Depends(app_settings)):
    index = settings.frontend_dir / "Ecommerce.html"
    if not index.is_file():
        raise NotFoundError("Frontend not found")
    return FileResponse(index)


# Auth
@router.post("/signup")
def signup(payload: SignupInput, db: Database = Depends(get_db)):
    if payload.password != payload.confirm:
        raise ValidationError("Passwords do not match")
    email = normalize_email(payload.email)
    if db["user"].find_one({"email": email}):
        raise ConflictError("Email already exists")
    user_model = UserSchema(
        name=payload.name,
        email=email,
        password=hash_password(payload.password),
        role=payload.role,
    )
    user = create_document(db, "user", user_model)
    logger.info("New %s account created for %s", user["role"], email)
    return {"success": True, "role": user["role"]}


@router.post("/login")
def login(payload: LoginInput, db: Database = Depends(get_db)):
    user = find_user(db, payload.email)
    if not verify_password(payload.password, user.get("password", "")):
        raise AuthError("Invalid password")
    if payload.role is None or payload.role.value != user.get("role"):
        raise RoleMismatchError(f"Incorrect role. Registered as {user.get('role')}")
    # conditional flip: only one login can ever observe the first-login state
    res = db["user"].update_one(
        {"_id": user["_id"], "isFirstLogin": {"$ne": False}},
        {"$set": {"isFirstLogin": False}},
    )
    is_new_user = res.modified_count == 1
    return {"success": True, "role": user["role"], "isNewUser": is_new_user}


# Wishlist
class WishlistInput(BaseModel):
    email: str
    productId: str


@router.post("/wishlist")
def add_to_wishlist(payload: WishlistInput, db: Database = Depends(get_db)):
    product_id = to_object_id(payload.productId, "product id")
    # $addToSet keeps the wishlist free of duplicates
    res = db["user"].update_one(
        {"email": normalize_email(payload.email)},
        {"$addToSet": {"wishlist": product_id}},
    )
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    return {"success": True}


@router.get("/wishlist/{email}")
def get_wishlist(email: str, db: Database = Depends(get_db)):
    user = find_user(db, email)
    products = populate_products(db, user.get("wishlist", []))
    return [serialize_doc(p) for p in products]


# Products
class ProductInput(BaseModel):
    name: str = Field(..., min_length=1)
    price: Union[int, float]
    category: Category


def parse_category(value: Optional[str]) -> Optional[Category]:
    if not value:
        return None
    try:
        return Category(value)
    except ValueError:
        return None


@router.get("/products")
def list_products(category: Optional[str] = None, db: Database = Depends(get_db)):
    query: Dict[str, Any] = {}
    if category:
        parsed = parse_category(category)
        if parsed is None:
            return []
        query["category"] = parsed.value
    return [serialize_doc(d) for d in db["product"].find(query)]


async def read_product_form(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        return dict(form)
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def save_upload(upload_dir: Path, filename: str, contents: bytes) -> str:
    # millisecond prefix keeps same-named uploads apart
    stored_name = f"{int(time.time() * 1000)}-{Path(filename).name}"
    (upload_dir / stored_name).write_bytes(contents)
    logger.info("Stored upload %s (%d bytes)", stored_name, len(contents))
    return f"/uploads/{stored_name}"


@router.post("/products")
async def create_product(request: Request, db: Database = Depends(get_db), settings: Settings = Depends(app_settings)):
    fields = await read_product_form(request)
    if any(fields.get(key) in (None, "") for key in ("name", "price", "category")):
        raise ValidationError("All fields required")
    try:
        data = ProductInput(name=fields["name"], price=fields["price"], category=fields["category"])
    except SchemaError as e:
        first = e.errors()[0]
        raise ValidationError(f"Invalid {first['loc'][0]}: {first['msg']}")

    upload = fields.get("imageFile")
    image_url = fields.get("imageUrl")
    if isinstance(upload, UploadFile) and upload.filename:
        contents = await upload.read()
        image = await run_in_threadpool(save_upload, settings.upload_dir, upload.filename, contents)
    elif image_url:
        image = str(image_url)
    else:
        raise ValidationError("Image is required")

    product_model = ProductSchema(name=data.name, price=data.price, category=data.category, image=image)
    product = await run_in_threadpool(create_document, db, "product", product_model)
    return {"success": True, "product": serialize_doc(product)}


@router.delete("/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db)):
    res = db["product"].delete_one({"_id": to_object_id(product_id, "product id")})
    if res.deleted_count == 0:
        logger.info("Delete of product %s matched nothing", product_id)
    return {"success": True}


# Orders
class OrderItemInput(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1)


class OrderInput(BaseModel):
    email: str
    products: List[OrderItemInput]
    totalAmount: Union[int, float]


def snapshot_lines(db: Database, items: List[OrderItemInput]) -> List[OrderLine]:
    """
    Look up every product in one query and copy its name and price.

    Raises NotFoundError for the first id with no product; nothing is
    written in that case.
    """
    wanted = []
    for item in items:
        try:
            wanted.append(to_object_id(item.productId))
        except ValidationError:
            raise NotFoundError(f"Product not found: {item.productId}")
    found = {d["_id"]: d for d in db["product"].find({"_id": {"$in": wanted}})} if wanted else {}
    lines = []
    for item, product_id in zip(items, wanted):
        product = found.get(product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {item.productId}")
        lines.append(OrderLine(
            productId=product["_id"],
            productName=product.get("name"),
            productPrice=product.get("price"),
            quantity=item.quantity,
        ))
    return lines


@router.post("/orders")
def create_order(payload: OrderInput, db: Database = Depends(get_db)):
    user = find_user(db, payload.email)
    lines = snapshot_lines(db, payload.products)
    # totalAmount is taken from the client as-is; only flag a mismatch
    computed = sum(line.productPrice * line.quantity for line in lines)
    if abs(computed - payload.totalAmount) > 0.005:
        logger.warning("Order for %s: client total %.2f differs from line total %.2f",
                       user["email"], payload.totalAmount, computed)
    order_model = OrderSchema(userId=user["_id"], products=lines, totalAmount=payload.totalAmount)
    order = create_document(db, "order", order_model)
    logger.info("Order %s created for %s with %d line(s)", order["_id"], user["email"], len(lines))
    return {"success": True, "order": serialize_doc(order)}


@router.get("/orders")
def list_orders(db: Database = Depends(get_db)):
    orders = list(db["order"].find().sort("createdAt", -1))
    return [serialize_doc(o) for o in populate_user_emails(db, orders)]


class OrderStatusInput(BaseModel):
    status: OrderStatus


@router.put("/orders/{order_id}")
def update_order_status(order_id: str, payload: OrderStatusInput, db: Database = Depends(get_db)):
    order = db["order"].find_one_and_update(
        {"_id": to_object_id(order_id, "order id")},
        {"$set": {"status": payload.status.value}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise NotFoundError("Order not found")
    logger.info("Order %s status set to %s", order_id, payload.status.value)
    return {"success": True, "order": serialize_doc(order)}


# Analytics
def total_revenue(db: Database) -> float:
    result = list(db["order"].aggregate([
        {"$group": {"_id": None, "revenue": {"$sum": "$totalAmount"}}},
    ]))
    return result[0]["revenue"] if result else 0


@router.get("/analytics")
def get_analytics(db: Database = Depends(get_db)):
    # independent reads, no shared snapshot between them
    with ThreadPoolExecutor(max_workers=5) as pool:
        total_users = pool.submit(db["user"].count_documents, {})
        total_admins = pool.submit(db["user"].count_documents, {"role": Role.admin.value})
        total_products = pool.submit(db["product"].count_documents, {})
        total_orders = pool.submit(db["order"].count_documents, {})
        revenue = pool.submit(total_revenue, db)
    return {
        "totalUsers": total_users.result(),
        "totalAdmins": total_admins.result(),
        "totalProducts": total_products.result(),
        "totalOrders": total_orders.result(),
        "totalRevenue": revenue.result(),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.settings.upload_dir.mkdir(parents=True, exist_ok=True)
    try:
        ensure_indexes(app.state.db)
    except PyMongoError:
        logger.exception("Could not create indexes, continuing without them")
    yield


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Storefront Admin API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db if db is not None else connect(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(router)

    # upload_dir is created at startup
    app.mount("/uploads", StaticFiles(directory=str(settings.upload_dir), check_dir=False), name="uploads")
    optional_mounts = (
        ("/images", settings.images_dir, "images"),
        ("/backend/views", settings.views_dir, "views"),
        ("/backend/public", settings.public_dir, "public"),
    )
    for path, directory, name in optional_mounts:
        if directory.is_dir():
            app.mount(path, StaticFiles(directory=str(directory)), name=name)
    # mounted last so API routes win
    if settings.frontend_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(settings.frontend_dir)), name="frontend")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
