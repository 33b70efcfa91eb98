import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import CORS_ORIGINS, ENVIRONMENT, LOG_LEVEL, PORT, UPLOAD_DIR
from database import db, create_document, ensure_indexes, get_db, get_documents, serialize_doc, to_object_id, utcnow
from errors import AuthenticationError, ConflictError, InternalError, NotFoundError, ValidationError, \
    AuthorizationError, register_error_handlers
from gemini import GeminiClient, make_messages
from schemas import CamelModel, Category, Email, DeliveryAddress, DeliveryLocation, Favorite, Order, PAYMENT_METHODS, \
    PersonalInfo, Product, User, Work
from security import check_password, create_access_token, get_current_user, hash_password, is_admin, require_admin, \
    user_summary
from uploads import ensure_upload_dir, remove_upload, save_upload
import workflow

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("artvia")

app = FastAPI(title="Artvia API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)
register_error_handlers(app, show_stack=ENVIRONMENT != "production")

# Process-wide resources
ensure_upload_dir(UPLOAD_DIR)
ensure_indexes()
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")

gemini_client = GeminiClient()


# Health checks
COLLECTIONS = ("user", "category", "product", "favorite", "work", "order")


@app.get("/")
def root():
    return {"message": "Artvia API running"}


@app.get("/test")
def database_status():
    status: Dict[str, Any] = {"backend": "running", "database": "not configured", "collections": {}}
    if db is None:
        return status
    try:
        status["collections"] = {name: db[name].count_documents({}) for name in COLLECTIONS}
        status["database"] = db.name
    except PyMongoError as exc:
        logger.warning("Database status check failed: %s", exc)
        status["database"] = "unavailable"
    return status


# Auth
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: Email
    password: str = Field(..., min_length=1)


class LoginPayload(BaseModel):
    email: str
    password: str


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterPayload):
    users = get_db()["user"]
    if users.find_one({"email": payload.email}):
        raise ConflictError("User already exists")
    user = User(name=payload.name, email=payload.email, password=hash_password(payload.password))
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    doc = users.find_one({"_id": to_object_id(user_id)})
    return {"user": user_summary(doc), "token": create_access_token(user_id)}


@app.post("/api/auth/login")
def login(payload: LoginPayload):
    users = get_db()["user"]
    doc = users.find_one({"email": payload.email})
    if not doc:
        raise AuthenticationError("Invalid email or password")

    check = check_password(payload.password, doc.get("password"))
    if not check.matched:
        raise AuthenticationError("Invalid email or password")

    if check.migrated_hash:
        try:
            users.update_one({"_id": doc["_id"]}, {"$set": {"password": check.migrated_hash, "updatedAt": utcnow()}})
            logger.info("Migrated plaintext password for user %s", doc["_id"])
        except PyMongoError as exc:
            # the password already matched; the account stays unmigrated until the next login
            logger.error("Password migration failed for user %s: %s", doc["_id"], exc)

    return {"user": user_summary(doc), "token": create_access_token(str(doc["_id"]))}


@app.get("/api/auth/me")
def me(user: dict = Depends(get_current_user)):
    return user_summary(user)


# Categories
class CategoryUpdatePayload(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    name_uz: Optional[str] = Field(None, min_length=1)
    name_ru: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)


def _check_category_unique(categories, fields: Dict[str, Any], exclude_id=None):
    for key in ("name", "slug"):
        if key not in fields:
            continue
        query: Dict[str, Any] = {key: fields[key]}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if categories.find_one(query):
            raise ConflictError(f"Category with this {key} already exists")


@app.get("/api/categories")
def list_categories():
    return serialize_doc(get_documents("category", sort=[("name", 1)]))


@app.get("/api/categories/{category_id}")
def get_category(category_id: str):
    doc = get_db()["category"].find_one({"_id": to_object_id(category_id)})
    if not doc:
        raise NotFoundError("Category not found")
    return serialize_doc(doc)


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: Category):
    categories = get_db()["category"]
    _check_category_unique(categories, payload.model_dump())
    try:
        category_id = create_document("category", payload)
    except DuplicateKeyError:
        raise ConflictError("Category already exists")
    return serialize_doc(categories.find_one({"_id": to_object_id(category_id)}))


@app.put("/api/categories/{category_id}", dependencies=[Depends(require_admin)])
def update_category(category_id: str, payload: CategoryUpdatePayload):
    oid = to_object_id(category_id)
    categories = get_db()["category"]
    update_doc = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    _check_category_unique(categories, update_doc, exclude_id=oid)
    update_doc["updatedAt"] = utcnow()
    try:
        res = categories.update_one({"_id": oid}, {"$set": update_doc})
    except DuplicateKeyError:
        raise ConflictError("Category already exists")
    if res.matched_count == 0:
        raise NotFoundError("Category not found")
    return serialize_doc(categories.find_one({"_id": oid}))


@app.delete("/api/categories/{category_id}", dependencies=[Depends(require_admin)])
def delete_category(category_id: str):
    res = get_db()["category"].delete_one({"_id": to_object_id(category_id)})
    if res.deleted_count == 0:
        raise NotFoundError("Category not found")
    return {"message": "Category deleted"}


# Products
def _with_category(product: dict) -> dict:
    category = product.get("category")
    if category is not None:
        found = get_db()["category"].find_one({"_id": category})
        if found:
            product["category"] = found
    return product


def _required_text(value: Optional[str], label: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


@app.get("/api/products")
def list_products(category: Optional[str] = None, limit: Optional[int] = None):
    query = {"category": to_object_id(category)} if category else {}
    items = get_documents("product", query, limit=limit, sort=[("createdAt", -1)])
    return serialize_doc([_with_category(p) for p in items])


@app.get("/api/products/category/{category_id}")
def list_products_by_category(category_id: str):
    items = get_documents("product", {"category": to_object_id(category_id)}, sort=[("createdAt", -1)])
    return serialize_doc([_with_category(p) for p in items])


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    doc = get_db()["product"].find_one({"_id": to_object_id(product_id)})
    if not doc:
        raise NotFoundError("Product not found")
    return serialize_doc(_with_category(doc))


@app.post("/api/products", status_code=201, dependencies=[Depends(require_admin)])
def create_product(
    title: str = Form(...),
    title_uz: str = Form(..., alias="titleUz"),
    title_ru: str = Form(..., alias="titleRu"),
    description: str = Form(...),
    description_uz: Optional[str] = Form(None, alias="descriptionUz"),
    description_ru: Optional[str] = Form(None, alias="descriptionRu"),
    price: float = Form(..., ge=0),
    category: str = Form(...),
    category_name: str = Form(..., alias="categoryName"),
    image: Optional[UploadFile] = File(None),
):
    product = Product(
        title=title,
        title_uz=title_uz,
        title_ru=title_ru,
        description=description,
        description_uz=_required_text(description_uz, "Description (UZ)"),
        description_ru=_required_text(description_ru, "Description (RU)"),
        price=price,
        category=to_object_id(category),
        category_name=category_name,
    )
    if image is not None and image.filename:
        product.image = save_upload(image, kinds=("image",))
    product_id = create_document("product", product)
    return serialize_doc(_with_category(get_db()["product"].find_one({"_id": to_object_id(product_id)})))


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(
    product_id: str,
    title: Optional[str] = Form(None),
    title_uz: Optional[str] = Form(None, alias="titleUz"),
    title_ru: Optional[str] = Form(None, alias="titleRu"),
    description: Optional[str] = Form(None),
    description_uz: Optional[str] = Form(None, alias="descriptionUz"),
    description_ru: Optional[str] = Form(None, alias="descriptionRu"),
    price: Optional[float] = Form(None, ge=0),
    category: Optional[str] = Form(None),
    category_name: Optional[str] = Form(None, alias="categoryName"),
    image: Optional[UploadFile] = File(None),
):
    oid = to_object_id(product_id)
    products = get_db()["product"]
    existing = products.find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Product not found")

    update_doc: Dict[str, Any] = {
        k: v for k, v in {
            "title": title,
            "titleUz": title_uz,
            "titleRu": title_ru,
            "description": description,
            "price": price,
            "categoryName": category_name,
        }.items() if v is not None
    }
    if description_uz is not None:
        update_doc["descriptionUz"] = _required_text(description_uz, "Description (UZ)")
    if description_ru is not None:
        update_doc["descriptionRu"] = _required_text(description_ru, "Description (RU)")
    if category is not None:
        update_doc["category"] = to_object_id(category)
    if image is not None and image.filename:
        update_doc["image"] = save_upload(image, kinds=("image",))
        remove_upload(existing.get("image"))

    update_doc["updatedAt"] = utcnow()
    products.update_one({"_id": oid}, {"$set": update_doc})
    return serialize_doc(_with_category(products.find_one({"_id": oid})))


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str):
    res = get_db()["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    return {"message": "Product deleted"}


# Favorites
@app.get("/api/favorites")
def list_favorites(user: dict = Depends(get_current_user)):
    products = get_db()["product"]
    favorites = get_documents("favorite", {"user": user["_id"]}, sort=[("createdAt", -1)])
    for fav in favorites:
        fav["product"] = products.find_one({"_id": fav["product"]}) or fav["product"]
    return serialize_doc(favorites)


@app.post("/api/favorites/{product_id}", status_code=201)
def add_favorite(product_id: str, user: dict = Depends(get_current_user)):
    pid = to_object_id(product_id)
    database = get_db()
    product = database["product"].find_one({"_id": pid})
    if not product:
        raise NotFoundError("Product not found")
    if database["favorite"].find_one({"user": user["_id"], "product": pid}):
        raise ConflictError("Product already in favorites")
    try:
        favorite_id = create_document("favorite", Favorite(user=user["_id"], product=pid))
    except DuplicateKeyError:
        raise ConflictError("Product already in favorites")
    doc = database["favorite"].find_one({"_id": to_object_id(favorite_id)})
    doc["product"] = product
    return serialize_doc(doc)


@app.delete("/api/favorites/{product_id}")
def remove_favorite(product_id: str, user: dict = Depends(get_current_user)):
    res = get_db()["favorite"].delete_one({"user": user["_id"], "product": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise NotFoundError("Favorite not found")
    return {"message": "Removed from favorites"}


@app.get("/api/favorites/check/{product_id}")
def check_favorite(product_id: str, user: dict = Depends(get_current_user)):
    found = get_db()["favorite"].find_one({"user": user["_id"], "product": to_object_id(product_id)})
    return {"isFavorite": found is not None}


# Works
def _is_true(value: Optional[str]) -> bool:
    return str(value).lower() == "true"


def _has_file(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)


@app.get("/api/works")
def list_works():
    return serialize_doc(get_documents("work", sort=[("createdAt", -1)]))


@app.get("/api/works/{work_id}")
def get_work(work_id: str):
    doc = get_db()["work"].find_one({"_id": to_object_id(work_id)})
    if not doc:
        raise NotFoundError("Work not found")
    return serialize_doc(doc)


@app.post("/api/works", status_code=201, dependencies=[Depends(require_admin)])
def create_work(
    title: Optional[str] = Form(None),
    description_uz: Optional[str] = Form(None, alias="descriptionUz"),
    description_ru: Optional[str] = Form(None, alias="descriptionRu"),
    description_en: Optional[str] = Form(None, alias="descriptionEn"),
    category: Optional[str] = Form(None),
    video_url: Optional[str] = Form(None, alias="videoUrl"),
    featured: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    video: Optional[UploadFile] = File(None),
):
    work = Work(
        title=title or "Untitled Work",
        description_uz=_required_text(description_uz, "Description (UZ)"),
        description_ru=_required_text(description_ru, "Description (RU)"),
        description_en=_required_text(description_en, "Description (EN)"),
        category=category or "General",
        featured=_is_true(featured),
    )
    if not (_has_file(image) or _has_file(video) or (video_url and video_url.strip())):
        raise ValidationError("At least one media (image, video, or videoUrl) is required")

    if _has_file(image):
        work.image = save_upload(image, kinds=("image",))
    if _has_file(video):
        work.video = save_upload(video, kinds=("video",))
    elif video_url and video_url.strip():
        work.video_url = video_url.strip()

    work_id = create_document("work", work)
    return serialize_doc(get_db()["work"].find_one({"_id": to_object_id(work_id)}))


@app.put("/api/works/{work_id}", dependencies=[Depends(require_admin)])
def update_work(
    work_id: str,
    title: Optional[str] = Form(None),
    description_uz: Optional[str] = Form(None, alias="descriptionUz"),
    description_ru: Optional[str] = Form(None, alias="descriptionRu"),
    description_en: Optional[str] = Form(None, alias="descriptionEn"),
    category: Optional[str] = Form(None),
    video_url: Optional[str] = Form(None, alias="videoUrl"),
    featured: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    video: Optional[UploadFile] = File(None),
):
    oid = to_object_id(work_id)
    works = get_db()["work"]
    existing = works.find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Work not found")

    to_set: Dict[str, Any] = {}
    to_unset: Dict[str, str] = {}
    if title is not None:
        to_set["title"] = title
    if description_uz is not None:
        to_set["descriptionUz"] = _required_text(description_uz, "Description (UZ)")
    if description_ru is not None:
        to_set["descriptionRu"] = _required_text(description_ru, "Description (RU)")
    if description_en is not None:
        to_set["descriptionEn"] = _required_text(description_en, "Description (EN)")
    if category is not None:
        to_set["category"] = category
    if featured is not None:
        to_set["featured"] = _is_true(featured)

    if _has_file(image):
        to_set["image"] = save_upload(image, kinds=("image",))
        remove_upload(existing.get("image"))

    if _has_file(video):
        to_set["video"] = save_upload(video, kinds=("video",))
        to_unset["videoUrl"] = ""
        remove_upload(existing.get("video"))
    elif video_url is not None:
        # switching to a hosted link drops the stored file
        remove_upload(existing.get("video"))
        to_unset["video"] = ""
        if video_url.strip():
            to_set["videoUrl"] = video_url.strip()
        else:
            to_unset["videoUrl"] = ""

    to_set["updatedAt"] = utcnow()
    update: Dict[str, Any] = {"$set": to_set}
    if to_unset:
        update["$unset"] = to_unset
    works.update_one({"_id": oid}, update)
    return serialize_doc(works.find_one({"_id": oid}))


@app.delete("/api/works/{work_id}", dependencies=[Depends(require_admin)])
def delete_work(work_id: str):
    oid = to_object_id(work_id)
    works = get_db()["work"]
    existing = works.find_one({"_id": oid})
    if not existing:
        raise NotFoundError("Work not found")
    remove_upload(existing.get("image"))
    remove_upload(existing.get("video"))
    works.delete_one({"_id": oid})
    return {"message": "Work deleted successfully"}


# Orders
class OrderItemPayload(CamelModel):
    product: str
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0)


class CreateOrderPayload(CamelModel):
    items: List[OrderItemPayload] = []
    total_price: float = Field(..., ge=0)
    personal_info: PersonalInfo
    payment_method: str
    delivery_address: Optional[DeliveryAddress] = None
    delivery_location: Optional[Any] = None


class StatusPayload(BaseModel):
    status: str


def _populate_order(order: dict) -> dict:
    database = get_db()
    owner = database["user"].find_one({"_id": order.get("user")}, {"name": 1, "email": 1})
    if owner:
        order["user"] = owner
    for item in order.get("items", []):
        product = database["product"].find_one({"_id": item.get("product")})
        if product:
            item["product"] = product
    return serialize_doc(order)


def _find_order(order_id: str) -> dict:
    order = get_db()["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    return order


@app.get("/api/orders")
def list_orders(user: dict = Depends(get_current_user)):
    query = {} if is_admin(user) else {"user": user["_id"]}
    return [_populate_order(o) for o in get_documents("order", query, sort=[("createdAt", -1)])]


@app.get("/api/orders/my")
def my_orders(user: dict = Depends(get_current_user)):
    return [_populate_order(o) for o in get_documents("order", {"user": user["_id"]}, sort=[("createdAt", -1)])]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(get_current_user)):
    order = _find_order(order_id)
    if not workflow.can_view_order(user, order):
        raise AuthorizationError("Not authorized")
    return _populate_order(order)


@app.post("/api/orders", status_code=201)
def create_order(payload: CreateOrderPayload, user: dict = Depends(get_current_user)):
    if payload.payment_method not in PAYMENT_METHODS:
        raise ValidationError("Payment method must be 'card' or 'cash'")
    lat, lng = workflow.validate_order_request(payload.items, payload.delivery_address, payload.delivery_location)

    products = get_db()["product"]
    items = workflow.snapshot_items(
        [i.model_dump() for i in payload.items],
        lambda oid: products.find_one({"_id": oid}, {"title": 1, "image": 1}),
    )
    order = Order(
        user=user["_id"],
        items=items,
        total_price=payload.total_price,
        personal_info=payload.personal_info,
        payment_method=payload.payment_method,
        delivery_address=payload.delivery_address,
        delivery_location=DeliveryLocation(lat=lat, lng=lng),
        status=workflow.initial_status(payload.payment_method),
    )
    order_id = create_document("order", order)
    logger.info("Order %s created by %s (%s, status %s)", order_id, user["_id"], order.payment_method, order.status)
    return _populate_order(_find_order(order_id))


@app.post("/api/orders/{order_id}/payment-screenshot")
def upload_payment_screenshot(order_id: str, screenshot: Optional[UploadFile] = File(None),
                              user: dict = Depends(get_current_user)):
    order = _find_order(order_id)
    workflow.check_screenshot_upload(order, user, _has_file(screenshot))
    path = save_upload(screenshot, kinds=("image",))
    try:
        updated = workflow.apply_transition(get_db()["order"], order, workflow.screenshot_uploaded(path))
    except Exception:
        remove_upload(path)
        raise
    return {
        "message": "Payment screenshot uploaded successfully. Waiting for admin confirmation.",
        "order": _populate_order(updated),
        "screenshotPath": path,
    }


@app.post("/api/orders/{order_id}/confirm-payment", dependencies=[Depends(require_admin)])
def confirm_payment(order_id: str):
    order = _find_order(order_id)
    updated = workflow.apply_transition(get_db()["order"], order, workflow.confirm_payment(order))
    return {"message": "Payment confirmed successfully", "order": _populate_order(updated)}


@app.post("/api/orders/{order_id}/reject-payment", dependencies=[Depends(require_admin)])
def reject_payment(order_id: str):
    order = _find_order(order_id)
    updated = workflow.apply_transition(get_db()["order"], order, workflow.reject_payment(order))
    remove_upload(order.get("paymentScreenshot"))
    return {"message": "Payment rejected. User needs to upload a new screenshot.", "order": _populate_order(updated)}


@app.put("/api/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: StatusPayload):
    order = _find_order(order_id)
    updated = workflow.apply_transition(get_db()["order"], order, workflow.set_status(order, payload.status))
    return _populate_order(updated)


@app.put("/api/orders/{order_id}/deliver", dependencies=[Depends(require_admin)])
def deliver_order(order_id: str):
    order = _find_order(order_id)
    updated = workflow.apply_transition(get_db()["order"], order, workflow.mark_delivered(order))
    return {"message": "Order marked as delivered", "order": _populate_order(updated)}


# AI product helper
class ProductHelperPayload(CamelModel):
    product_id: Optional[str] = None
    question: Optional[str] = None


def _product_prompt(product: dict, category_name: str) -> str:
    return (
        "You are a shop assistant for an online marketplace of art and handmade goods. "
        "Answer the customer's question using only the product details below. "
        "If the question is not about this product, say so politely. "
        "Reply in plain text without markdown or HTML.\n\n"
        f"Title: {product.get('titleUz') or product.get('title')}\n"
        f"Category: {category_name}\n"
        f"Description (UZ): {product.get('descriptionUz') or product.get('description')}\n"
        f"Description (RU): {product.get('descriptionRu') or product.get('description')}\n"
        f"Price: {product.get('price')} so'm\n"
    )


@app.post("/api/ai/product-helper")
def product_helper(payload: ProductHelperPayload):
    if not payload.product_id or not payload.question:
        raise ValidationError("Product ID and question are required")
    if not gemini_client.api_key:
        raise InternalError("AI service is not configured")

    product = get_db()["product"].find_one({"_id": to_object_id(payload.product_id)})
    if not product:
        raise NotFoundError("Product not found")
    category = get_db()["category"].find_one({"_id": product.get("category")})
    category_name = (category or {}).get("name") or product.get("categoryName") or "Unknown"

    contents = make_messages([{"role": "user", "content": payload.question}])
    answer = gemini_client.think(contents, _product_prompt(product, category_name))
    return {"answer": answer}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
