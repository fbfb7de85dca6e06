from fastapi import FastAPI, Depends, HTTPException, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from typing import Optional
import logging
import uvicorn

import auth
import comment_store
import compactor
import config
import menu_composer
import models
import record_store
from database import engine, get_db, init_restaurant_data, wait_for_db
from errors import INTERNAL_ERROR_MESSAGE, StoreError
from redis_client import rate_limit, redis_client
from schemas import (
    CategoryCreate,
    CommentCreate,
    MenuItemCreate,
    OrderCreate,
    UserCreate,
    UserLogin,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Restaurant ordering API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    # Сначала дожидаемся готовности базы данных
    if wait_for_db():
        try:
            logger.info("Создание таблиц в базе данных...")
            models.Base.metadata.create_all(bind=engine)
            init_restaurant_data()
            logger.info("База данных успешно инициализирована")
        except Exception:
            logger.exception("Ошибка при создании/инициализации базы данных")
    else:
        logger.error("Не удалось дождаться готовности базы данных при старте сервиса")

    if redis_client.is_available():
        logger.info("Redis доступен")
    else:
        logger.warning("Redis недоступен, кеширование отключено")


# ========== Ошибки -> конверт {success: false, message} ==========

def failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    if not exc.public:
        logger.error("%s %s: %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    return failure(exc.status_code, exc.public_message)


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return failure(422, message)


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return failure(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Необработанная ошибка %s %s", request.method, request.url.path)
    return failure(500, INTERNAL_ERROR_MESSAGE)


def public_user(user: models.User) -> dict:
    return user.to_dict(exclude=("password",))


@app.get("/")
def read_root():
    return {"message": "Restaurant API is working!"}


@app.get("/health")
def health_check():
    return {"status": "ok", "message": "API is running"}


@app.get("/cache/info")
def get_cache_info():
    """Получить информацию о состоянии кеша"""
    return redis_client.get_cache_info()


# ========== Заказы ==========

@app.get("/orders")
def get_orders(db: Session = Depends(get_db)):
    return [order.to_dict() for order in record_store.get_all(db, "orders")]


@app.get("/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return record_store.get_by_id(db, "orders", order_id).to_dict()


@app.post("/orders")
def create_order(order: OrderCreate, db: Session = Depends(get_db)):
    db_order = record_store.insert(db, "orders", {
        "username": order.username,
        "additional_requests": order.additionalRequests,
        "ordered_items_ids": order.orderedItemsIds,
    })
    logger.info("Новый заказ %s от %s", db_order.id, order.username)
    return {"success": True, "id": db_order.id}


@app.delete("/orders/{order_id}")
def delete_order(order_id: int, db: Session = Depends(get_db)):
    record_store.delete_by_id(db, "orders", order_id)
    return {"success": True}


# ========== Меню ==========

@app.get("/menu")
def get_menu(category_id: Optional[int] = None, db: Session = Depends(get_db)):
    cached_menu = redis_client.get_cached_menu(category_id)
    if cached_menu is not None:
        return cached_menu

    menu = jsonable_encoder(menu_composer.compose_menu(db, category_id))
    redis_client.cache_menu(menu, category_id)
    return menu


@app.get("/menu/{item_id}")
def get_menu_item(item_id: int, db: Session = Depends(get_db)):
    return menu_composer.compose_menu_item(db, item_id)


@app.post("/menu")
def create_menu_item(item: MenuItemCreate, db: Session = Depends(get_db)):
    db_item = record_store.insert(db, "menu", item.dict())
    redis_client.invalidate_menu_cache()
    return {"success": True, "id": db_item.id}


@app.put("/menu/{item_id}")
def update_menu_item(item_id: int, item: MenuItemCreate, db: Session = Depends(get_db)):
    logger.info("Обновление блюда %s: %s", item_id, item.dict())
    record_store.update(db, "menu", item_id, item.dict())
    redis_client.invalidate_menu_cache()
    return {"success": True}


@app.delete("/menu/{item_id}")
def delete_menu_item(item_id: int, db: Session = Depends(get_db)):
    record_store.delete_by_id(db, "menu", item_id)
    redis_client.invalidate_menu_cache()
    return {"success": True}


# ========== Категории ==========

@app.get("/categories")
def get_categories(db: Session = Depends(get_db)):
    cached = redis_client.get_cached_categories()
    if cached is not None:
        return cached

    categories = jsonable_encoder([c.to_dict() for c in record_store.get_all(db, "categories")])
    redis_client.cache_categories(categories)
    return categories


@app.get("/categories/{category_id}")
def get_category(category_id: int, db: Session = Depends(get_db)):
    return record_store.get_by_id(db, "categories", category_id).to_dict()


@app.post("/categories")
def create_category(category: CategoryCreate, db: Session = Depends(get_db)):
    db_category = record_store.insert(db, "categories", {"name": category.name})
    redis_client.invalidate_categories_cache()
    return {"success": True, "id": db_category.id}


@app.delete("/categories/{category_id}")
def delete_category(category_id: int, db: Session = Depends(get_db)):
    record_store.delete_by_id(db, "categories", category_id)
    redis_client.invalidate_categories_cache()
    return {"success": True}


# ========== Пользователи ==========

@app.post("/register", dependencies=[Depends(rate_limit(key_prefix="register"))])
def register(user: UserCreate, db: Session = Depends(get_db)):
    logger.info("Регистрация пользователя: %s", user.username)
    db_user = auth.register_user(db, user.username, user.password)
    return {"success": True, "id": db_user.id}


@app.post("/login", dependencies=[Depends(rate_limit(key_prefix="login"))])
def login(user: UserLogin, db: Session = Depends(get_db)):
    db_user = auth.authenticate_user(db, user.username, user.password)
    if not db_user:
        return {"success": False, "message": "Invalid username or password!"}

    access_token = auth.create_access_token(data={"sub": db_user.username, "role": db_user.role})
    return {
        "success": True,
        "user": public_user(db_user),
        "access_token": access_token,
        "token_type": "bearer",
    }


def get_current_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = authorization.replace("Bearer ", "")
    payload = auth.verify_token(token)

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


@app.get("/me")
def get_current_user_info(current_user: models.User = Depends(get_current_user)):
    return public_user(current_user)


@app.get("/users")
def get_users(db: Session = Depends(get_db)):
    return [public_user(user) for user in record_store.get_all(db, "users")]


@app.get("/users/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db)):
    return public_user(record_store.get_by_id(db, "users", user_id))


@app.delete("/users/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db)):
    record_store.delete_by_id(db, "users", user_id)
    return {"success": True}


# ========== Комментарии ==========

@app.get("/comments")
def get_comments(db: Session = Depends(get_db)):
    return [c.to_dict() for c in record_store.get_all(db, "comments")]


@app.get("/comments/{dish_id}")
def get_dish_comments(dish_id: int, db: Session = Depends(get_db)):
    return [c.to_dict() for c in comment_store.comments_for_dish(db, dish_id)]


@app.post("/comments")
def create_comment(comment: CommentCreate, db: Session = Depends(get_db)):
    db_comment = comment_store.add_comment(db, comment.username, comment.dish_id, comment.comment)
    return {"success": True, "id": db_comment.id}


@app.delete("/comments/{comment_id}")
def delete_comment(comment_id: int, db: Session = Depends(get_db)):
    comment_store.delete_comment(db, comment_id)
    return {"success": True}


# ========== Обслуживание ==========

@app.post("/maintenance/compact/{collection}")
def compact_collection(collection: str, db: Session = Depends(get_db)):
    """Принудительное уплотнение id коллекции (комментарии не уплотняются)."""
    spec = record_store.get_collection(collection)
    if not spec.compacts:
        raise HTTPException(status_code=400, detail=f"{spec.label} ids are never compacted")

    total = compactor.compact(db, collection)
    if collection in ("menu", "categories"):
        redis_client.invalidate_categories_cache()
    return {"success": True, "count": total}


if __name__ == "__main__":
    uvicorn.run(app, host=config.HOST, port=config.PORT)
