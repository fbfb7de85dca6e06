"""
Хранилище записей: заказы, меню, категории, пользователи, комментарии.

Каждая операция записи - одна транзакция, которая начинается с блокировки
строки счетчика коллекции (SELECT ... FOR UPDATE), поэтому два писателя
одной коллекции не перемешиваются. Новый id = max(id) + 1.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from compactor import renumber, reset_counter
from database import transaction
from errors import CompactionFailed, ConstraintViolation, DuplicateKey, NotFound
import models

logger = logging.getLogger(__name__)

USER_ROLES = ("user", "admin")


class Collection:
    def __init__(self, name: str, model, label: str, fields: Iterable[str],
                 required: Iterable[str] = (), references: Optional[Dict[str, str]] = None,
                 unique: Iterable[str] = (), compacts: bool = True, updatable: bool = False):
        self.name = name
        self.model = model
        self.label = label
        self.fields = tuple(fields)
        self.required = tuple(required)
        # поле -> имя коллекции, на которую оно ссылается
        self.references = references or {}
        self.unique = tuple(unique)
        self.compacts = compacts
        self.updatable = updatable


COLLECTIONS = {
    "orders": Collection(
        "orders", models.Order, "Order",
        fields=("username", "additional_requests", "ordered_items_ids"),
        required=("username",),
    ),
    "menu": Collection(
        "menu", models.MenuItem, "Menu item",
        fields=("name", "price", "image", "description", "weight", "category_id"),
        required=("name", "price"),
        references={"category_id": "categories"},
        updatable=True,
    ),
    "categories": Collection(
        "categories", models.Category, "Category",
        fields=("name",),
        required=("name",),
    ),
    "users": Collection(
        "users", models.User, "User",
        fields=("username", "password", "role"),
        required=("username", "password"),
        unique=("username",),
    ),
    # Комментарии не уплотняются: при удалении только сбрасывается счетчик
    "comments": Collection(
        "comments", models.Comment, "Comment",
        fields=("username", "dish_id", "comment"),
        required=("username", "dish_id", "comment"),
        references={"dish_id": "menu"},
        compacts=False,
    ),
}


def get_collection(name: str) -> Collection:
    try:
        return COLLECTIONS[name]
    except KeyError:
        raise NotFound(f"Unknown collection: {name}")


def _max_id(db: Session, model) -> int:
    return db.query(func.max(model.id)).scalar() or 0


def lock_counter(db: Session, spec: Collection) -> models.IdCounter:
    """Блокирует строку счетчика коллекции до конца транзакции."""
    counter = (
        db.query(models.IdCounter)
        .filter(models.IdCounter.collection == spec.name)
        .with_for_update()
        .first()
    )
    if counter is None:
        counter = models.IdCounter(collection=spec.name, next_id=_max_id(db, spec.model) + 1)
        db.add(counter)
        db.flush()
    return counter


def ensure_counters(db: Session) -> List[str]:
    """Создает недостающие строки счетчиков. Возвращает имена созданных."""
    created = []
    with transaction(db):
        existing = {c.collection for c in db.query(models.IdCounter).all()}
        for spec in COLLECTIONS.values():
            if spec.name in existing:
                continue
            db.add(models.IdCounter(collection=spec.name, next_id=_max_id(db, spec.model) + 1))
            created.append(spec.name)
    return created


def _clean_fields(spec: Collection, fields: Dict[str, Any]) -> Dict[str, Any]:
    values = {key: fields.get(key) for key in spec.fields if key in fields}
    missing = [key for key in spec.required if values.get(key) is None]
    if missing:
        raise ConstraintViolation(f"Missing required field(s): {', '.join(missing)}")
    if spec.name == "users":
        values["role"] = values.get("role") or "user"
        if values["role"] not in USER_ROLES:
            raise ConstraintViolation(f"Role must be one of: {', '.join(USER_ROLES)}")
    return values


def _check_references(db: Session, spec: Collection, values: Dict[str, Any]):
    for field, target in spec.references.items():
        ref_id = values.get(field)
        if ref_id is None:
            continue
        target_spec = COLLECTIONS[target]
        if db.get(target_spec.model, ref_id) is None:
            raise ConstraintViolation(f"{target_spec.label} {ref_id} does not exist")


def _check_unique(db: Session, spec: Collection, values: Dict[str, Any]):
    for field in spec.unique:
        column = getattr(spec.model, field)
        if db.query(spec.model).filter(column == values.get(field)).first():
            if spec.name == "users" and field == "username":
                raise DuplicateKey("Username already taken!")
            raise DuplicateKey(f"{spec.label} with this {field} already exists")


def insert(db: Session, collection: str, fields: Dict[str, Any]):
    spec = get_collection(collection)
    values = _clean_fields(spec, fields)

    with transaction(db):
        counter = lock_counter(db, spec)
        _check_references(db, spec, values)
        _check_unique(db, spec, values)

        new_id = _max_id(db, spec.model) + 1
        record = spec.model(id=new_id, **{key: values.get(key) for key in spec.fields})
        db.add(record)
        counter.next_id = new_id + 1
        db.flush()
        # Запись отсоединяется до commit: ее атрибуты не истекают и не
        # перечитываются по id, который уплотнение может успеть изменить
        db.expunge(record)

    logger.debug("%s %s создан", spec.label, new_id)
    return record


def get_all(db: Session, collection: str) -> list:
    spec = get_collection(collection)
    return db.query(spec.model).order_by(spec.model.id).all()


def get_by_id(db: Session, collection: str, record_id: int):
    spec = get_collection(collection)
    record = db.get(spec.model, record_id)
    if record is None:
        raise NotFound(f"{spec.label} not found")
    return record


def count(db: Session, collection: str) -> int:
    spec = get_collection(collection)
    return db.query(func.count(spec.model.id)).scalar()


def delete_by_id(db: Session, collection: str, record_id: int):
    spec = get_collection(collection)

    with transaction(db):
        counter = lock_counter(db, spec)
        record = db.get(spec.model, record_id)
        if record is None:
            raise NotFound(f"{spec.label} not found")

        db.delete(record)
        db.flush()

        if not spec.compacts:
            reset_counter(db, spec.model, counter)
            return

        try:
            renumber(db, spec.model, counter)
        except SQLAlchemyError as e:
            logger.error("Не удалось уплотнить %s после удаления %s: %s", spec.name, record_id, e)
            raise CompactionFailed(f"Compaction of {spec.name} failed") from e


def update(db: Session, collection: str, record_id: int, fields: Dict[str, Any]):
    """Полная замена полей записи (поддерживается только для меню)."""
    spec = get_collection(collection)
    if not spec.updatable:
        raise ConstraintViolation(f"{spec.label} records cannot be updated")

    # Полная замена: отсутствующие необязательные поля становятся NULL
    values = _clean_fields(spec, {key: fields.get(key) for key in spec.fields})

    with transaction(db):
        lock_counter(db, spec)
        record = db.get(spec.model, record_id)
        if record is None:
            raise NotFound(f"{spec.label} not found")
        _check_references(db, spec, values)

        for key, value in values.items():
            setattr(record, key, value)
        db.flush()

    return record
