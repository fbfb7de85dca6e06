"""
Уплотнение id коллекции после удаления.

Оставшиеся записи получают id 1..N в порядке текущих id, счетчик
следующего id становится N + 1. Все шаги выполняются в одной транзакции
под блокировкой строки счетчика коллекции.
"""
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import transaction
from errors import CompactionFailed
from models import IdCounter

logger = logging.getLogger(__name__)


def renumber(db: Session, model, counter: IdCounter) -> int:
    """
    Перенумеровывает записи model внутри уже открытой транзакции.
    Возвращает количество записей.
    """
    ids = [row[0] for row in db.query(model.id).order_by(model.id).all()]

    # Новый id никогда не больше старого, поэтому при обходе по возрастанию
    # целевой id всегда свободен.
    moved = 0
    for new_id, old_id in enumerate(ids, start=1):
        if new_id == old_id:
            continue
        db.query(model).filter(model.id == old_id).update(
            {model.id: new_id}, synchronize_session=False
        )
        moved += 1

    counter.next_id = len(ids) + 1
    db.flush()

    # Объекты в identity map хранят старые id
    for obj in list(db.identity_map.values()):
        if isinstance(obj, model):
            db.expunge(obj)

    if moved:
        logger.info("Коллекция %s уплотнена: %s записей, перенумеровано %s",
                    counter.collection, len(ids), moved)
    return len(ids)


def reset_counter(db: Session, model, counter: IdCounter) -> int:
    """Сбрасывает счетчик на max(id) + 1 без перенумерации."""
    max_id = db.query(func.max(model.id)).scalar() or 0
    counter.next_id = max_id + 1
    db.flush()
    return counter.next_id


def compact(db: Session, collection: str) -> int:
    """Уплотняет коллекцию отдельной транзакцией. Возвращает количество записей."""
    from record_store import get_collection, lock_counter

    spec = get_collection(collection)
    with transaction(db):
        counter = lock_counter(db, spec)
        try:
            return renumber(db, spec.model, counter)
        except SQLAlchemyError as e:
            logger.error("Не удалось уплотнить коллекцию %s: %s", spec.name, e)
            raise CompactionFailed(f"Compaction of {spec.name} failed") from e
