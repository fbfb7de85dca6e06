"""
Комментарии к блюдам.

В отличие от остальных коллекций удаление комментария не перенумеровывает
оставшиеся записи: сбрасывается только счетчик следующего id.
"""
from typing import List

from sqlalchemy.orm import Session

import record_store
from models import Comment


def add_comment(db: Session, username: str, dish_id: int, comment: str) -> Comment:
    return record_store.insert(db, "comments", {
        "username": username,
        "dish_id": dish_id,
        "comment": comment,
    })


def comments_for_dish(db: Session, dish_id: int) -> List[Comment]:
    return db.query(Comment).filter(Comment.dish_id == dish_id).order_by(Comment.id).all()


def delete_comment(db: Session, comment_id: int):
    record_store.delete_by_id(db, "comments", comment_id)
