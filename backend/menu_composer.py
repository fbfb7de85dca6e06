from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from errors import NotFound
from models import Category, MenuItem


def _compose(item: MenuItem, category_name: Optional[str]) -> Dict:
    data = item.to_dict()
    data["category"] = category_name
    return data


def compose_menu(db: Session, category_id: Optional[int] = None) -> List[Dict]:
    """
    Меню для показа: каждое блюдо вместе с названием категории.
    Блюда, чья категория удалена, в выдачу не попадают.
    """
    query = (
        db.query(MenuItem, Category.name)
        .join(Category, MenuItem.category_id == Category.id)
    )
    if category_id is not None:
        query = query.filter(MenuItem.category_id == category_id)

    return [_compose(item, name) for item, name in query.order_by(MenuItem.id).all()]


def compose_menu_item(db: Session, item_id: int) -> Dict:
    row = (
        db.query(MenuItem, Category.name)
        .outerjoin(Category, MenuItem.category_id == Category.id)
        .filter(MenuItem.id == item_id)
        .first()
    )
    if row is None:
        raise NotFound("Menu item not found")

    item, name = row
    return _compose(item, name)
