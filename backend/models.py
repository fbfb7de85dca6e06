# models.py
from sqlalchemy import Column, Integer, Numeric, String, Text, inspect
from database import Base


# id присваивает хранилище (max + 1), поэтому autoincrement выключен:
# после уплотнения нумерация должна продолжаться с N + 1.
class RecordMixin:

    def to_dict(self, exclude=()):
        """Запись в виде словаря; ключи совпадают с именами колонок."""
        data = {}
        for attr in inspect(type(self)).column_attrs:
            column_name = attr.columns[0].name
            if column_name in exclude:
                continue
            data[column_name] = getattr(self, attr.key)
        return data


class Order(RecordMixin, Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=False)
    username = Column(String(255), nullable=False)
    additional_requests = Column("additionalRequests", Text)
    ordered_items_ids = Column("orderedItemsIds", Text)


class User(RecordMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=False)
    username = Column(String(255), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="user")


class Category(RecordMixin, Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False)


class MenuItem(RecordMixin, Base):
    __tablename__ = "menu"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    image = Column(Text)
    description = Column(Text)
    weight = Column(Integer)
    # Мягкая ссылка на categories.id: без ограничения в БД и без каскада
    category_id = Column(Integer, index=True)


class Comment(RecordMixin, Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=False)
    username = Column(String(255), nullable=False)
    # Мягкая ссылка на menu.id
    dish_id = Column(Integer, index=True, nullable=False)
    comment = Column(Text, nullable=False)


class IdCounter(Base):
    __tablename__ = "id_counters"

    collection = Column(String(50), primary_key=True)
    next_id = Column(Integer, nullable=False, default=1)
