import random
import threading
import time
from decimal import Decimal

import pytest

import models
import record_store
from errors import ConstraintViolation, DuplicateKey, NotFound


def add_dish(db, name, category_id=None, price="9.50"):
    return record_store.insert(db, "menu", {
        "name": name,
        "price": Decimal(price),
        "category_id": category_id,
    })


def ids(db, collection):
    return [r.id for r in record_store.get_all(db, collection)]


def test_insert_into_empty_collection_gets_id_1(db):
    for collection, fields in [
        ("orders", {"username": "mario"}),
        ("categories", {"name": "Pasta"}),
        ("users", {"username": "mario", "password": "hash"}),
    ]:
        record = record_store.insert(db, collection, fields)
        assert record.id == 1


def test_insert_assigns_sequential_ids_and_updates_counter(db):
    for name in ("Pizza", "Pasta", "Soup"):
        record_store.insert(db, "categories", {"name": name})

    assert ids(db, "categories") == [1, 2, 3]
    assert db.get(models.IdCounter, "categories").next_id == 4


def test_insert_ignores_unknown_fields(db):
    order = record_store.insert(db, "orders", {"username": "mario", "table": 7, "id": 99})
    assert order.id == 1
    assert order.to_dict() == {
        "id": 1,
        "username": "mario",
        "additionalRequests": None,
        "orderedItemsIds": None,
    }


def test_insert_missing_required_field(db):
    with pytest.raises(ConstraintViolation):
        record_store.insert(db, "orders", {"additional_requests": "no onions"})
    with pytest.raises(ConstraintViolation):
        record_store.insert(db, "menu", {"name": "Pizza"})
    assert record_store.count(db, "orders") == 0


def test_insert_with_dangling_reference(db):
    with pytest.raises(ConstraintViolation):
        add_dish(db, "Carbonara", category_id=42)
    assert record_store.count(db, "menu") == 0


def test_insert_user_with_invalid_role(db):
    with pytest.raises(ConstraintViolation):
        record_store.insert(db, "users", {"username": "mario", "password": "x", "role": "chef"})


def test_duplicate_username(db):
    record_store.insert(db, "users", {"username": "mario", "password": "x"})
    with pytest.raises(DuplicateKey):
        record_store.insert(db, "users", {"username": "mario", "password": "y"})
    assert record_store.count(db, "users") == 1


def test_get_by_id_not_found(db):
    with pytest.raises(NotFound):
        record_store.get_by_id(db, "orders", 1)


def test_unknown_collection(db):
    with pytest.raises(NotFound):
        record_store.get_all(db, "tables")


def test_delete_missing_id_leaves_collection_unchanged(db):
    for name in ("a", "b"):
        record_store.insert(db, "orders", {"username": name})

    with pytest.raises(NotFound):
        record_store.delete_by_id(db, "orders", 5)

    assert ids(db, "orders") == [1, 2]
    assert db.get(models.IdCounter, "orders").next_id == 3


def test_delete_menu_item_renumbers_and_next_insert_gets_3(db):
    """Удаление блюда 2 из {1,2,3}: старое 3 становится 2, следующее блюдо получает 3."""
    for name in ("Bruschetta", "Lasagne", "Tiramisu"):
        add_dish(db, name)

    record_store.delete_by_id(db, "menu", 2)

    items = record_store.get_all(db, "menu")
    assert [(i.id, i.name) for i in items] == [(1, "Bruschetta"), (2, "Tiramisu")]

    new_item = add_dish(db, "Panna cotta")
    assert new_item.id == 3


def test_delete_last_record_resets_counter_to_1(db):
    record_store.insert(db, "categories", {"name": "Pasta"})
    record_store.delete_by_id(db, "categories", 1)

    assert record_store.get_all(db, "categories") == []
    assert db.get(models.IdCounter, "categories").next_id == 1
    assert record_store.insert(db, "categories", {"name": "Pizza"}).id == 1


@pytest.mark.parametrize("collection", ["orders", "categories", "users"])
def test_ids_stay_contiguous_after_random_inserts_and_deletes(db, collection):
    """После любой последовательности вставок и удалений id образуют 1..N в порядке вставки."""
    rng = random.Random(7)
    expected = []

    for step in range(40):
        if expected and rng.random() < 0.4:
            position = rng.randrange(len(expected))
            record_store.delete_by_id(db, collection, position + 1)
            expected.pop(position)
        else:
            name = f"{collection}-{step}"
            if collection == "categories":
                fields = {"name": name}
            elif collection == "users":
                fields = {"username": name, "password": "hash"}
            else:
                fields = {"username": name}
            record = record_store.insert(db, collection, fields)
            expected.append(name)
            assert record.id == len(expected)

    records = record_store.get_all(db, collection)
    key = "name" if collection == "categories" else "username"
    assert [r.id for r in records] == list(range(1, len(expected) + 1))
    assert [getattr(r, key) for r in records] == expected
    assert db.get(models.IdCounter, collection).next_id == len(expected) + 1


def test_update_menu_item_full_replace(db):
    record_store.insert(db, "categories", {"name": "Pasta"})
    record_store.insert(db, "categories", {"name": "Desserts"})
    record_store.insert(db, "menu", {
        "name": "Carbonara", "price": Decimal("12.00"), "image": "carbonara.png",
        "description": "Classic", "weight": 350, "category_id": 1,
    })

    record_store.update(db, "menu", 1, {"name": "Tiramisu", "price": Decimal("6.50"), "category_id": 2})

    item = record_store.get_by_id(db, "menu", 1)
    assert item.name == "Tiramisu"
    assert item.price == Decimal("6.50")
    assert item.category_id == 2
    # Полная замена: поля, которых нет в запросе, очищаются
    assert item.image is None
    assert item.description is None
    assert item.weight is None


def test_update_errors(db):
    with pytest.raises(NotFound):
        record_store.update(db, "menu", 1, {"name": "Pizza", "price": Decimal("5")})

    add_dish(db, "Pizza")
    with pytest.raises(ConstraintViolation):
        record_store.update(db, "menu", 1, {"name": "Pizza", "price": Decimal("5"), "category_id": 9})
    with pytest.raises(ConstraintViolation):
        record_store.update(db, "menu", 1, {"name": "Pizza"})

    record_store.insert(db, "orders", {"username": "mario"})
    with pytest.raises(ConstraintViolation):
        record_store.update(db, "orders", 1, {"username": "luigi"})
    assert record_store.get_by_id(db, "orders", 1).username == "mario"


def test_inserted_record_stays_readable_after_concurrent_compaction(session_factory):
    """Запись, возвращенная insert, не перечитывается по id, измененному чужим уплотнением."""
    writer = session_factory()
    other = session_factory()
    try:
        record_store.insert(writer, "orders", {"username": "anna"})
        order = record_store.insert(writer, "orders", {"username": "bohdan"})

        record_store.delete_by_id(other, "orders", 1)

        assert (order.id, order.username) == (2, "bohdan")
        assert [(o.id, o.username) for o in record_store.get_all(other, "orders")] == [(1, "bohdan")]
    finally:
        writer.close()
        other.close()


def test_delete_and_compact_wait_for_concurrent_insert(shared_session_factory, monkeypatch):
    """
    Insert держит блокировку коллекции от чтения max(id) до commit:
    удаление с уплотнением из другой сессии ждет, и id остаются 1..N.
    """
    setup = shared_session_factory()
    try:
        for name in ("anna", "bohdan", "chiara"):
            record_store.insert(setup, "orders", {"username": name})
    finally:
        setup.close()

    writer_threads = set()
    writer_paused = threading.Event()
    release_writer = threading.Event()
    original_max_id = record_store._max_id

    def pausing_max_id(db, model):
        result = original_max_id(db, model)
        if threading.get_ident() in writer_threads and not writer_paused.is_set():
            writer_paused.set()
            release_writer.wait(5)
        return result

    monkeypatch.setattr(record_store, "_max_id", pausing_max_id)
    errors = []

    def run(action):
        db = shared_session_factory()
        try:
            action(db)
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    def insert_order():
        writer_threads.add(threading.get_ident())
        run(lambda db: record_store.insert(db, "orders", {"username": "dario"}))

    writer = threading.Thread(target=insert_order)
    deleter = threading.Thread(target=run, args=(lambda db: record_store.delete_by_id(db, "orders", 1),))

    writer.start()
    try:
        assert writer_paused.wait(5)
        deleter.start()
        time.sleep(0.3)
        # Удаление стоит на блокировке, пока insert не закончил
        assert deleter.is_alive()
    finally:
        release_writer.set()
        writer.join(5)
        if deleter.ident is not None:
            deleter.join(5)

    assert errors == []

    check = shared_session_factory()
    try:
        orders = record_store.get_all(check, "orders")
        assert [(o.id, o.username) for o in orders] == [(1, "bohdan"), (2, "chiara"), (3, "dario")]
        assert check.get(models.IdCounter, "orders").next_id == 4
    finally:
        check.close()
