import logging
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

import config
from errors import ConstraintViolation, StorageTimeout, StorageUnavailable

logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = config.DATABASE_URL

_TIMEOUT_MARKERS = ("timeout", "timed out", "locked", "canceling statement")


def engine_options(url: str, timeout: float = config.DB_TIMEOUT) -> dict:
    """Параметры create_engine: каждое обращение к БД ограничено timeout секундами."""
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False, "timeout": timeout},
        }

    connect_args = {"connect_timeout": max(1, int(timeout))}
    if url.startswith("postgresql"):
        millis = int(timeout * 1000)
        connect_args["options"] = f"-c statement_timeout={millis} -c lock_timeout={millis}"
    return {
        "connect_args": connect_args,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": timeout,
    }


def use_immediate_transactions(sqlite_engine):
    """
    pysqlite сам открывает транзакцию только на первой записи. Его обработка
    транзакций отключается, каждая транзакция начинается с BEGIN IMMEDIATE:
    блокировка записи берется до первого чтения (max(id) в insert).
    """
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


def make_engine(url: str, timeout: float = config.DB_TIMEOUT, **kwargs):
    new_engine = create_engine(url, **engine_options(url, timeout), **kwargs)
    if url.startswith("sqlite"):
        use_immediate_transactions(new_engine)
    return new_engine


def wait_for_db(max_retries=config.DB_CONNECT_RETRIES, retry_interval=config.DB_RETRY_INTERVAL):
    logger.info("Ожидание подключения к базе данных...")

    for attempt in range(max_retries):
        try:
            # Пробуем создать временное подключение
            temp_engine = make_engine(SQLALCHEMY_DATABASE_URL)
            with temp_engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("База данных доступна")
            temp_engine.dispose()
            return True
        except OperationalError as e:
            logger.warning("Попытка %s/%s: база данных еще не доступна: %s", attempt + 1, max_retries, e)
            if attempt < max_retries - 1:
                time.sleep(retry_interval)

    logger.error("Не удалось подключиться к базе данных после всех попыток")
    return False


engine = make_engine(SQLALCHEMY_DATABASE_URL, echo=False)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def translate_error(exc: SQLAlchemyError) -> Exception:
    """Переводит ошибку SQLAlchemy в ошибку хранилища."""
    if isinstance(exc, PoolTimeoutError):
        return StorageTimeout(str(exc))
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if any(marker in message for marker in _TIMEOUT_MARKERS):
            return StorageTimeout(str(exc))
        return StorageUnavailable(str(exc))
    if isinstance(exc, IntegrityError):
        return ConstraintViolation("Record violates a storage constraint")
    return exc


@contextmanager
def transaction(db: Session):
    """
    Граница транзакции для одной логической операции.
    При любой ошибке откатывает сессию; ошибки SQLAlchemy переводятся
    в ошибки хранилища.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        translated = translate_error(e)
        if translated is e:
            raise
        logger.warning("Ошибка хранилища: %s", e)
        raise translated from e
    except Exception:
        db.rollback()
        raise


def init_restaurant_data(session_factory=None):
    """Создает счетчики id для всех коллекций и администратора при первом запуске."""
    from auth import ensure_admin
    from record_store import ensure_counters

    db = (session_factory or SessionLocal)()
    try:
        created = ensure_counters(db)
        if created:
            logger.info("Созданы счетчики id: %s", ", ".join(created))
        ensure_admin(db)
    except Exception:
        logger.exception("Ошибка при инициализации данных ресторана")
        db.rollback()
        raise
    finally:
        db.close()
