from passlib.context import CryptContext
import jwt
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
import logging
import secrets
import os

import config
import record_store

logger = logging.getLogger(__name__)

# Используем другую схему если bcrypt не доступен
try:
    pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)
    # Проверим работу bcrypt
    pwd_context.hash("test")
    logger.info("bcrypt успешно инициализирован")
except Exception as e:
    logger.warning("bcrypt не доступен: %s, используем pbkdf2_sha256", e)
    pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_secret_key():
    if config.SECRET_KEY:
        return config.SECRET_KEY

    key_file = config.SECRET_KEY_FILE
    if os.path.exists(key_file):
        try:
            with open(key_file, "r", encoding='utf-8') as f:
                return f.read().strip()
        except UnicodeDecodeError:
            # Если файл в неправильной кодировке, создаем новый
            logger.warning("Ошибка чтения секретного ключа, создаем новый")
            os.remove(key_file)

    new_key = secrets.token_urlsafe(32)
    with open(key_file, "w", encoding='utf-8') as f:
        f.write(new_key)
    if os.name != 'nt':
        os.chmod(key_file, 0o600)
    logger.info("Сгенерирован новый SECRET_KEY")
    return new_key


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = config.ACCESS_TOKEN_EXPIRE_MINUTES


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def register_user(db: Session, username: str, password: str, role: str = "user"):
    """Хэширует пароль и сохраняет пользователя; занятое имя -> DuplicateKey."""
    return record_store.insert(db, "users", {
        "username": username,
        "password": get_password_hash(password),
        "role": role,
    })


def authenticate_user(db: Session, username: str, password: str):
    from models import User
    user = db.query(User).filter(User.username == username).first()
    if not user or not verify_password(password, user.password):
        return None
    return user


def ensure_admin(db: Session):
    """Создает администратора при первом запуске, если его еще нет."""
    from models import User
    admin = db.query(User).filter(User.username == config.ADMIN_USERNAME).first()
    if admin:
        logger.info("Администратор %s уже существует", config.ADMIN_USERNAME)
        return admin

    admin = register_user(db, config.ADMIN_USERNAME, config.ADMIN_PASSWORD, role="admin")
    logger.info("Создан администратор %s", config.ADMIN_USERNAME)
    return admin


def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def verify_token(token: str):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
