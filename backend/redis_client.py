"""
Модуль для работы с Redis: кеширование меню и категорий, rate limiting
"""
import json
import logging
import redis
from typing import Optional, List, Dict, Any, Tuple
from fastapi import HTTPException, Request, status

import config

logger = logging.getLogger(__name__)

MENU_KEY_PREFIX = "menu:"
CATEGORIES_KEY = "categories:all"


class RedisClient:
    """Класс для работы с Redis"""

    def __init__(self, enabled: bool = config.CACHE_ENABLED):
        """Инициализация подключения к Redis"""
        self.redis_host = config.REDIS_HOST
        self.redis_port = int(str(config.REDIS_PORT).split(":")[-1])
        self.client = None

        if not enabled:
            logger.info("Кеширование отключено (CACHE_ENABLED=false)")
            return

        try:
            self.client = redis.Redis(
                host=self.redis_host,
                port=self.redis_port,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            # Проверяем подключение
            self.client.ping()
        except redis.RedisError as e:
            logger.warning("Не удалось подключиться к Redis: %s", e)
            self.client = None

    def is_available(self) -> bool:
        """Проверка доступности Redis"""
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Кеширование меню ==========

    @staticmethod
    def menu_key(category_id: Optional[int] = None) -> str:
        return f"{MENU_KEY_PREFIX}{'all' if category_id is None else category_id}"

    def cache_menu(self, menu: List[Dict], category_id: Optional[int] = None,
                   ttl: int = config.MENU_CACHE_TTL) -> bool:
        """
        Кеширует собранное меню (блюда с названием категории)
        ttl: время жизни кеша в секундах
        """
        if not self.is_available():
            return False
        try:
            self.client.setex(self.menu_key(category_id), ttl, json.dumps(menu, default=str))
            return True
        except redis.RedisError as e:
            logger.warning("Ошибка кеширования меню: %s", e)
            return False

    def get_cached_menu(self, category_id: Optional[int] = None) -> Optional[List[Dict]]:
        """Получает меню из кеша"""
        if not self.is_available():
            return None
        try:
            cached = self.client.get(self.menu_key(category_id))
            if cached is not None:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning("Ошибка получения меню из кеша: %s", e)
        return None

    def invalidate_menu_cache(self) -> bool:
        """Удаляет кеш меню (при создании/обновлении/удалении блюда или категории)"""
        if not self.is_available():
            return False
        try:
            keys = self.client.keys(f"{MENU_KEY_PREFIX}*")
            if keys:
                self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.warning("Ошибка инвалидации кеша меню: %s", e)
            return False

    # ========== Кеширование категорий ==========

    def cache_categories(self, categories: List[Dict], ttl: int = config.MENU_CACHE_TTL) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.setex(CATEGORIES_KEY, ttl, json.dumps(categories, default=str))
            return True
        except redis.RedisError as e:
            logger.warning("Ошибка кеширования категорий: %s", e)
            return False

    def get_cached_categories(self) -> Optional[List[Dict]]:
        if not self.is_available():
            return None
        try:
            cached = self.client.get(CATEGORIES_KEY)
            if cached is not None:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning("Ошибка получения категорий из кеша: %s", e)
        return None

    def invalidate_categories_cache(self) -> bool:
        """Категории входят в меню, поэтому сбрасывается и кеш меню"""
        if not self.is_available():
            return False
        try:
            self.client.delete(CATEGORIES_KEY)
        except redis.RedisError as e:
            logger.warning("Ошибка инвалидации кеша категорий: %s", e)
            return False
        return self.invalidate_menu_cache()

    # ========== Rate Limiting ==========

    def check_rate_limit(self, key: str, max_requests: int = 10, window: int = 60) -> Tuple[bool, int]:
        """
        Проверяет rate limit для ключа
        Возвращает (разрешено, оставшееся количество запросов)
        """
        if not self.is_available():
            return True, max_requests  # Если Redis недоступен, разрешаем запрос

        try:
            current = self.client.incr(key)
            if current == 1:
                # Первый запрос в окне - устанавливаем TTL
                self.client.expire(key, window)

            remaining = max(0, max_requests - current)
            allowed = current <= max_requests

            return allowed, remaining
        except redis.RedisError as e:
            logger.warning("Ошибка проверки rate limit: %s", e)
            return True, max_requests  # При ошибке разрешаем запрос

    # ========== Утилиты ==========

    def get_cache_info(self) -> Dict[str, Any]:
        """Возвращает информацию о кеше"""
        if not self.is_available():
            return {"status": "unavailable"}

        try:
            return {
                "status": "available",
                "menu_cached": self.client.exists(self.menu_key()),
                "menu_keys_count": len(self.client.keys(f"{MENU_KEY_PREFIX}*")),
                "categories_cached": self.client.exists(CATEGORIES_KEY),
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}


# Глобальный экземпляр клиента Redis
redis_client = RedisClient()


# ========== Rate limiting как зависимость FastAPI ==========

def rate_limit(max_requests: int = config.RATE_LIMIT_REQUESTS,
               window: int = config.RATE_LIMIT_WINDOW,
               key_prefix: str = "rate_limit"):
    """
    Зависимость для rate limiting: Depends(rate_limit(...))
    max_requests: максимальное количество запросов
    window: окно времени в секундах
    key_prefix: префикс для ключа в Redis
    """
    def dependency(request: Request):
        client_host = request.client.host if request.client else "unknown"
        rate_key = f"{key_prefix}:{request.url.path}:{client_host}"

        allowed, remaining = redis_client.check_rate_limit(rate_key, max_requests, window)
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Try again in {window} seconds."
            )
        return remaining

    return dependency
