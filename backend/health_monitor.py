import os
import time
import logging
from typing import Dict, Tuple

import redis
import requests
from sqlalchemy import text

import config
from database import make_engine

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("HealthMonitor")


BACKEND_API_URL = os.getenv("BACKEND_API_URL", f"http://localhost:{config.PORT}")
CHECK_INTERVAL = int(os.getenv("HEALTH_CHECK_INTERVAL", "60"))


def check_http_service(name: str, url: str, timeout: float = 5.0) -> Tuple[bool, str]:
    try:
        resp = requests.get(url, timeout=timeout)
        if resp.ok:
            return True, f"{name}: OK ({resp.status_code})"
        return False, f"{name}: FAIL ({resp.status_code})"
    except requests.RequestException as e:
        return False, f"{name}: ERROR ({e})"


def check_backend_api() -> Tuple[bool, str]:
    return check_http_service("backend-api /health", f"{BACKEND_API_URL}/health")


def check_menu() -> Tuple[bool, str]:
    return check_http_service("backend-api /menu", f"{BACKEND_API_URL}/menu")


def check_database() -> Tuple[bool, str]:
    try:
        probe = make_engine(config.DATABASE_URL)
        try:
            with probe.connect() as conn:
                conn.execute(text("SELECT 1"))
        finally:
            probe.dispose()
        return True, "database: OK"
    except Exception as e:
        return False, f"database: ERROR ({e})"


def check_redis() -> Tuple[bool, str]:
    if not config.CACHE_ENABLED:
        return True, "redis: DISABLED"
    try:
        r = redis.Redis(host=config.REDIS_HOST, port=int(str(config.REDIS_PORT).split(":")[-1]),
                        decode_responses=True, socket_connect_timeout=5)
        r.ping()
        return True, "redis: OK"
    except redis.RedisError as e:
        return False, f"redis: ERROR ({e})"


def monitor_all_services(checks=None) -> Dict[str, bool]:
    checks = checks or {
        "backend_api": check_backend_api,
        "menu": check_menu,
        "database": check_database,
        "redis": check_redis,
    }

    results: Dict[str, bool] = {}
    logger.info("=" * 60)
    logger.info("Health check results:")

    for name, func in checks.items():
        ok, message = func()
        results[name] = ok
        if ok:
            logger.info(f"[OK ] {message}")
        else:
            logger.warning(f"[FAIL] {message}")

    logger.info("=" * 60)
    return results


if __name__ == "__main__":
    logger.info("Health Monitor Service Started")
    logger.info("Waiting 15 seconds before first check to let services start...")
    time.sleep(15)

    logger.info(f"Starting monitoring services every {CHECK_INTERVAL} seconds...")

    while True:
        try:
            monitor_all_services()
        except Exception as e:
            logger.error(f"Error during monitoring: {e}")
        logger.info(f"Next check in {CHECK_INTERVAL} seconds...")
        time.sleep(CHECK_INTERVAL)
