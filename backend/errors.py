"""
Ошибки хранилища записей.

Каждая ошибка знает свой HTTP-статус и сообщение, которое можно показать
клиенту. Для внутренних сбоев сообщение общее, детали уходят только в лог.
"""

INTERNAL_ERROR_MESSAGE = "Internal server error"


class StoreError(Exception):
    status_code = 500
    public = False

    def __init__(self, message: str = INTERNAL_ERROR_MESSAGE):
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        return self.message if self.public else INTERNAL_ERROR_MESSAGE


class NotFound(StoreError):
    status_code = 404
    public = True


class ConstraintViolation(StoreError):
    status_code = 400
    public = True


class DuplicateKey(StoreError):
    # Клиент получает 200 с success=false
    status_code = 200
    public = True


class CompactionFailed(StoreError):
    status_code = 500


class StorageTimeout(StoreError):
    status_code = 504


class StorageUnavailable(StoreError):
    status_code = 503
