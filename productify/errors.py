"""Error taxonomy shared by the services and the HTTP boundary.

Services raise these; ``productify.main`` maps them onto status codes.
``StorageError`` wraps driver failures so nothing internal leaks to clients.
"""

from __future__ import annotations


class EngineError(Exception):
    status_code = 500
    public_detail: str | None = None

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail

    def client_detail(self) -> str:
        return self.public_detail or self.detail or self.__class__.__name__


class NotFound(EngineError):
    status_code = 404

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found")
        self.kind = kind
        self.entity_id = entity_id


class ValidationError(EngineError, ValueError):
    status_code = 400


class ConflictError(EngineError):
    status_code = 409


class StorageError(EngineError):
    status_code = 503
    public_detail = "Storage error"
