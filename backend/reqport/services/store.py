"""
Store collaborator: where committed entities end up.

The engine only talks to the four repositories below (``collection``,
``folder``, ``request``, ``env``), each with async ``save`` and ``list``. A
``save`` either returns a SaveResult or raises StoreError; payloads carrying an
``id`` update that row instead of creating one. A failing ``list`` raises
StoreError.

SqlStore persists through a SQLAlchemy session. MemoryStore keeps everything
in dictionaries and records every call, which the engine tests rely on.
"""
import copy
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reqport.core.errors import StoreError
from reqport.models.collection import Collection, Folder
from reqport.models.environment import Environment, EnvironmentVariable
from reqport.models.request import HttpMethod, Request
from reqport.services.ir import AuthType

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    success: bool
    id: str | None = None
    error: str | None = None


class Repository(ABC):
    @abstractmethod
    async def save(self, data: dict[str, Any]) -> SaveResult:
        ...


class CollectionRepository(Repository):
    @abstractmethod
    async def list(self) -> list[dict[str, Any]]:
        ...


class ScopedRepository(Repository):
    """Folders and requests are always listed per collection."""

    @abstractmethod
    async def list(self, collection_id: str) -> list[dict[str, Any]]:
        ...


class EnvironmentRepository(Repository):
    @abstractmethod
    async def list(self) -> list[dict[str, Any]]:
        ...


class Store:
    collection: CollectionRepository
    folder: ScopedRepository
    request: ScopedRepository
    env: EnvironmentRepository


# ────────────────────────────────────────────────────────────
# SQLAlchemy store
# ────────────────────────────────────────────────────────────

def _collection_dict(row: Collection) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "environments": list(row.environments or []),
    }


def _folder_dict(row: Folder) -> dict[str, Any]:
    return {
        "id": row.id,
        "collection_id": row.collection_id,
        "parent_id": row.parent_id,
        "name": row.name,
        "description": row.description,
        "order": row.sort_order,
    }


def _request_dict(row: Request) -> dict[str, Any]:
    return {
        "id": row.id,
        "collection_id": row.collection_id,
        "folder_id": row.folder_id,
        "name": row.name,
        "method": row.method.value if row.method else "GET",
        "url": row.url,
        "headers": dict(row.headers or {}),
        "disabled_headers": dict(row.disabled_headers or {}),
        "body": row.body,
        "body_type": row.body_type or "none",
        "query_params": list(row.query_params or []),
        "auth": {
            "type": row.auth_type.value if row.auth_type else AuthType.NONE.value,
            "config": dict(row.auth_config or {}),
        },
        "description": row.description,
        "order": row.sort_order,
    }


def _environment_dict(row: Environment) -> dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "display_name": row.display_name,
        "variables": {v.key: v.value for v in row.variables},
    }


class _SqlRepository:
    model: type
    label: str

    def __init__(self, db: Session):
        self.db = db

    def _row_for(self, data: dict[str, Any]):
        if data.get("id"):
            return self.db.get(self.model, data["id"])
        row = self.model()
        self.db.add(row)
        return row

    def _commit(self, row) -> SaveResult:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to save %s: %s", self.label, e)
            raise StoreError(f"Failed to save {self.label}: {e}") from e
        return SaveResult(success=True, id=row.id)

    def _missing(self, data: dict[str, Any]) -> SaveResult:
        return SaveResult(success=False, error=f"{self.label.capitalize()} {data['id']} not found")


class SqlCollectionRepository(_SqlRepository, CollectionRepository):
    model = Collection
    label = "collection"

    async def save(self, data: dict[str, Any]) -> SaveResult:
        row = self._row_for(data)
        if row is None:
            return self._missing(data)
        for key in ("name", "description", "environments"):
            if key in data:
                setattr(row, key, data[key])
        return self._commit(row)

    async def list(self) -> list[dict[str, Any]]:
        rows = self.db.execute(select(Collection).order_by(Collection.created_at)).scalars().all()
        return [_collection_dict(r) for r in rows]


class SqlFolderRepository(_SqlRepository, ScopedRepository):
    model = Folder
    label = "folder"

    async def save(self, data: dict[str, Any]) -> SaveResult:
        row = self._row_for(data)
        if row is None:
            return self._missing(data)
        row.collection_id = data["collection_id"]
        row.parent_id = data.get("parent_id")
        row.name = data["name"]
        row.description = data.get("description")
        row.sort_order = data.get("order", 0)
        return self._commit(row)

    async def list(self, collection_id: str) -> list[dict[str, Any]]:
        rows = self.db.execute(
            select(Folder).where(Folder.collection_id == collection_id).order_by(Folder.sort_order)
        ).scalars().all()
        return [_folder_dict(r) for r in rows]


class SqlRequestRepository(_SqlRepository, ScopedRepository):
    model = Request
    label = "request"

    async def save(self, data: dict[str, Any]) -> SaveResult:
        row = self._row_for(data)
        if row is None:
            return self._missing(data)
        auth = data.get("auth") or {}
        row.collection_id = data["collection_id"]
        row.folder_id = data.get("folder_id")
        row.name = data["name"]
        row.method = HttpMethod(data.get("method", "GET"))
        row.url = data.get("url", "")
        row.headers = data.get("headers") or {}
        row.disabled_headers = data.get("disabled_headers") or {}
        row.body = data.get("body")
        row.body_type = data.get("body_type", "none")
        row.query_params = data.get("query_params") or []
        row.auth_type = AuthType(auth.get("type", AuthType.NONE.value))
        row.auth_config = auth.get("config") or {}
        row.description = data.get("description")
        row.sort_order = data.get("order", 0)
        return self._commit(row)

    async def list(self, collection_id: str) -> list[dict[str, Any]]:
        rows = self.db.execute(
            select(Request).where(Request.collection_id == collection_id).order_by(Request.sort_order)
        ).scalars().all()
        return [_request_dict(r) for r in rows]


class SqlEnvironmentRepository(_SqlRepository, EnvironmentRepository):
    model = Environment
    label = "environment"

    async def save(self, data: dict[str, Any]) -> SaveResult:
        row = self._row_for(data)
        if row is None:
            return self._missing(data)
        row.name = data["name"]
        row.display_name = data.get("display_name") or data["name"]
        row.variables.clear()
        for position, (key, value) in enumerate((data.get("variables") or {}).items()):
            row.variables.append(EnvironmentVariable(key=key, value=value, position=position))
        return self._commit(row)

    async def list(self) -> list[dict[str, Any]]:
        try:
            rows = self.db.execute(select(Environment).order_by(Environment.created_at)).scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list environments: %s", e)
            raise StoreError(f"Failed to list environments: {e}") from e
        return [_environment_dict(r) for r in rows]


class SqlStore(Store):
    def __init__(self, db: Session):
        self.collection = SqlCollectionRepository(db)
        self.folder = SqlFolderRepository(db)
        self.request = SqlRequestRepository(db)
        self.env = SqlEnvironmentRepository(db)


# ────────────────────────────────────────────────────────────
# In-memory store
# ────────────────────────────────────────────────────────────

class _MemoryRepository:
    def __init__(self, store: "MemoryStore", kind: str, scoped: bool = False):
        self.store = store
        self.kind = kind
        self.scoped = scoped
        self.rows: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)

    async def save(self, data: dict[str, Any]) -> SaveResult:
        op = f"{self.kind}.save"
        self.store.calls.append((op, copy.deepcopy(data)))
        failure = self.store._failure_for(op)
        if failure == "raise":
            raise StoreError(f"{op} failed")
        if failure == "fail":
            return SaveResult(success=False, error=f"{op} failed")

        row_id = data.get("id")
        if row_id:
            if row_id not in self.rows:
                return SaveResult(success=False, error=f"{self.kind} {row_id} not found")
            self.rows[row_id].update(copy.deepcopy(data))
        else:
            row_id = f"{self.kind}-{next(self._ids)}"
            self.rows[row_id] = {**copy.deepcopy(data), "id": row_id}
        return SaveResult(success=True, id=row_id)

    async def list(self, collection_id: str | None = None) -> list[dict[str, Any]]:
        self.store.calls.append((f"{self.kind}.list", collection_id))
        if self.store._failure_for(f"{self.kind}.list"):
            raise StoreError(f"{self.kind}.list failed")
        rows = self.rows.values()
        if self.scoped:
            rows = [r for r in rows if r.get("collection_id") == collection_id]
        return [copy.deepcopy(r) for r in rows]


class MemoryStore(Store):
    def __init__(self):
        self.calls: list[tuple[str, Any]] = []
        self._failures: dict[str, tuple[int, str]] = {}
        self._op_counts: dict[str, int] = {}
        self.collection = _MemoryRepository(self, "collection")
        self.folder = _MemoryRepository(self, "folder", scoped=True)
        self.request = _MemoryRepository(self, "request", scoped=True)
        self.env = _MemoryRepository(self, "env")

    def fail_on(self, op: str, nth: int = 1, raise_error: bool = False) -> None:
        """Make the nth call to ``op`` (e.g. ``"request.save"``) fail. Failing lists always raise."""
        self._failures[op] = (nth, "raise" if raise_error else "fail")

    def _failure_for(self, op: str) -> str | None:
        self._op_counts[op] = self._op_counts.get(op, 0) + 1
        planned = self._failures.get(op)
        if planned and planned[0] == self._op_counts[op]:
            return planned[1]
        return None

    def saves(self, kind: str | None = None) -> list[dict[str, Any]]:
        return [
            data for op, data in self.calls
            if op.endswith(".save") and (kind is None or op == f"{kind}.save")
        ]
