"""
Commits a resolved IR to the Store in dependency order.

Stages run strictly one after another: collection, folders (top-down),
requests, environments. Every write waits for the previous one. The first
failed write stops the run; what was already written stays written and is
reported on the ExecutionError.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable

from reqport.core.errors import ConflictUnresolvedError, ExecutionError, StoreError
from reqport.services.conflicts import ConflictResolver, ResolutionPlan, unique_name
from reqport.services.ir import CanonicalRequest, ImportIR, ImportWarning
from reqport.services.store import SaveResult, Store
from reqport.services.tree_builder import folders_top_down, resolve_folder_parents

logger = logging.getLogger(__name__)


class EnvironmentMode(str, Enum):
    COLLECTION = "collection"
    GLOBAL = "global"
    SKIP = "skip"


class DuplicateHandling(str, Enum):
    RENAME = "rename"
    REPLACE = "replace"
    CANCEL = "cancel"


@dataclass
class ImportOptions:
    environment_mode: EnvironmentMode = EnvironmentMode.COLLECTION
    duplicate_handling: DuplicateHandling = DuplicateHandling.RENAME
    include_disabled: bool = False


@dataclass
class ExecutionResult:
    collection_id: str | None = None
    folder_count: int = 0
    request_count: int = 0
    environment_count: int = 0
    warnings: list[ImportWarning] = field(default_factory=list)


def _request_payload(
    request: CanonicalRequest,
    collection_id: str,
    folder_id: str | None,
    include_disabled: bool,
) -> dict[str, Any]:
    params = request.query_params if include_disabled else [p for p in request.query_params if p.enabled]
    return {
        "collection_id": collection_id,
        "folder_id": folder_id,
        "name": request.name,
        "method": request.method,
        "url": request.url,
        "headers": dict(request.headers),
        "disabled_headers": dict(request.disabled_headers) if include_disabled else {},
        "body": request.body,
        "body_type": request.body_type,
        "query_params": [{"key": p.key, "value": p.value, "enabled": p.enabled} for p in params],
        "auth": {"type": request.auth.type.value, "config": dict(request.auth.config)},
        "description": request.description,
        "order": request.order,
    }


class ImportExecutor:
    def __init__(self, store: Store, options: ImportOptions | None = None):
        self.store = store
        self.options = options or ImportOptions()
        self._committed = {"collections": 0, "folders": 0, "requests": 0, "environments": 0}

    async def execute(self, ir: ImportIR, resolver: ConflictResolver | None = None) -> ExecutionResult:
        mode = self.options.environment_mode
        result = ExecutionResult()

        if mode == EnvironmentMode.COLLECTION and ir.collection is None and ir.environments:
            result.warnings.append(
                ImportWarning(
                    "ENVIRONMENT_MODE_FALLBACK",
                    "Document has no collection; environments were imported as global environments",
                )
            )
            mode = EnvironmentMode.GLOBAL

        # Nothing may be written while a conflict is undecided
        plan = None
        if mode == EnvironmentMode.GLOBAL and ir.environments:
            if resolver is None:
                existing = await self._call("environments", self.store.env.list())
                resolver = ConflictResolver(ir.environments, existing)
            if not resolver.all_conflicts_resolved():
                raise ConflictUnresolvedError(resolver.unresolved())
            plan = resolver.resolve()
            result.warnings.extend(plan.warnings)

        if ir.collection is not None:
            result.collection_id = await self._commit_collection(ir, result)
            await self._commit_folders_and_requests(ir, result)

        if ir.environments:
            if mode == EnvironmentMode.SKIP:
                logger.info("Skipping %d environments", len(ir.environments))
            elif mode == EnvironmentMode.COLLECTION:
                await self._attach_to_collection(ir, result)
            else:
                await self._commit_global(plan, result)

        logger.info(
            "Import committed: collection=%s folders=%d requests=%d environments=%d",
            result.collection_id,
            result.folder_count,
            result.request_count,
            result.environment_count,
        )
        return result

    async def _call(self, stage: str, pending: Awaitable) -> Any:
        try:
            return await pending
        except StoreError as e:
            logger.error("Store call failed during %s: %s", stage, e)
            raise ExecutionError(stage, str(e), dict(self._committed)) from e

    async def _save(self, stage: str, repo_save: Awaitable[SaveResult]) -> str:
        saved = await self._call(stage, repo_save)
        if not saved.success or not saved.id:
            reason = saved.error or "store rejected the save"
            logger.error("Save rejected during %s: %s", stage, reason)
            raise ExecutionError(stage, reason, dict(self._committed))
        return saved.id

    async def _commit_collection(self, ir: ImportIR, result: ExecutionResult) -> str:
        collection = ir.collection
        existing = await self._call("collection", self.store.collection.list())
        by_name = {row["name"]: row for row in existing}

        payload: dict[str, Any] = {"name": collection.name, "description": collection.description}
        handling = self.options.duplicate_handling
        if collection.name in by_name:
            if handling == DuplicateHandling.CANCEL:
                raise ExecutionError(
                    "collection",
                    f'A collection named "{collection.name}" already exists',
                    dict(self._committed),
                )
            if handling == DuplicateHandling.REPLACE:
                payload["id"] = by_name[collection.name]["id"]
            else:
                payload["name"] = unique_name(collection.name, set(by_name))
                result.warnings.append(
                    ImportWarning(
                        "COLLECTION_RENAMED",
                        f'Collection "{collection.name}" already exists; imported as "{payload["name"]}"',
                        collection.name,
                    )
                )

        collection_id = await self._save("collection", self.store.collection.save(payload))
        self._committed["collections"] += 1
        return collection_id

    async def _commit_folders_and_requests(self, ir: ImportIR, result: ExecutionResult) -> None:
        resolution = resolve_folder_parents(ir.folders)
        result.warnings.extend(resolution.warnings)

        persisted: dict[str, str] = {}
        # A folder is submitted only once its parent's persisted id is known
        for level in folders_top_down(ir.folders, resolution.parents):
            for folder in level:
                parent_temp_id = resolution.parents[folder.temp_id]
                folder_id = await self._save(
                    "folders",
                    self.store.folder.save(
                        {
                            "collection_id": result.collection_id,
                            "parent_id": persisted[parent_temp_id] if parent_temp_id else None,
                            "name": folder.name,
                            "description": folder.description,
                            "order": folder.order,
                        }
                    ),
                )
                persisted[folder.temp_id] = folder_id
                self._committed["folders"] += 1
                result.folder_count += 1

        for request in ir.requests:
            folder_id = persisted.get(request.folder_temp_id) if request.folder_temp_id else None
            payload = _request_payload(request, result.collection_id, folder_id, self.options.include_disabled)
            await self._save("requests", self.store.request.save(payload))
            self._committed["requests"] += 1
            result.request_count += 1

    async def _attach_to_collection(self, ir: ImportIR, result: ExecutionResult) -> None:
        # Collection-scoped names only have to be unique within this batch
        resolver = ConflictResolver(ir.environments, [])
        plan = resolver.resolve()
        result.warnings.extend(plan.warnings)
        environments = [
            {
                "name": item.environment.name,
                "display_name": item.environment.display_name,
                "variables": dict(item.environment.variables),
            }
            for item in plan.environments
        ]
        await self._save(
            "environments",
            self.store.collection.save({"id": result.collection_id, "environments": environments}),
        )
        self._committed["environments"] += len(environments)
        result.environment_count = len(environments)

    async def _commit_global(self, plan: ResolutionPlan, result: ExecutionResult) -> None:
        for item in plan.environments:
            env = item.environment
            payload: dict[str, Any] = {
                "name": env.name,
                "display_name": env.display_name,
                "variables": dict(env.variables),
            }
            if item.existing_id:
                payload["id"] = item.existing_id
            await self._save("environments", self.store.env.save(payload))
            self._committed["environments"] += 1
            result.environment_count += 1
