"""
Rebuilds the folder/request hierarchy from flat parent-pointer lists.

Folders live in an arena addressed by list index; ``temp_id`` is looked up
once. Bad references never drop data: an unknown parent puts the folder at the
root, and a folder whose parent chain leads back to itself is cut loose at the
root. Either case produces one warning.
"""
import logging
from dataclasses import dataclass, field

from reqport.services.ir import (
    CanonicalCollection,
    CanonicalFolder,
    CanonicalRequest,
    ImportWarning,
)

logger = logging.getLogger(__name__)


@dataclass
class TreeNode:
    kind: str
    name: str
    temp_id: str | None = None
    method: str | None = None
    url: str | None = None
    children: list["TreeNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        data: dict = {"kind": self.kind, "name": self.name, "temp_id": self.temp_id}
        if self.kind == "request":
            data["method"] = self.method
            data["url"] = self.url
        else:
            data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class FolderResolution:
    """Cycle-free parent mapping: temp_id -> parent temp_id (None = root)."""

    parents: dict[str, str | None]
    warnings: list[ImportWarning] = field(default_factory=list)


@dataclass
class TreeBuildResult:
    root: TreeNode
    warnings: list[ImportWarning] = field(default_factory=list)


def resolve_folder_parents(folders: list[CanonicalFolder]) -> FolderResolution:
    index: dict[str, int] = {}
    for i, folder in enumerate(folders):
        index.setdefault(folder.temp_id, i)

    declared: list[int | None] = [index.get(f.parent_temp_id) if f.parent_temp_id else None for f in folders]
    resolved: list[int | None] = [None] * len(folders)
    warnings: list[ImportWarning] = []

    def parent_of(j: int, current: int) -> int | None:
        # Folders before `current` are final; later ones still carry their declared parent
        return resolved[j] if j < current else declared[j]

    for i, folder in enumerate(folders):
        ref = folder.parent_temp_id
        if ref is None:
            continue
        p = index.get(ref)
        if p is None:
            warnings.append(
                ImportWarning(
                    "ORPHANED_FOLDER",
                    f'Folder "{folder.name}" references an unknown parent; moved to the root',
                    folder.name,
                )
            )
            continue

        visited: set[int] = set()
        node: int | None = p
        cycle = False
        while node is not None:
            if node == i:
                cycle = True
                break
            if node in visited:
                # A cycle that does not pass through this folder; it is cut
                # when one of its own members is processed
                break
            visited.add(node)
            node = parent_of(node, i)

        if cycle:
            warnings.append(
                ImportWarning(
                    "CYCLE_BROKEN",
                    f'Folder "{folder.name}" is part of a parent cycle; moved to the root',
                    folder.name,
                )
            )
            continue
        resolved[i] = p

    parents = {
        folder.temp_id: folders[resolved[i]].temp_id if resolved[i] is not None else None
        for i, folder in enumerate(folders)
        if index[folder.temp_id] == i
    }
    return FolderResolution(parents=parents, warnings=warnings)


def folders_top_down(folders: list[CanonicalFolder], parents: dict[str, str | None]) -> list[list[CanonicalFolder]]:
    """Group folders into breadth-first levels: roots first, then their children, ..."""
    children: dict[str | None, list[CanonicalFolder]] = {}
    for folder in folders:
        if folder.temp_id in parents:
            children.setdefault(parents[folder.temp_id], []).append(folder)

    levels: list[list[CanonicalFolder]] = []
    frontier = sorted(children.get(None, []), key=lambda f: f.order)
    while frontier:
        levels.append(frontier)
        next_level: list[CanonicalFolder] = []
        for folder in frontier:
            next_level.extend(sorted(children.get(folder.temp_id, []), key=lambda f: f.order))
        frontier = next_level
    return levels


def build_tree(
    collection: CanonicalCollection | None,
    folders: list[CanonicalFolder],
    requests: list[CanonicalRequest],
) -> TreeBuildResult:
    resolution = resolve_folder_parents(folders)
    warnings = list(resolution.warnings)

    root = TreeNode(kind="collection", name=collection.name if collection else "")
    nodes: dict[str, TreeNode] = {}
    # (order, folders before requests, array index) for each node
    sort_keys: dict[int, tuple[int, int, int]] = {}

    for i, folder in enumerate(folders):
        if folder.temp_id in nodes:
            continue
        node = TreeNode(kind="folder", name=folder.name, temp_id=folder.temp_id)
        nodes[folder.temp_id] = node
        sort_keys[id(node)] = (folder.order, 0, i)

    for temp_id, node in nodes.items():
        parent_id = resolution.parents[temp_id]
        parent = nodes[parent_id] if parent_id else root
        parent.children.append(node)

    for i, request in enumerate(requests):
        node = TreeNode(
            kind="request",
            name=request.name,
            temp_id=request.temp_id,
            method=request.method,
            url=request.url,
        )
        sort_keys[id(node)] = (request.order, 1, i)
        parent = root
        if request.folder_temp_id is not None:
            if request.folder_temp_id in nodes:
                parent = nodes[request.folder_temp_id]
            else:
                warnings.append(
                    ImportWarning(
                        "ORPHANED_REQUEST",
                        f'Request "{request.name}" references an unknown folder; moved to the root',
                        request.name,
                    )
                )
        parent.children.append(node)

    # Iterative so that deep trees do not hit the recursion limit
    stack = [root]
    while stack:
        node = stack.pop()
        node.children.sort(key=lambda child: sort_keys[id(child)])
        stack.extend(child for child in node.children if child.kind == "folder")

    if warnings:
        logger.info("Tree built with %d structural warnings", len(warnings))
    return TreeBuildResult(root=root, warnings=warnings)
