"""
Name-collision detection between incoming and existing environments.

Environments are matched on their stable ``name``, never on the display name.
Every conflict needs an operator decision before the batch can be committed.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

from reqport.core.errors import ConflictUnresolvedError
from reqport.services.ir import CanonicalEnvironment, ImportWarning

logger = logging.getLogger(__name__)

RENAME_SUFFIX = "_imported"
RENAMED_DISPLAY_SUFFIX = " (Imported)"


class Resolution(str, Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"


@dataclass
class ConflictRecord:
    entity_name: str
    existing_id: str
    incoming: CanonicalEnvironment


@dataclass
class ResolvedEnvironment:
    environment: CanonicalEnvironment
    # Set when the save must overwrite an existing row
    existing_id: str | None = None
    renamed_from: str | None = None


@dataclass
class ResolutionPlan:
    environments: list[ResolvedEnvironment] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    warnings: list[ImportWarning] = field(default_factory=list)


def unique_name(base: str, taken: set[str]) -> str:
    """``{base}_imported``, then ``{base}_imported_1``, ``_2``, ... until free."""
    candidate = f"{base}{RENAME_SUFFIX}"
    counter = 1
    while candidate in taken:
        candidate = f"{base}{RENAME_SUFFIX}_{counter}"
        counter += 1
    return candidate


class ConflictResolver:
    def __init__(self, incoming: list[CanonicalEnvironment], existing: list[Mapping[str, Any]]):
        self.incoming = list(incoming)
        self.existing_ids: dict[str, str] = {}
        for row in existing:
            self.existing_ids.setdefault(row["name"], str(row["id"]))
        self.decisions: dict[str, Resolution] = {}
        self.conflicts = self._detect()

    def _detect(self) -> list[ConflictRecord]:
        records: list[ConflictRecord] = []
        seen: set[str] = set()
        for env in self.incoming:
            if env.name in self.existing_ids and env.name not in seen:
                seen.add(env.name)
                records.append(ConflictRecord(env.name, self.existing_ids[env.name], env))
        return records

    def decide(self, name: str, resolution: Resolution | str) -> None:
        if not any(c.entity_name == name for c in self.conflicts):
            raise KeyError(name)
        self.decisions[name] = Resolution(resolution)

    def unresolved(self) -> list[str]:
        return [c.entity_name for c in self.conflicts if c.entity_name not in self.decisions]

    def all_conflicts_resolved(self) -> bool:
        return not self.unresolved()

    def carry_decisions(self, previous: dict[str, Resolution]) -> None:
        """Reapply earlier decisions for names that still conflict."""
        names = {c.entity_name for c in self.conflicts}
        for name, resolution in previous.items():
            if name in names:
                self.decisions[name] = resolution

    def resolve(self) -> ResolutionPlan:
        unresolved = self.unresolved()
        if unresolved:
            raise ConflictUnresolvedError(unresolved)

        plan = ResolutionPlan()
        taken = set(self.existing_ids)
        # Non-conflicting names are reserved before any rename is tried
        for env in self.incoming:
            if env.name not in self.existing_ids:
                taken.add(env.name)

        handled: set[str] = set()
        for env in self.incoming:
            # A skip decision covers every incoming environment with that name
            if self.decisions.get(env.name) == Resolution.SKIP:
                plan.skipped.append(env.name)
                continue
            if env.name in handled:
                new_name = unique_name(env.name, taken)
                taken.add(new_name)
                plan.warnings.append(
                    ImportWarning(
                        "DUPLICATE_IN_BATCH",
                        f'Environment "{env.name}" appears more than once; renamed to "{new_name}"',
                        env.name,
                    )
                )
                plan.environments.append(self._renamed(env, new_name))
                continue
            handled.add(env.name)

            decision = self.decisions.get(env.name)
            if decision is None:
                plan.environments.append(ResolvedEnvironment(env))
            elif decision == Resolution.OVERWRITE:
                plan.environments.append(ResolvedEnvironment(env, existing_id=self.existing_ids[env.name]))
            else:
                new_name = unique_name(env.name, taken)
                taken.add(new_name)
                plan.environments.append(self._renamed(env, new_name))

        logger.info(
            "Resolved %d environments (%d conflicts, %d skipped)",
            len(plan.environments),
            len(self.conflicts),
            len(plan.skipped),
        )
        return plan

    @staticmethod
    def _renamed(env: CanonicalEnvironment, new_name: str) -> ResolvedEnvironment:
        renamed = replace(
            env,
            name=new_name,
            display_name=f"{env.display_name}{RENAMED_DISPLAY_SUFFIX}",
            variables=dict(env.variables),
        )
        return ResolvedEnvironment(renamed, renamed_from=env.name)
