"""Dependency graph and deterministic ordering of schema differences.

Each difference references the objects it needs (a trigger needs its table
and its function, a foreign key needs the referenced table). The graph turns
those references into ordering edges and produces a topological order with a
stable tie-break, so the same diff always yields the same priorities.
"""

from collections import defaultdict
from dataclasses import dataclass
import heapq

from ..core.logging import get_logger
from .diff import SchemaDifference
from .types import DiffAction, ObjectType

logger = get_logger(__name__)

# Tie-break order among differences that are ready at the same time
CATEGORY_RANK = {
    ObjectType.TABLE: 0,
    ObjectType.FUNCTION: 1,
    ObjectType.INDEX: 2,
    ObjectType.TRIGGER: 3,
    ObjectType.POLICY: 4,
    ObjectType.EXTENSION: 5,
}
ACTION_RANK = {DiffAction.DROP: 0, DiffAction.CREATE: 1, DiffAction.ALTER: 2}


@dataclass(frozen=True)
class DependencyRef:
    """A typed reference to an object, so equal names in different categories never collide."""

    object_type: ObjectType
    name: str


def provided_ref(difference: SchemaDifference) -> DependencyRef:
    """The reference under which other differences can depend on this one."""
    if difference.object_type in (ObjectType.TABLE, ObjectType.FUNCTION):
        return DependencyRef(
            difference.object_type, f"{difference.schema_name}.{difference.object_name}"
        )
    if difference.object_type == ObjectType.EXTENSION:
        return DependencyRef(ObjectType.EXTENSION, difference.object_name)
    return DependencyRef(difference.object_type, difference.qualified_name)


def tie_break_key(difference: SchemaDifference) -> tuple[int, str, int]:
    return (
        CATEGORY_RANK[difference.object_type],
        difference.qualified_name,
        ACTION_RANK[difference.action],
    )


class DependencyGraph:
    """Ordering constraints between the differences of one diff.

    Edge rules, for a difference B that references the object of A:

    - B and A both create/alter: A runs first.
    - B is a drop: B runs first (dependents are dropped before what they need).

    Extension creates and alters run before every other create/alter, and
    extension drops after every other drop.
    """

    def __init__(
        self,
        differences: list[SchemaDifference],
        references: dict[int, list[DependencyRef]],
    ):
        """Build the graph.

        Args:
            differences: Differences to order
            references: Typed references per difference, keyed by list position
        """
        self.differences = differences
        self._successors: dict[int, set[int]] = defaultdict(set)
        self._indegree = [0] * len(differences)
        self.cycles: list[list[str]] = []

        providers: dict[DependencyRef, list[int]] = defaultdict(list)
        for index, difference in enumerate(differences):
            providers[provided_ref(difference)].append(index)

        for index, difference in enumerate(differences):
            for ref in references.get(index, []):
                for provider in providers.get(ref, []):
                    if provider == index:
                        continue
                    if difference.action == DiffAction.DROP:
                        self._add_edge(index, provider)
                    elif differences[provider].action != DiffAction.DROP:
                        self._add_edge(provider, index)

        self._add_extension_edges()

    def _add_edge(self, before: int, after: int) -> None:
        if after not in self._successors[before]:
            self._successors[before].add(after)
            self._indegree[after] += 1

    def _add_extension_edges(self) -> None:
        extensions = [
            i
            for i, d in enumerate(self.differences)
            if d.object_type == ObjectType.EXTENSION
        ]
        others = [
            i
            for i, d in enumerate(self.differences)
            if d.object_type != ObjectType.EXTENSION
        ]
        for ext in extensions:
            ext_is_drop = self.differences[ext].action == DiffAction.DROP
            for other in others:
                other_is_drop = self.differences[other].action == DiffAction.DROP
                if ext_is_drop and other_is_drop:
                    self._add_edge(other, ext)
                elif not ext_is_drop and not other_is_drop:
                    self._add_edge(ext, other)

    def order(self) -> list[SchemaDifference]:
        """Return the differences in dependency order.

        Uses Kahn's algorithm with a min-heap keyed by :func:`tie_break_key`.
        When only nodes inside a cycle remain, the smallest of them by the
        tie-break key is released, and the stalled group is recorded in
        :attr:`cycles`.
        """
        indegree = list(self._indegree)
        keyed = [(tie_break_key(d), i) for i, d in enumerate(self.differences)]
        heap = [entry for entry in keyed if indegree[entry[1]] == 0]
        heapq.heapify(heap)
        emitted: set[int] = set()
        ordered: list[SchemaDifference] = []
        self.cycles = []

        while len(emitted) < len(self.differences):
            if not heap:
                stalled = sorted(keyed[i] for i in self._cyclic_nodes(emitted))
                self.cycles.append(
                    [self.differences[i].qualified_name for _, i in stalled]
                )
                logger.warning(
                    "Dependency cycle detected, breaking by tie-break order",
                    objects=self.cycles[-1],
                )
                released = stalled[0]
                indegree[released[1]] = 0
                heapq.heappush(heap, released)

            _, index = heapq.heappop(heap)
            if index in emitted:
                continue
            emitted.add(index)
            ordered.append(self.differences[index])

            for successor in sorted(self._successors.get(index, ())):
                if successor in emitted:
                    continue
                indegree[successor] -= 1
                if indegree[successor] == 0:
                    heapq.heappush(heap, keyed[successor])

        return ordered

    def _cyclic_nodes(self, emitted: set[int]) -> set[int]:
        """Remaining nodes that lie on (or between) cycles.

        Nodes merely downstream of a cycle are pruned by repeatedly removing
        nodes with no remaining successors.
        """
        remaining = {i for i in range(len(self.differences)) if i not in emitted}
        changed = True
        while changed:
            changed = False
            for node in list(remaining):
                if not self._successors.get(node, set()) & remaining:
                    remaining.discard(node)
                    changed = True
        return remaining
