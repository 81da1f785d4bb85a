"""Duration estimates for migration operations.

The generator only guarantees that a script's estimate is the sum of its
operations' estimates; how each operation is costed is pluggable.
"""

from collections.abc import Mapping
import math
from typing import TYPE_CHECKING, Protocol

from .diff import SchemaDifference
from .types import DiffAction, ObjectType

if TYPE_CHECKING:
    from .script import MigrationGeneratorOptions


class CostModel(Protocol):
    """Estimates how long applying a difference takes, in milliseconds."""

    def estimate(
        self,
        difference: SchemaDifference,
        options: "MigrationGeneratorOptions",
        row_count: int | None = None,
    ) -> int: ...


# Flat base costs in milliseconds
BASE_COSTS: Mapping[tuple[ObjectType, DiffAction], int] = {
    (ObjectType.TABLE, DiffAction.CREATE): 3000,
    (ObjectType.TABLE, DiffAction.ALTER): 5000,
    (ObjectType.TABLE, DiffAction.DROP): 1000,
    (ObjectType.FUNCTION, DiffAction.CREATE): 1000,
    (ObjectType.FUNCTION, DiffAction.ALTER): 1000,
    (ObjectType.FUNCTION, DiffAction.DROP): 1000,
    (ObjectType.TRIGGER, DiffAction.CREATE): 500,
    (ObjectType.TRIGGER, DiffAction.ALTER): 1000,
    (ObjectType.TRIGGER, DiffAction.DROP): 500,
    (ObjectType.INDEX, DiffAction.CREATE): 3000,
    (ObjectType.INDEX, DiffAction.ALTER): 4000,
    (ObjectType.INDEX, DiffAction.DROP): 1000,
    (ObjectType.POLICY, DiffAction.CREATE): 500,
    (ObjectType.POLICY, DiffAction.ALTER): 1000,
    (ObjectType.POLICY, DiffAction.DROP): 500,
    (ObjectType.EXTENSION, DiffAction.CREATE): 2000,
    (ObjectType.EXTENSION, DiffAction.ALTER): 2000,
    (ObjectType.EXTENSION, DiffAction.DROP): 1000,
}

# Operations whose cost grows with the rows already in the table
ROW_SCALED: frozenset[tuple[ObjectType, DiffAction]] = frozenset(
    {
        (ObjectType.TABLE, DiffAction.ALTER),
        (ObjectType.INDEX, DiffAction.CREATE),
        (ObjectType.INDEX, DiffAction.ALTER),
    }
)


class DefaultCostModel:
    """Flat per-kind cost plus a per-batch cost for row-scaled work.

    For table rewrites and index builds the existing rows are processed in
    chunks of ``options.batch_size``; each chunk adds ``per_batch_ms``.
    """

    def __init__(
        self,
        base_costs: Mapping[tuple[ObjectType, DiffAction], int] = BASE_COSTS,
        per_batch_ms: int = 50,
        default_cost: int = 1000,
    ):
        self.base_costs = base_costs
        self.per_batch_ms = per_batch_ms
        self.default_cost = default_cost

    def estimate(
        self,
        difference: SchemaDifference,
        options: "MigrationGeneratorOptions",
        row_count: int | None = None,
    ) -> int:
        kind = (difference.object_type, difference.action)
        cost = self.base_costs.get(kind, self.default_cost)
        if row_count and kind in ROW_SCALED:
            cost += math.ceil(row_count / options.batch_size) * self.per_batch_ms
        return cost


def table_of(difference: SchemaDifference) -> str | None:
    """Qualified table whose rows an operation touches, if any."""
    if difference.object_type == ObjectType.TABLE:
        return f"{difference.schema_name}.{difference.object_name}"
    if difference.table_name:
        return f"{difference.schema_name}.{difference.table_name}"
    return None
