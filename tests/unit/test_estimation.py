"""Tests for operation duration estimates."""

import pytest

from envclone.analysis import (
    DefaultCostModel,
    DiffAction,
    MigrationGeneratorOptions,
    ObjectType,
    compare_schemas,
)
from envclone.analysis.estimation import BASE_COSTS, table_of


@pytest.fixture
def create_diff(full_schema, empty_schema):
    return compare_schemas(full_schema, empty_schema)


class TestDefaultCostModel:
    """Flat costs plus per-batch costs."""

    def test_flat_cost_per_kind(self, create_diff):
        model = DefaultCostModel()
        options = MigrationGeneratorOptions()

        for difference in create_diff.differences:
            expected = BASE_COSTS[(difference.object_type, difference.action)]
            assert model.estimate(difference, options) == expected

    def test_row_count_scales_index_builds(self, create_diff):
        index = create_diff.filter(ObjectType.INDEX)[0]
        model = DefaultCostModel(per_batch_ms=10)

        estimate = model.estimate(
            index, MigrationGeneratorOptions(batch_size=100), row_count=1050
        )

        assert estimate == BASE_COSTS[(ObjectType.INDEX, DiffAction.CREATE)] + 11 * 10

    def test_row_count_ignored_for_flat_operations(self, create_diff):
        table = create_diff.filter(ObjectType.TABLE)[0]

        assert DefaultCostModel().estimate(
            table, MigrationGeneratorOptions(), row_count=1_000_000
        ) == BASE_COSTS[(ObjectType.TABLE, DiffAction.CREATE)]

    def test_custom_base_costs(self, create_diff):
        model = DefaultCostModel(base_costs={}, default_cost=7)

        assert all(
            model.estimate(d, MigrationGeneratorOptions()) == 7
            for d in create_diff.differences
        )


def test_table_of(create_diff):
    by_name = {d.object_name: d for d in create_diff.differences}

    assert table_of(by_name["users"]) == "public.users"
    assert table_of(by_name["users_email_idx"]) == "public.users"
    assert table_of(by_name["audit_function"]) is None


def test_options_reject_non_positive_values():
    with pytest.raises(ValueError, match="batch_size"):
        MigrationGeneratorOptions(batch_size=0)
    with pytest.raises(ValueError, match="timeout_per_operation"):
        MigrationGeneratorOptions(timeout_per_operation=-1)

