"""Shared snapshot fixtures.

The sample database has three tables (users, posts, profiles), two functions,
an index, a trigger and two row-level security policies.
"""

from datetime import UTC, datetime

import pytest

from envclone.core.runtime import SequentialIdGenerator
from envclone.schema import (
    ColumnDefinition,
    ConstraintDefinition,
    ExtensionDefinition,
    FunctionDefinition,
    FunctionParameter,
    IndexColumn,
    IndexDefinition,
    PolicyDefinition,
    SchemaDefinition,
    TableDefinition,
    TriggerDefinition,
)

FIXED_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)


def fixed_clock() -> datetime:
    return FIXED_TIME


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def id_generator():
    return SequentialIdGenerator()


@pytest.fixture
def audit_function() -> FunctionDefinition:
    return FunctionDefinition(
        schema_name="public",
        name="audit_function",
        return_type="trigger",
        body="""
BEGIN
  INSERT INTO public.audit_log (table_name, operation, changed_at)
  VALUES (TG_TABLE_NAME, TG_OP, now());
  RETURN NEW;
END;
""",
    )


@pytest.fixture
def user_count_function() -> FunctionDefinition:
    return FunctionDefinition(
        schema_name="public",
        name="user_count",
        return_type="integer",
        language="sql",
        body="SELECT count(*)::integer FROM public.users;",
        volatility="STABLE",
    )


@pytest.fixture
def users_email_idx() -> IndexDefinition:
    return IndexDefinition(
        schema_name="public",
        table_name="users",
        name="users_email_idx",
        columns=(IndexColumn("email"),),
    )


@pytest.fixture
def audit_trigger() -> TriggerDefinition:
    return TriggerDefinition(
        schema_name="public",
        table_name="users",
        name="audit_trigger",
        timing="AFTER",
        events=("INSERT", "UPDATE"),
        function_name="audit_function",
    )


@pytest.fixture
def user_policy() -> PolicyDefinition:
    return PolicyDefinition(
        schema_name="public",
        table_name="users",
        name="user_policy",
        command="SELECT",
        roles=("authenticated",),
        using_expression="auth.uid() = id",
    )


@pytest.fixture
def posts_policy() -> PolicyDefinition:
    return PolicyDefinition(
        schema_name="public",
        table_name="posts",
        name="posts_policy",
        command="ALL",
        roles=("authenticated",),
        using_expression="auth.uid() = user_id",
        check_expression="auth.uid() = user_id",
    )


@pytest.fixture
def users_table(users_email_idx, audit_trigger, user_policy) -> TableDefinition:
    return TableDefinition(
        schema_name="public",
        name="users",
        columns=(
            ColumnDefinition(
                "id", "uuid", is_nullable=False, default_value="gen_random_uuid()"
            ),
            ColumnDefinition("email", "varchar", is_nullable=False, max_length=255),
            ColumnDefinition("name", "text"),
            ColumnDefinition(
                "created_at", "timestamptz", is_nullable=False, default_value="now()"
            ),
        ),
        constraints=(
            ConstraintDefinition("users_pkey", "PRIMARY KEY", ("id",)),
            ConstraintDefinition("users_email_key", "UNIQUE", ("email",)),
        ),
        indexes=(users_email_idx,),
        triggers=(audit_trigger,),
        policies=(user_policy,),
    )


@pytest.fixture
def posts_table(posts_policy) -> TableDefinition:
    return TableDefinition(
        schema_name="public",
        name="posts",
        columns=(
            ColumnDefinition("id", "uuid", is_nullable=False),
            ColumnDefinition("user_id", "uuid", is_nullable=False),
            ColumnDefinition("title", "text", is_nullable=False),
            ColumnDefinition("body", "text"),
        ),
        constraints=(
            ConstraintDefinition("posts_pkey", "PRIMARY KEY", ("id",)),
            ConstraintDefinition(
                "posts_user_id_fkey",
                "FOREIGN KEY",
                ("user_id",),
                referenced_schema="public",
                referenced_table="users",
                referenced_columns=("id",),
                on_delete="CASCADE",
            ),
        ),
        policies=(posts_policy,),
    )


@pytest.fixture
def profiles_table() -> TableDefinition:
    return TableDefinition(
        schema_name="public",
        name="profiles",
        columns=(
            ColumnDefinition("id", "uuid", is_nullable=False),
            ColumnDefinition("user_id", "uuid", is_nullable=False),
            ColumnDefinition("bio", "text"),
        ),
        constraints=(
            ConstraintDefinition("profiles_pkey", "PRIMARY KEY", ("id",)),
            ConstraintDefinition(
                "profiles_user_id_fkey",
                "FOREIGN KEY",
                ("user_id",),
                referenced_schema="public",
                referenced_table="users",
                referenced_columns=("id",),
            ),
        ),
    )


@pytest.fixture
def full_schema(
    users_table, posts_table, profiles_table, audit_function, user_count_function
) -> SchemaDefinition:
    return SchemaDefinition.from_tables(
        [users_table, posts_table, profiles_table],
        functions=[audit_function, user_count_function],
        extensions=[ExtensionDefinition("uuid-ossp", version="1.1")],
        captured_at=FIXED_TIME,
    )


@pytest.fixture
def empty_schema() -> SchemaDefinition:
    return SchemaDefinition(captured_at=FIXED_TIME)


@pytest.fixture
def simple_users_table() -> TableDefinition:
    return TableDefinition(
        schema_name="public",
        name="users",
        columns=(
            ColumnDefinition("id", "uuid", is_nullable=False),
            ColumnDefinition("email", "varchar", is_nullable=False, max_length=255),
        ),
        constraints=(
            ConstraintDefinition("users_pkey", "PRIMARY KEY", ("id",)),
            ConstraintDefinition("users_email_key", "UNIQUE", ("email",)),
        ),
    )


@pytest.fixture
def parameterized_function() -> FunctionDefinition:
    return FunctionDefinition(
        schema_name="public",
        name="posts_by_user",
        return_type="SETOF public.posts",
        parameters=(FunctionParameter("uuid", name="p_user_id"),),
        language="sql",
        body="SELECT * FROM public.posts WHERE user_id = p_user_id;",
        volatility="STABLE",
    )
