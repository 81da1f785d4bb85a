"""PostgreSQL DDL rendering for schema objects.

Every rendered operation opens with CREATE, ALTER or DROP, and every
statement ends with a semicolon. COMMENT ON statements only ever follow
another statement.
"""

from ..schema.models import (
    ColumnDefinition,
    ConstraintDefinition,
    ExtensionDefinition,
    FunctionDefinition,
    IndexDefinition,
    PolicyDefinition,
    TableDefinition,
    TriggerDefinition,
)
from .diff import ColumnChange, TableChanges


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def column_type(column: ColumnDefinition) -> str:
    """Data type with its length or precision modifier."""
    data_type = column.data_type
    if "(" in data_type:
        return data_type
    if column.max_length is not None:
        return f"{data_type}({column.max_length})"
    if column.numeric_precision is not None and data_type.lower() in (
        "numeric",
        "decimal",
    ):
        if column.numeric_scale is not None:
            return f"{data_type}({column.numeric_precision}, {column.numeric_scale})"
        return f"{data_type}({column.numeric_precision})"
    return data_type


def column_definition(column: ColumnDefinition) -> str:
    parts = [column.name, column_type(column)]
    if column.is_identity:
        parts.append("GENERATED BY DEFAULT AS IDENTITY")
    if not column.is_nullable:
        parts.append("NOT NULL")
    if column.default_value is not None and not column.is_identity:
        parts.append(f"DEFAULT {column.default_value}")
    return " ".join(parts)


def constraint_definition(constraint: ConstraintDefinition) -> str:
    columns = ", ".join(constraint.column_names)
    kind = constraint.kind
    clause = f"CONSTRAINT {constraint.name} "

    if kind == "PRIMARY KEY":
        return clause + f"PRIMARY KEY ({columns})"
    if kind == "UNIQUE":
        return clause + f"UNIQUE ({columns})"
    if kind == "FOREIGN KEY":
        referenced = ", ".join(constraint.referenced_columns)
        clause += f"FOREIGN KEY ({columns}) REFERENCES {constraint.references}"
        if referenced:
            clause += f" ({referenced})"
        if constraint.on_delete:
            clause += f" ON DELETE {constraint.on_delete.upper()}"
        return clause
    if kind == "CHECK":
        return clause + f"CHECK ({constraint.check_clause or 'true'})"
    return clause + f"{kind} ({columns})"


class DdlRenderer:
    """Renders create, alter and drop statements.

    In safe mode drops are guarded with ``IF EXISTS`` and indexes are built
    and dropped ``CONCURRENTLY``.
    """

    def __init__(self, safe_mode: bool = True, add_comments: bool = True):
        self.safe_mode = safe_mode
        self.add_comments = add_comments

    # Tables -----------------------------------------------------------------

    def create_table(self, table: TableDefinition) -> str:
        lines = [f"  {column_definition(c)}" for c in table.columns]
        lines += [f"  {constraint_definition(c)}" for c in table.constraints]
        statements = [
            f"CREATE TABLE {table.qualified_name} (\n" + ",\n".join(lines) + "\n);"
        ]
        if self.add_comments:
            statements += self._table_comments(table)
        return "\n".join(statements)

    def _table_comments(self, table: TableDefinition) -> list[str]:
        statements = []
        if table.comment:
            statements.append(
                f"COMMENT ON TABLE {table.qualified_name} IS "
                f"{_quote_literal(table.comment)};"
            )
        for column in table.columns:
            if column.comment:
                statements.append(
                    f"COMMENT ON COLUMN {table.qualified_name}.{column.name} IS "
                    f"{_quote_literal(column.comment)};"
                )
        return statements

    def drop_table(self, table: TableDefinition) -> str:
        guard = "IF EXISTS " if self.safe_mode else ""
        return f"DROP TABLE {guard}{table.qualified_name};"

    def alter_table(self, table: TableDefinition, changes: TableChanges) -> str:
        """One ALTER TABLE statement with a clause per changed column or constraint."""
        clauses: list[str] = []

        # Constraints go first so dropped columns are no longer referenced
        for constraint in changes.constraints_dropped:
            guard = "IF EXISTS " if self.safe_mode else ""
            clauses.append(f"DROP CONSTRAINT {guard}{constraint.name}")
        for column in changes.columns_dropped:
            guard = "IF EXISTS " if self.safe_mode else ""
            clauses.append(f"DROP COLUMN {guard}{column.name}")
        for column in changes.columns_added:
            clauses.append(f"ADD COLUMN {column_definition(column)}")
        for change in changes.columns_modified:
            clauses += self._column_clauses(change)
        for constraint in changes.constraints_added:
            clauses.append(f"ADD {constraint_definition(constraint)}")

        # COMMENT ON cannot open an operation, so it only follows an ALTER TABLE
        if not clauses:
            return ""
        statements = [
            f"ALTER TABLE {table.qualified_name}\n  " + ",\n  ".join(clauses) + ";"
        ]
        if self.add_comments:
            statements += self._comment_changes(table, changes)
        return "\n".join(statements)

    def _column_clauses(self, change: ColumnChange) -> list[str]:
        # An identity is dropped before a default is set, and added once the
        # column is NOT NULL with its default removed
        name = change.name
        after = change.after
        clauses = []
        if change.type_changed:
            new_type = column_type(after)
            clauses.append(
                f"ALTER COLUMN {name} TYPE {new_type} USING {name}::{new_type}"
            )
        if change.identity_changed and not after.is_identity:
            guard = " IF EXISTS" if self.safe_mode else ""
            clauses.append(f"ALTER COLUMN {name} DROP IDENTITY{guard}")
        if change.nullability_changed:
            action = "DROP NOT NULL" if after.is_nullable else "SET NOT NULL"
            clauses.append(f"ALTER COLUMN {name} {action}")
        if change.default_changed and not after.is_identity:
            if after.default_value is None:
                clauses.append(f"ALTER COLUMN {name} DROP DEFAULT")
            else:
                clauses.append(f"ALTER COLUMN {name} SET DEFAULT {after.default_value}")
        if change.identity_changed and after.is_identity:
            if change.before.default_value is not None:
                clauses.append(f"ALTER COLUMN {name} DROP DEFAULT")
            clauses.append(f"ALTER COLUMN {name} ADD GENERATED BY DEFAULT AS IDENTITY")
        return clauses

    def _comment_changes(self, table: TableDefinition, changes: TableChanges) -> list[str]:
        statements = []
        if changes.comment_changed:
            comment = (
                _quote_literal(changes.comment_after)
                if changes.comment_after
                else "NULL"
            )
            statements.append(f"COMMENT ON TABLE {table.qualified_name} IS {comment};")
        for change in changes.columns_modified:
            if change.comment_changed:
                comment = (
                    _quote_literal(change.after.comment)
                    if change.after.comment
                    else "NULL"
                )
                statements.append(
                    f"COMMENT ON COLUMN {table.qualified_name}.{change.name} IS "
                    f"{comment};"
                )
        return statements

    # Functions --------------------------------------------------------------

    def create_function(self, function: FunctionDefinition) -> str:
        parameters = []
        for parameter in function.parameters:
            parts = []
            if parameter.mode.upper() != "IN":
                parts.append(parameter.mode.upper())
            if parameter.name:
                parts.append(parameter.name)
            parts.append(parameter.data_type)
            if parameter.default_value is not None:
                parts.append(f"DEFAULT {parameter.default_value}")
            parameters.append(" ".join(parts))

        lines = [
            f"CREATE OR REPLACE FUNCTION {function.qualified_name}"
            f"({', '.join(parameters)})",
            f"RETURNS {function.return_type}",
            f"LANGUAGE {function.language}",
            function.volatility.upper(),
        ]
        if function.is_security_definer:
            lines.append("SECURITY DEFINER")
        lines += ["AS $function$", function.body.strip("\n"), "$function$;"]

        statement = "\n".join(lines)
        if self.add_comments and function.comment:
            statement += (
                f"\nCOMMENT ON FUNCTION {function.signature} IS "
                f"{_quote_literal(function.comment)};"
            )
        return statement

    def drop_function(self, function: FunctionDefinition) -> str:
        guard = "IF EXISTS " if self.safe_mode else ""
        return f"DROP FUNCTION {guard}{function.signature};"

    # Triggers ---------------------------------------------------------------

    def create_trigger(self, trigger: TriggerDefinition) -> str:
        events = " OR ".join(event.upper() for event in trigger.events)
        lines = [
            f"CREATE TRIGGER {trigger.name}",
            f"  {trigger.timing.upper()} {events} ON {trigger.qualified_table}",
            f"  FOR EACH {trigger.orientation.upper()}",
        ]
        if trigger.condition:
            lines.append(f"  WHEN ({trigger.condition})")
        lines.append(f"  EXECUTE FUNCTION {trigger.qualified_function}();")
        return "\n".join(lines)

    def drop_trigger(self, trigger: TriggerDefinition) -> str:
        return f"DROP TRIGGER IF EXISTS {trigger.name} ON {trigger.qualified_table};"

    # Indexes ----------------------------------------------------------------

    def create_index(self, index: IndexDefinition) -> str:
        unique = "UNIQUE " if index.is_unique else ""
        concurrently = "CONCURRENTLY " if self.safe_mode else ""
        columns = ", ".join(
            f"{c.name} DESC" if c.sort_order.upper() == "DESC" else c.name
            for c in index.columns
        )
        statement = (
            f"CREATE {unique}INDEX {concurrently}{index.name} "
            f"ON {index.qualified_table} USING {index.method} ({columns})"
        )
        if index.where_clause:
            statement += f" WHERE {index.where_clause}"
        return statement + ";"

    def drop_index(self, index: IndexDefinition) -> str:
        concurrently = "CONCURRENTLY " if self.safe_mode else ""
        return f"DROP INDEX {concurrently}IF EXISTS {index.schema_name}.{index.name};"

    # Policies ---------------------------------------------------------------

    def create_policy(self, policy: PolicyDefinition) -> str:
        mode = "PERMISSIVE" if policy.is_permissive else "RESTRICTIVE"
        lines = [
            f"CREATE POLICY {policy.name} ON {policy.qualified_table}",
            f"  AS {mode}",
            f"  FOR {policy.command.upper()}",
            f"  TO {', '.join(policy.roles) or 'public'}",
        ]
        if policy.using_expression:
            lines.append(f"  USING ({policy.using_expression})")
        if policy.check_expression:
            lines.append(f"  WITH CHECK ({policy.check_expression})")
        return "\n".join(lines) + ";"

    def drop_policy(self, policy: PolicyDefinition) -> str:
        return f"DROP POLICY IF EXISTS {policy.name} ON {policy.qualified_table};"

    # Extensions -------------------------------------------------------------

    def create_extension(self, extension: ExtensionDefinition) -> str:
        statement = f'CREATE EXTENSION IF NOT EXISTS "{extension.name}"'
        if extension.schema_name:
            statement += f" SCHEMA {extension.schema_name}"
        if extension.version:
            statement += f" VERSION {_quote_literal(extension.version)}"
        return statement + ";"

    def alter_extension(self, extension: ExtensionDefinition) -> str:
        statement = f'ALTER EXTENSION "{extension.name}" UPDATE'
        if extension.version:
            statement += f" TO {_quote_literal(extension.version)}"
        return statement + ";"

    def drop_extension(self, extension: ExtensionDefinition) -> str:
        return f'DROP EXTENSION IF EXISTS "{extension.name}";'
