# ============================================================================
# DDL UTILITIES
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Builders for SQL DDL generation
# PURPOSE: Index, unique constraint, trigger and comment builders via psycopg.sql
# CREATED: 18 OCT 2026
# EXPORTS: IndexBuilder, ConstraintBuilder, TriggerBuilder, CommentBuilder, SchemaUtils
# DEPENDENCIES: psycopg
# ============================================================================
"""
DDL Utilities - Shared SQL Generation Patterns.

All methods return psycopg.sql.Composed objects; identifiers are always
composed with sql.Identifier, never concatenated.

Usage:
    from core.schema.ddl_utils import IndexBuilder, TriggerBuilder

    idx = IndexBuilder.btree("packetproc", "packet_sessions", ["status"])
    stmts = TriggerBuilder.updated_at_trigger("packetproc", "packet_sessions")
"""

from typing import List, Optional, Sequence, Union

from psycopg import sql


def _columns(columns: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(columns, str):
        return [columns]
    return list(columns)


# ============================================================================
# INDEX BUILDER
# ============================================================================

class IndexBuilder:
    """Builder for CREATE INDEX statements."""

    @staticmethod
    def default_name(table: str, columns: Sequence[str], prefix: str = "idx") -> str:
        return f"{prefix}_{table}_{'_'.join(columns)}"

    @staticmethod
    def btree(
        schema: str,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
        partial_where: Optional[str] = None,
        unique: bool = False,
    ) -> sql.Composed:
        """
        Create a B-tree index, optionally UNIQUE and/or partial.

        partial_where is trusted SQL from model metadata, never user input.
        """
        cols = _columns(columns)
        stmt = sql.SQL("CREATE {unique}INDEX IF NOT EXISTS {name} ON {schema}.{table} ({columns})").format(
            unique=sql.SQL("UNIQUE " if unique else ""),
            name=sql.Identifier(name or IndexBuilder.default_name(table, cols)),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
        )

        if partial_where:
            stmt = sql.SQL("{} WHERE {}").format(stmt, sql.SQL(partial_where))

        return stmt


# ============================================================================
# CONSTRAINT BUILDER
# ============================================================================

class ConstraintBuilder:
    """Inline table constraints for CREATE TABLE."""

    @staticmethod
    def primary_key(columns: Sequence[str]) -> sql.Composed:
        return sql.SQL("PRIMARY KEY ({})").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in columns)
        )

    @staticmethod
    def unique(name: str, columns: Sequence[str]) -> sql.Composed:
        """Named UNIQUE constraint; usable as an ON CONFLICT target."""
        return sql.SQL("CONSTRAINT {} UNIQUE ({})").format(
            sql.Identifier(name),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        )

    @staticmethod
    def foreign_key(
        column: str,
        ref_schema: str,
        ref_table: str,
        ref_column: str,
    ) -> sql.Composed:
        # Sessions are never deleted by the engine; RESTRICT keeps records safe
        return sql.SQL("FOREIGN KEY ({}) REFERENCES {}.{} ({}) ON DELETE RESTRICT").format(
            sql.Identifier(column),
            sql.Identifier(ref_schema),
            sql.Identifier(ref_table),
            sql.Identifier(ref_column),
        )


# ============================================================================
# TRIGGER BUILDER
# ============================================================================

class TriggerBuilder:
    """Builder for the shared updated_at trigger."""

    @staticmethod
    def updated_at_function(schema: str) -> sql.Composed:
        return sql.SQL("""
            CREATE OR REPLACE FUNCTION {schema}.update_updated_at_column()
            RETURNS TRIGGER
            LANGUAGE plpgsql
            AS $$
            BEGIN
                NEW.updated_at = NOW();
                RETURN NEW;
            END;
            $$
        """).format(schema=sql.Identifier(schema))

    @staticmethod
    def updated_at_trigger(schema: str, table: str) -> List[sql.Composed]:
        """DROP + CREATE so redeploys are idempotent."""
        trigger_name = sql.Identifier(f"trg_{table}_updated_at")
        target = sql.SQL("{}.{}").format(sql.Identifier(schema), sql.Identifier(table))

        return [
            sql.SQL("DROP TRIGGER IF EXISTS {} ON {}").format(trigger_name, target),
            sql.SQL("""
                CREATE TRIGGER {name}
                BEFORE UPDATE ON {target}
                FOR EACH ROW
                EXECUTE FUNCTION {schema}.update_updated_at_column()
            """).format(name=trigger_name, target=target, schema=sql.Identifier(schema)),
        ]


# ============================================================================
# COMMENT BUILDER
# ============================================================================

class CommentBuilder:
    """Builder for COMMENT ON statements."""

    @staticmethod
    def table(schema: str, table: str, comment: str) -> sql.Composed:
        return sql.SQL("COMMENT ON TABLE {}.{} IS {}").format(
            sql.Identifier(schema),
            sql.Identifier(table),
            sql.Literal(comment),
        )


# ============================================================================
# SCHEMA UTILITIES
# ============================================================================

class SchemaUtils:
    """Schema-level DDL."""

    @staticmethod
    def create_schema(schema: str) -> sql.Composed:
        return sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(schema))

    @staticmethod
    def set_search_path(schema: str) -> sql.Composed:
        return sql.SQL("SET search_path TO {}, public").format(sql.Identifier(schema))


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "IndexBuilder",
    "ConstraintBuilder",
    "TriggerBuilder",
    "CommentBuilder",
    "SchemaUtils",
]
