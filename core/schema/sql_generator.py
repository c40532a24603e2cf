# ============================================================================
# PYDANTIC TO SQL GENERATOR
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - DDL generation from Pydantic models
# PURPOSE: Generate PostgreSQL CREATE statements from Pydantic models
# CREATED: 18 OCT 2026
# EXPORTS: PydanticToSQL
# DEPENDENCIES: pydantic, psycopg, annotated_types
# ============================================================================
"""
Pydantic to PostgreSQL Schema Generator.

Pydantic models are the single source of truth for the schema.

Model Metadata Convention:
    Models define SQL metadata via ClassVar attributes:
    - __sql_table__: Table name
    - __sql_schema__: Schema name
    - __sql_primary_key__: Primary key column(s)
    - __sql_foreign_keys__: Dict of {column: "schema.table(column)"}
    - __sql_unique__: List of (constraint_name, [columns])
    - __sql_indexes__: List of (name, [columns]) or (name, [columns], partial_where)

Usage:
    generator = PydanticToSQL(schema_name="packetproc")
    for stmt in generator.generate_all():
        await conn.execute(stmt)
"""

import logging
import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Type, Union, get_args, get_origin

from annotated_types import MaxLen
from psycopg import sql
from pydantic import BaseModel
from pydantic.fields import FieldInfo

from core.schema.ddl_utils import (
    CommentBuilder,
    ConstraintBuilder,
    IndexBuilder,
    SchemaUtils,
    TriggerBuilder,
)

logger = logging.getLogger(__name__)


class PydanticToSQL:
    """
    Convert Pydantic models to PostgreSQL DDL statements.

    Enum-typed fields become schema-qualified PostgreSQL ENUM types named
    after the enum class in snake_case (SessionStatus -> session_status).
    """

    TYPE_MAP = {
        str: "VARCHAR",
        int: "INTEGER",
        float: "DOUBLE PRECISION",
        bool: "BOOLEAN",
        datetime: "TIMESTAMPTZ",
        date: "DATE",
        dict: "JSONB",
        list: "JSONB",
    }

    # BIGINT for counters that can outgrow INTEGER on long-running sessions
    BIGINT_COLUMNS = {
        "total_records",
        "processed_records",
        "failed_records",
        "current_offset",
        "total_processing_time_ms",
        "last_packet_processing_time_ms",
        "processing_time_ms",
    }

    # Free-form text without a length cap
    TEXT_COLUMNS = {"stack_trace"}

    def __init__(self, schema_name: str = "packetproc"):
        self.schema_name = schema_name
        self.enums: Dict[str, Type[Enum]] = {}

    # =========================================================================
    # METADATA EXTRACTION
    # =========================================================================

    @staticmethod
    def get_model_metadata(model: Type[BaseModel]) -> Dict[str, Any]:
        """
        Extract SQL DDL metadata from a Pydantic model.

        Dunder ClassVars are not name-mangled (they end with "__"), so plain
        getattr finds them.
        """
        primary_key = getattr(model, "__sql_primary_key__", [])
        if isinstance(primary_key, str):
            primary_key = [primary_key]

        return {
            "table": getattr(model, "__sql_table__", None),
            "schema": getattr(model, "__sql_schema__", "packetproc"),
            "primary_key": primary_key,
            "foreign_keys": getattr(model, "__sql_foreign_keys__", {}),
            "unique": getattr(model, "__sql_unique__", []),
            "indexes": getattr(model, "__sql_indexes__", []),
        }

    # =========================================================================
    # TYPE CONVERSION
    # =========================================================================

    @staticmethod
    def _is_optional(field_type: Any) -> bool:
        return get_origin(field_type) is Union and type(None) in get_args(field_type)

    def python_type_to_sql(self, field_name: str, field_type: Any, field_info: FieldInfo) -> str:
        """Convert a model field annotation to a PostgreSQL type name."""
        actual_type = field_type
        if self._is_optional(field_type):
            actual_type = next(a for a in get_args(field_type) if a is not type(None))

        origin = get_origin(actual_type)
        if origin in (dict, list):
            return "JSONB"

        if field_name in self.TEXT_COLUMNS:
            return "TEXT"

        if actual_type is str:
            for constraint in field_info.metadata or []:
                if isinstance(constraint, MaxLen):
                    return f"VARCHAR({constraint.max_length})"
            return "VARCHAR"

        if isinstance(actual_type, type) and issubclass(actual_type, Enum):
            enum_name = re.sub(r"(?<!^)(?=[A-Z])", "_", actual_type.__name__).lower()
            self.enums[enum_name] = actual_type
            return enum_name

        if actual_type is int and field_name in self.BIGINT_COLUMNS:
            return "BIGINT"

        # Any and unknown types are stored as JSON
        return self.TYPE_MAP.get(actual_type, "JSONB")

    # =========================================================================
    # ENUM GENERATION
    # =========================================================================

    def generate_enum(self, enum_name: str, enum_class: Type[Enum]) -> sql.Composed:
        """CREATE TYPE guarded by a DO block so redeploys are safe."""
        values = ", ".join(f"'{member.value}'" for member in enum_class)
        return sql.SQL(f"""
DO $$
BEGIN
    IF NOT EXISTS (
        SELECT 1 FROM pg_type
        WHERE typname = '{enum_name}'
          AND typnamespace = (SELECT oid FROM pg_namespace WHERE nspname = '{self.schema_name}')
    ) THEN
        CREATE TYPE "{self.schema_name}"."{enum_name}" AS ENUM ({values});
    END IF;
END$$
""")

    # =========================================================================
    # TABLE GENERATION
    # =========================================================================

    def _column(self, schema_name: str, field_name: str, field_info: FieldInfo, primary_key: List[str]) -> sql.Composed:
        field_type = field_info.annotation
        type_name = self.python_type_to_sql(field_name, field_type, field_info)

        parts: List[sql.Composable] = [sql.Identifier(field_name), sql.SQL(" ")]
        if type_name in self.enums:
            parts.append(sql.SQL("{}.{}").format(sql.Identifier(schema_name), sql.Identifier(type_name)))
        else:
            parts.append(sql.SQL(type_name))

        if not self._is_optional(field_type) and field_name not in primary_key:
            parts.append(sql.SQL(" NOT NULL"))

        default = field_info.default
        if isinstance(default, Enum):
            parts.append(sql.SQL(" DEFAULT {}::{}.{}").format(
                sql.Literal(default.value),
                sql.Identifier(schema_name),
                sql.Identifier(type_name),
            ))
        elif isinstance(default, (bool, int, float, str)):
            parts.append(sql.SQL(" DEFAULT {}").format(sql.Literal(default)))
        elif field_info.default_factory is not None:
            if field_name in ("created_at", "updated_at"):
                parts.append(sql.SQL(" DEFAULT NOW()"))
            elif type_name == "JSONB":
                parts.append(sql.SQL(" DEFAULT '{}'::jsonb"))

        return sql.Composed(parts)

    def generate_table(self, model: Type[BaseModel]) -> sql.Composed:
        """Generate CREATE TABLE IF NOT EXISTS from a model with __sql_* metadata."""
        meta = self.get_model_metadata(model)
        table_name = meta["table"]
        schema_name = meta["schema"]

        if not table_name:
            raise ValueError(f"Model {model.__name__} missing __sql_table__ attribute")

        logger.debug(f"Generating table {schema_name}.{table_name} from {model.__name__}")

        parts: List[sql.Composable] = [
            self._column(schema_name, name, info, meta["primary_key"])
            for name, info in model.model_fields.items()
        ]

        if meta["primary_key"]:
            parts.append(ConstraintBuilder.primary_key(meta["primary_key"]))

        for constraint_name, columns in meta["unique"]:
            parts.append(ConstraintBuilder.unique(constraint_name, columns))

        for fk_column, fk_reference in meta["foreign_keys"].items():
            match = re.match(r"(\w+)\.(\w+)\((\w+)\)", fk_reference)
            if not match:
                raise ValueError(f"Bad foreign key reference on {model.__name__}: {fk_reference}")
            parts.append(ConstraintBuilder.foreign_key(fk_column, *match.groups()))

        return sql.SQL("CREATE TABLE IF NOT EXISTS {}.{} ({})").format(
            sql.Identifier(schema_name),
            sql.Identifier(table_name),
            sql.SQL(", ").join(parts),
        )

    # =========================================================================
    # INDEX GENERATION
    # =========================================================================

    def generate_indexes(self, model: Type[BaseModel]) -> List[sql.Composed]:
        meta = self.get_model_metadata(model)
        result = []

        for idx_def in meta["indexes"]:
            name, columns = idx_def[0], idx_def[1]
            partial_where = idx_def[2] if len(idx_def) > 2 else None
            result.append(IndexBuilder.btree(
                meta["schema"], meta["table"], columns,
                name=name,
                partial_where=partial_where,
            ))

        return result

    # =========================================================================
    # COMPLETE SCHEMA GENERATION
    # =========================================================================

    def generate_all(self) -> List[sql.Composed]:
        """
        Generate complete DDL for the packet processing tables.

        Order: schema, enums, tables (sessions before records for the FK),
        indexes, updated_at triggers, table comments.
        """
        from core.models import PacketSession, PacketRecord

        models = [PacketSession, PacketRecord]
        comments = {
            PacketSession: "One resumable packet processing run per (activity_id, application_date)",
            PacketRecord: "Every record dispatched to the record processor, with retry bookkeeping",
        }

        statements: List[sql.Composed] = [
            SchemaUtils.create_schema(self.schema_name),
            SchemaUtils.set_search_path(self.schema_name),
        ]

        # Tables are generated first so enum types are discovered from fields
        tables = [self.generate_table(model) for model in models]

        statements.extend(
            self.generate_enum(name, enum_class) for name, enum_class in self.enums.items()
        )
        statements.extend(tables)

        for model in models:
            statements.extend(self.generate_indexes(model))

        statements.append(TriggerBuilder.updated_at_function(self.schema_name))
        for model in models:
            statements.extend(TriggerBuilder.updated_at_trigger(self.schema_name, model.__sql_table__))
            statements.append(CommentBuilder.table(self.schema_name, model.__sql_table__, comments[model]))

        logger.info(f"Generated {len(statements)} DDL statements for schema {self.schema_name}")
        return statements


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PydanticToSQL"]
