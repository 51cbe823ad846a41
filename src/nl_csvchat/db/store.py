from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence, Tuple, Union

import duckdb
import pandas as pd

from nl_csvchat.db.utils import DUCKDB, SqlDialect, duplicate_names, to_scalar
from nl_csvchat.exceptions.errors import DatasetNotLoadedError, ParseError, QueryError
from nl_csvchat.ingestion.reader import parse_delimited
from nl_csvchat.logging.logger import get_logger

log = get_logger("db.store")


@dataclass(frozen=True)
class TableSchema:
    table_name: str
    columns: Tuple[str, ...]
    source_name: Optional[str] = None
    row_count: int = 0


@dataclass(frozen=True)
class TabularResult:
    columns: Tuple[str, ...]
    rows: Tuple[Tuple[Any, ...], ...]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([list(r) for r in self.rows], columns=list(self.columns))

    @property
    def is_empty(self) -> bool:
        return not self.rows


class QueryExecutor(Protocol):
    def execute(self, query: str) -> TabularResult: ...


class TabularStore:
    """Owns the in-memory DuckDB connection and the single table of the current upload.

    Other components get the narrow `execute` / `schema` / `describe` capability; nothing
    else touches the connection.
    """

    def __init__(
        self,
        table_name: str = "my_table",
        delimiter: str = ",",
        fallback_encodings: Sequence[str] = ("utf-8-sig", "latin-1"),
        skip_bad_lines: bool = False,
        dialect: SqlDialect = DUCKDB,
    ):
        self.table_name = table_name
        self.delimiter = delimiter
        self.fallback_encodings = list(fallback_encodings)
        self.skip_bad_lines = skip_bad_lines
        self.dialect = dialect
        self.con = duckdb.connect(database=":memory:")
        self._schema: Optional[TableSchema] = None

    @property
    def schema(self) -> TableSchema:
        if self._schema is None:
            raise DatasetNotLoadedError("No dataset loaded.")
        return self._schema

    @property
    def has_dataset(self) -> bool:
        return self._schema is not None

    def load_dataset(self, raw_content: Union[str, bytes], source_name: Optional[str] = None) -> TableSchema:
        parsed = parse_delimited(
            raw_content,
            delimiter=self.delimiter,
            fallback_encodings=self.fallback_encodings,
            skip_bad_lines=self.skip_bad_lines,
        )
        table = self.dialect.ident(self.table_name)
        col_defs = ", ".join(f"{self.dialect.ident(h)} VARCHAR" for h in parsed.header)

        # The previous schema is invalid from here on, even if the load fails.
        self._schema = None
        try:
            self.con.execute(f"CREATE OR REPLACE TABLE {table} ({col_defs})")
            if parsed.rows:
                frame = pd.DataFrame(parsed.rows, columns=parsed.header, dtype="object")
                self.con.register("_upload_frame", frame)
                try:
                    self.con.execute(f"INSERT INTO {table} SELECT * FROM _upload_frame")
                finally:
                    self.con.unregister("_upload_frame")
            columns = tuple(d[0] for d in self.con.execute(f"SELECT * FROM {table} LIMIT 0").description)
        except duckdb.Error as e:
            log.exception("Table creation failed", extra={"table": self.table_name})
            raise ParseError(f"Could not create table from upload: {e}") from e

        self._schema = TableSchema(
            table_name=self.table_name,
            columns=columns,
            source_name=source_name,
            row_count=len(parsed.rows),
        )
        log.info(
            "Loaded dataset",
            extra={
                "table": self.table_name,
                "source": source_name,
                "columns": len(columns),
                "rows": len(parsed.rows),
                "skipped": parsed.bad_lines_skipped,
            },
        )
        return self._schema

    def _read_only_statement(self, query: str) -> str:
        """Let DuckDB's parser decide what the text contains; only one SELECT may run."""
        sql = (query or "").strip()
        statements = self.con.extract_statements(sql) if sql else []
        if not statements:
            raise QueryError("Query is empty.")
        if len(statements) > 1:
            raise QueryError("Only a single SQL statement is allowed.")
        if statements[0].type != duckdb.StatementType.SELECT:
            raise QueryError("Only read-only SELECT/WITH queries are allowed.")
        return sql

    def execute(self, query: str) -> TabularResult:
        try:
            sql = self._read_only_statement(query)
            log.info("Executing SQL", extra={"sql": sql[:500] + ("..." if len(sql) > 500 else "")})
            cur = self.con.execute(sql)
            columns = tuple(d[0] for d in (cur.description or []))
            rows = tuple(tuple(to_scalar(v) for v in r) for r in cur.fetchall())
        except duckdb.Error as e:
            log.info("Query rejected by store", extra={"error": str(e)})
            raise QueryError(str(e)) from e

        dupes = duplicate_names(columns)
        if dupes:
            raise QueryError(
                f"Duplicate column names in result: {', '.join(dupes)}. Give each selected column a unique alias."
            )
        return TabularResult(columns=columns, rows=rows)

    def preview(self, limit: int = 20) -> pd.DataFrame:
        table = self.dialect.ident(self.schema.table_name)
        return self.con.execute(f"SELECT * FROM {table} LIMIT {int(limit)}").df()

    def describe(self) -> str:
        from nl_csvchat.tools.schema_tool import describe_schema

        return describe_schema(self.schema, dialect=self.dialect)

    def close(self) -> None:
        self.con.close()
