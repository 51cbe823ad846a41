from __future__ import annotations

from nl_csvchat.db.store import TableSchema
from nl_csvchat.db.utils import DUCKDB, SqlDialect


def describe_schema(schema: TableSchema, dialect: SqlDialect = DUCKDB) -> str:
    """Render the grounding instructions for one loaded dataset.

    This text is the first (system) entry of every conversation context and is
    re-issued whenever a new dataset replaces the table.
    """
    d = dialect.name
    cols = ", ".join(schema.columns)
    return (
        f"You are a {d} expert tasked with generating SQL queries to help users understand their CSV data.\n\n"
        f"Table name: {schema.table_name}\n"
        f"Columns: {cols}\n\n"
        "Instructions:\n"
        f"1. Use only the table name \"{schema.table_name}\" and the columns listed above. "
        "Do not invent or assume any other tables or columns.\n"
        "2. Interpret column names based on their likely meaning in the context of the data.\n"
        "3. When asked about data without specifics, use the most relevant column(s) based on the question.\n"
        f"4. Generate a single, complete, syntactically valid {d} SELECT query. "
        f"Use only functions and syntax natively supported by {d}; do not use functions from other SQL dialects.\n"
        "5. Every column is stored as VARCHAR text. CAST columns to a numeric or date type before "
        "arithmetic, aggregation or numeric comparison (TRY_CAST when values may be malformed).\n"
        "6. If a request cannot be answered with the available columns, explain why instead of "
        "fabricating a query.\n"
        "7. Do not add explanations or text outside of the SQL query itself."
    )
