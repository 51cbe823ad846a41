"""Embedded tabular store.

One uploaded CSV becomes one DuckDB table in an in-memory connection. All values are
stored as VARCHAR; generated SQL is expected to CAST where it needs numbers.

Unlike SQLite, DuckDB does not coerce text to numbers implicitly: `AVG(price)` over a
VARCHAR column fails with "No function matches avg(VARCHAR)", while
`AVG(CAST(price AS DOUBLE))` works. The schema instructions tell the model to cast, and
the repair loop catches queries that forget to.
"""
