"""Utility functions for rendering Polars DataFrames in text reports."""

from __future__ import annotations

from collections.abc import Sequence

import polars as pl

from ojtree.exceptions import ColumnsNotFoundError


def to_markdown_table(
    df: pl.DataFrame,
    columns: Sequence[str] | None = None,
    num_rows: int = 10,
    *,
    float_precision: int | None = None,
) -> str:
    """Convert a Polars DataFrame to a markdown table string.

    This function temporarily modifies global ``pl.Config`` state to render
    the table, so it is not thread-safe.

    Args:
        df (pl.DataFrame): The DataFrame to convert.
        columns (Sequence[str] | None): Optional column names to include. If
            None, all columns are included.
        num_rows (int): Maximum number of rows to display. Defaults to 10.
        float_precision (int | None): Decimal places for float columns; `None`
            keeps Polars' default formatting.

    Returns:
        str: Markdown-formatted table string.

    Examples:
        >>> df = pl.DataFrame({"a": [1, 2], "b": [3, 4]})
        >>> print(to_markdown_table(df, num_rows=2))
        | a | b |
        |---|---|
        | 1 | 3 |
        | 2 | 4 |
    """
    if num_rows < 1:
        raise ValueError(f"num_rows must be at least 1, got {num_rows}")
    if columns is not None:
        _validate_columns(columns, df.columns)
        df = df.select(columns)

    with pl.Config(
        tbl_formatting="MARKDOWN",
        tbl_hide_column_data_types=True,
        tbl_hide_column_names=False,
        tbl_hide_dataframe_shape=True,
        tbl_rows=num_rows,
        tbl_cols=df.width,
        float_precision=float_precision,
    ):
        return str(df)


def _validate_columns(columns: Sequence[str], df_columns: Sequence[str]) -> None:
    """Validate that columns exist in the DataFrame and contain no duplicates.

    Args:
        columns (Sequence[str]): Column names to validate.
        df_columns (Sequence[str]): Column names present in the DataFrame.

    Raises:
        ValueError: If the columns list is empty or contains duplicates.
        ColumnsNotFoundError: If any columns do not exist in the DataFrame.
    """
    if len(columns) == 0:
        raise ValueError("columns list must not be empty; pass None to include all columns")
    if len(columns) != len(set(columns)):
        raise ValueError(f"Duplicate column names are not allowed: {list(columns)}")
    extra_columns = set(columns) - set(df_columns)
    if extra_columns:
        raise ColumnsNotFoundError(
            missing_columns=sorted(extra_columns),
            available_columns=list(df_columns),
        )
