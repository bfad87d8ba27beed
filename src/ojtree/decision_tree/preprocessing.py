"""Preprocessing: column classification, feature filtering, and feature/label encoding."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np
import polars as pl

from ojtree.decision_tree.models import ColumnType
from ojtree.exceptions import ColumnsNotFoundError, DegenerateDataError

# ---------------------------------------------------------------------------
# Column type classification
# ---------------------------------------------------------------------------

_DTYPE_TO_COLUMN_TYPE: dict[type[pl.DataType] | pl.DataType, ColumnType] = {
    pl.Int8: "numeric",
    pl.Int16: "numeric",
    pl.Int32: "numeric",
    pl.Int64: "numeric",
    pl.UInt8: "numeric",
    pl.UInt16: "numeric",
    pl.UInt32: "numeric",
    pl.UInt64: "numeric",
    pl.Float32: "numeric",
    pl.Float64: "numeric",
    pl.Boolean: "boolean",
    pl.String: "categorical",
    pl.Categorical: "categorical",
}

THRESHOLD_DECIMAL_PLACES: int = 4  # Decimal places for rounding numeric split thresholds in predicates.


def classify_column(dtype: pl.DataType) -> ColumnType:
    """Classify a Polars dtype into a broad predictor category.

    `pl.Enum` is parameterised by its categories, so it is matched with
    `isinstance` rather than through the lookup map.

    Args:
        dtype (pl.DataType): The Polars data type of the column.

    Returns:
        ColumnType: One of `"numeric"`, `"boolean"`, `"categorical"` or `"excluded"`.
    """
    result = _DTYPE_TO_COLUMN_TYPE.get(dtype)
    if result is not None:
        return result
    if isinstance(dtype, (pl.Enum, pl.Categorical)):
        return "categorical"
    return "excluded"


# ---------------------------------------------------------------------------
# Feature filtering
# ---------------------------------------------------------------------------


class ExcludedFeature(NamedTuple):
    """A predictor column that was left out of the tree, with the reason.

    Attributes:
        name (str): The column name.
        reason (str): Human-readable explanation.
    """

    name: str
    reason: str


def filter_features(
    df: pl.DataFrame,
    feature_columns: list[str],
) -> tuple[list[str], list[ExcludedFeature]]:
    """Partition predictor columns into kept and excluded sets.

    Columns are excluded when their dtype cannot be encoded or every value is
    null. Constant columns are kept: they never produce a split, and keeping
    them leaves the feature layout identical across training folds.

    Args:
        df (pl.DataFrame): The frame to inspect.
        feature_columns (list[str]): Column names to evaluate.

    Returns:
        tuple[list[str], list[ExcludedFeature]]: `(kept_names, excluded_features)`.

    Raises:
        ColumnsNotFoundError: If any requested column is absent.
    """
    missing = [col for col in feature_columns if col not in df.columns]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=df.columns)

    kept: list[str] = []
    excluded: list[ExcludedFeature] = []
    for col_name in feature_columns:
        series = df[col_name]
        if classify_column(series.dtype) == "excluded":
            excluded.append(ExcludedFeature(name=col_name, reason="unsupported dtype"))
        elif series.len() > 0 and series.is_null().all():
            excluded.append(ExcludedFeature(name=col_name, reason="all values are null"))
        else:
            kept.append(col_name)
    return kept, excluded


# ---------------------------------------------------------------------------
# Feature encoding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureEncoder:
    """How one predictor column is turned into a float64 vector.

    Encoders are built from the training frame and reused unchanged for any
    later frame (CV folds, holdout), so category codes never shift between
    fitting and prediction.

    Attributes:
        column_name (str): The source column name.
        column_type (ColumnType): The broad type category of the column.
        category_mapping (dict[int, str] | None): Integer code to category
            label. `None` for non-categorical columns.
    """

    column_name: str
    column_type: ColumnType
    category_mapping: dict[int, str] | None = field(default=None)

    def encode(self, series: pl.Series) -> np.ndarray:
        """Encode a column into a 1-D float64 array.

        Categories absent from `category_mapping` and nulls become `NaN`.

        Args:
            series (pl.Series): The column to encode.

        Returns:
            np.ndarray: The encoded values.

        Raises:
            ValueError: If the encoder's column type cannot be encoded.
        """
        if self.column_type == "numeric":
            return series.cast(pl.Float64).to_numpy(allow_copy=True).astype(np.float64)
        if self.column_type == "boolean":
            return series.cast(pl.Int8).cast(pl.Float64).to_numpy(allow_copy=True).astype(np.float64)
        if self.column_type == "categorical" and self.category_mapping is not None:
            label_to_code = {label: float(code) for code, label in self.category_mapping.items()}
            return (
                series.cast(pl.String)
                .replace_strict(label_to_code, default=None, return_dtype=pl.Float64)
                .fill_null(np.nan)
                .to_numpy(allow_copy=True)
                .astype(np.float64)
            )
        raise ValueError(f"Cannot encode column_type={self.column_type!r}")


def build_feature_encoder(series: pl.Series) -> FeatureEncoder:
    """Build the encoder for one predictor column.

    Enum columns use their declared categories in declaration order; other
    categorical columns use their sorted observed values.

    Args:
        series (pl.Series): The training column.

    Returns:
        FeatureEncoder: The encoder.

    Raises:
        ValueError: If the column dtype cannot be encoded.
    """
    column_type = classify_column(series.dtype)
    if column_type == "excluded":
        raise ValueError(f"Column '{series.name}' has unsupported dtype {series.dtype}")
    if column_type != "categorical":
        return FeatureEncoder(column_name=series.name, column_type=column_type)

    if isinstance(series.dtype, pl.Enum):
        labels = list(series.dtype.categories.to_list())
    else:
        labels = sorted(str(value) for value in series.drop_nulls().unique().to_list())
    return FeatureEncoder(
        column_name=series.name,
        column_type=column_type,
        category_mapping=dict(enumerate(labels)),
    )


def encode_features(
    df: pl.DataFrame,
    feature_columns: list[str],
) -> tuple[np.ndarray, list[FeatureEncoder]]:
    """Build encoders from `df` and encode its predictors into a 2-D float64 matrix.

    Args:
        df (pl.DataFrame): The training frame.
        feature_columns (list[str]): Ordered predictor column names.

    Returns:
        tuple[np.ndarray, list[FeatureEncoder]]: `(feature_matrix, encoders)`
            where the matrix has shape `(n_rows, n_features)`.
    """
    encoders = [build_feature_encoder(df[col_name]) for col_name in feature_columns]
    return apply_encoders(df, encoders), encoders


def apply_encoders(df: pl.DataFrame, encoders: list[FeatureEncoder]) -> np.ndarray:
    """Encode a frame with encoders built earlier from another frame.

    Args:
        df (pl.DataFrame): Frame holding every encoder's column.
        encoders (list[FeatureEncoder]): Encoders in feature order.

    Returns:
        np.ndarray: Matrix of shape `(n_rows, len(encoders))`.

    Raises:
        ColumnsNotFoundError: If `df` lacks any encoded column.
    """
    missing = [encoder.column_name for encoder in encoders if encoder.column_name not in df.columns]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=df.columns)
    if not encoders:
        return np.empty((df.height, 0), dtype=np.float64)
    return np.column_stack([encoder.encode(df[encoder.column_name]) for encoder in encoders])


# ---------------------------------------------------------------------------
# Label encoding
# ---------------------------------------------------------------------------


def label_classes(series: pl.Series) -> tuple[str, ...]:
    """Return the declared classes of a label column.

    Args:
        series (pl.Series): The label column; must be a `pl.Enum`.

    Returns:
        tuple[str, ...]: The declared levels, in order.

    Raises:
        TypeError: If the column is not a `pl.Enum`.
    """
    if not isinstance(series.dtype, pl.Enum):
        raise TypeError(f"Label column '{series.name}' must be a pl.Enum, got {series.dtype}; see coerce_label")
    return tuple(series.dtype.categories.to_list())


def encode_target(series: pl.Series) -> tuple[np.ndarray, tuple[str, ...]]:
    """Encode a categorical label column into integer class codes.

    Codes are the `pl.Enum` physical codes, so code `i` always means the
    `i`-th declared level regardless of which levels a subset happens to hold.

    Args:
        series (pl.Series): The label column.

    Returns:
        tuple[np.ndarray, tuple[str, ...]]: `(codes, classes)`.

    Raises:
        DegenerateDataError: If the column is empty, holds nulls, or has fewer
            than two observed classes.
    """
    classes = label_classes(series)
    if series.len() == 0:
        raise DegenerateDataError(f"Label column '{series.name}' is empty", n_rows=0)
    if series.null_count() > 0:
        raise DegenerateDataError(
            f"Label column '{series.name}' contains {series.null_count()} null values",
            n_rows=series.len(),
        )

    observed = sorted(str(value) for value in series.unique().to_list())
    if len(observed) < 2:
        raise DegenerateDataError(
            f"Label column '{series.name}' must have at least two observed classes, got {observed}",
            n_rows=series.len(),
            observed_classes=observed,
        )

    return series.to_physical().cast(pl.Int64).to_numpy(), classes
