"""Dataset registry, loading, integrity checks and label coercion."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import polars as pl
import requests
from loguru import logger

from ojtree.config import OJ_DATASET_URL, AnalysisSettings
from ojtree.exceptions import (
    ColumnsNotFoundError,
    DatasetUnavailableError,
    MissingValuesError,
    UnknownDatasetError,
)
from ojtree.models import DatasetSummary

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_ROW_NAME_COLUMNS: frozenset[str] = frozenset({"", "rownames"})  # R row-name column as written by write.csv
_DOWNLOAD_TIMEOUT_SECONDS: float = 30.0


@dataclass(frozen=True)
class DatasetEntry:
    """A dataset known to the loader.

    Attributes:
        name (str): Registry name, e.g. `"OJ"`.
        filename (str): File name of the cached CSV inside the data directory.
        url (str): Published CSV the cache is populated from.
        label (str): Two-level label column.
        label_levels (tuple[str, ...]): Declared label levels, positive class first.
        categorical_levels (Mapping[str, tuple[str, ...]]): Non-label categorical
            predictors and their levels.
        schema (Mapping[str, pl.DataType]): Expected dtype of every numeric column.
    """

    name: str
    filename: str
    url: str
    label: str
    label_levels: tuple[str, ...]
    categorical_levels: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    schema: Mapping[str, pl.DataType] = field(default_factory=dict)


OJ_DATASET = DatasetEntry(
    name="OJ",
    filename="OJ.csv",
    url=OJ_DATASET_URL,
    label="Purchase",
    label_levels=("CH", "MM"),
    categorical_levels={"Store7": ("No", "Yes")},
    schema={
        "WeekofPurchase": pl.Int64(),
        "StoreID": pl.Int64(),
        "PriceCH": pl.Float64(),
        "PriceMM": pl.Float64(),
        "DiscCH": pl.Float64(),
        "DiscMM": pl.Float64(),
        "SpecialCH": pl.Int64(),
        "SpecialMM": pl.Int64(),
        "LoyalCH": pl.Float64(),
        "SalePriceMM": pl.Float64(),
        "SalePriceCH": pl.Float64(),
        "PriceDiff": pl.Float64(),
        "PctDiscMM": pl.Float64(),
        "PctDiscCH": pl.Float64(),
        "ListPriceDiff": pl.Float64(),
        "STORE": pl.Int64(),
    },
)

DATASETS: dict[str, DatasetEntry] = {OJ_DATASET.name: OJ_DATASET}


def get_dataset_entry(name: str) -> DatasetEntry:
    """Look up a registered dataset by name.

    Args:
        name (str): Registry name.

    Returns:
        DatasetEntry: The registry entry.

    Raises:
        UnknownDatasetError: If `name` is not registered.
    """
    try:
        return DATASETS[name]
    except KeyError:
        raise UnknownDatasetError(name, sorted(DATASETS)) from None


# ---------------------------------------------------------------------------
# Public interface -- Loading
# ---------------------------------------------------------------------------


def load_dataset(name: str = "OJ", *, settings: AnalysisSettings | None = None) -> pl.DataFrame:
    """Load a registered dataset into memory.

    The CSV is read from `settings.data_dir`. When the file is not cached yet
    it is downloaded from the registry URL (or `settings.dataset_url` for the
    default dataset) and written to the cache first. The R row-name column is
    dropped and numeric columns are cast to the registered schema. No label
    coercion happens here; see `prepare_dataset`.

    Args:
        name (str): Registry name. Defaults to `"OJ"`.
        settings (AnalysisSettings | None): Settings providing the cache
            directory and download URL. Defaults to `AnalysisSettings()`.

    Returns:
        pl.DataFrame: The raw dataset.

    Raises:
        UnknownDatasetError: If `name` is not registered.
        DatasetUnavailableError: If the dataset is not cached and cannot be downloaded.
    """
    settings = settings or AnalysisSettings()
    entry = get_dataset_entry(name)
    url = settings.dataset_url if name == settings.dataset_name else entry.url
    cache_path = Path(settings.data_dir) / entry.filename

    if not cache_path.exists():
        _download(entry.name, url=url, destination=cache_path)

    df = pl.read_csv(cache_path, infer_schema_length=None)
    df = read_dataset_frame(df, entry)
    logger.info("Dataset loaded", name=entry.name, rows=df.height, columns=df.width, path=str(cache_path))
    return df


def read_dataset_frame(df: pl.DataFrame, entry: DatasetEntry) -> pl.DataFrame:
    """Normalise a freshly read frame to the registered layout.

    Args:
        df (pl.DataFrame): The frame as read from CSV.
        entry (DatasetEntry): The registry entry describing the expected layout.

    Returns:
        pl.DataFrame: The frame without row-name columns and with numeric
            columns cast to the registered dtypes.

    Raises:
        ColumnsNotFoundError: If any registered column is missing.
    """
    df = df.drop([col for col in df.columns if col in _ROW_NAME_COLUMNS])
    expected = [entry.label, *entry.categorical_levels, *entry.schema]
    missing = [col for col in expected if col not in df.columns]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=df.columns)
    return df.with_columns(pl.col(col).cast(dtype) for col, dtype in entry.schema.items())


def _download(name: str, *, url: str, destination: Path) -> None:
    """Download a dataset CSV into the local cache.

    The body is written to a sibling `.part` file and moved into place, so an
    interrupted write never leaves a truncated file at the cache path.

    Args:
        name (str): Dataset name, used in error messages.
        url (str): Source URL.
        destination (Path): Cache file to write.

    Raises:
        DatasetUnavailableError: If the request fails or returns an error status.
    """
    logger.info("Downloading dataset", name=name, url=url)
    try:
        response = requests.get(url, timeout=_DOWNLOAD_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise DatasetUnavailableError(name, cache_path=str(destination), url=url) from exc

    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")
    partial.write_bytes(response.content)
    partial.replace(destination)


# ---------------------------------------------------------------------------
# Public interface -- Preprocessing
# ---------------------------------------------------------------------------


def count_missing_values(df: pl.DataFrame) -> dict[str, int]:
    """Count null values per column, treating floating-point NaN as missing too.

    Args:
        df (pl.DataFrame): The frame to inspect.

    Returns:
        dict[str, int]: Missing-value count for every column, in column order.
    """
    counts = df.select(
        (pl.col(col).is_null() | pl.col(col).is_nan()).sum()
        if df.schema[col].is_float()
        else pl.col(col).is_null().sum()
        for col in df.columns
    )
    return {col: int(counts[col][0]) for col in counts.columns}


def check_missing_values(df: pl.DataFrame) -> None:
    """Fail loudly when the frame has any missing value.

    Args:
        df (pl.DataFrame): The frame to inspect.

    Raises:
        MissingValuesError: If any column contains a null or NaN value.
    """
    counts = count_missing_values(df)
    if any(counts.values()):
        error = MissingValuesError(counts)
        logger.error("Missing values found", total=error.total, per_column=error.per_column)
        raise error


def coerce_label(df: pl.DataFrame, label: str, levels: Sequence[str]) -> pl.DataFrame:
    """Cast a column to a categorical `pl.Enum` with the declared levels.

    Args:
        df (pl.DataFrame): The frame holding the column.
        label (str): The column to cast.
        levels (Sequence[str]): Declared levels, in order.

    Returns:
        pl.DataFrame: The frame with `label` cast to `pl.Enum(levels)`.

    Raises:
        ColumnsNotFoundError: If `label` is not a column of `df`.
        ValueError: If `levels` contains duplicates or the column holds values
            outside the declared levels.
    """
    if label not in df.columns:
        raise ColumnsNotFoundError(missing_columns=[label], available_columns=df.columns)
    if len(set(levels)) != len(levels):
        raise ValueError(f"Levels for column '{label}' must be unique, got {list(levels)}")

    observed = {str(value) for value in df[label].drop_nulls().unique().to_list()}
    unexpected = sorted(observed - set(levels))
    if unexpected:
        raise ValueError(f"Column '{label}' contains values outside the declared levels {list(levels)}: {unexpected}")

    return df.with_columns(pl.col(label).cast(pl.String).cast(pl.Enum(list(levels))))


def prepare_dataset(df: pl.DataFrame, entry: DatasetEntry = OJ_DATASET) -> pl.DataFrame:
    """Verify completeness and coerce the label and categorical predictors.

    Args:
        df (pl.DataFrame): The raw dataset.
        entry (DatasetEntry): Registry entry naming the label and categorical columns.

    Returns:
        pl.DataFrame: The prepared dataset.

    Raises:
        MissingValuesError: If any value is missing.
        ColumnsNotFoundError: If the label or a categorical column is missing.
        ValueError: If a categorical column holds undeclared values.
    """
    check_missing_values(df)
    df = coerce_label(df, entry.label, entry.label_levels)
    for column, levels in entry.categorical_levels.items():
        df = coerce_label(df, column, levels)
    return df


def describe_dataset(df: pl.DataFrame, label: str) -> DatasetSummary:
    """Summarise the size, completeness and class balance of a dataset.

    Args:
        df (pl.DataFrame): The dataset.
        label (str): The label column.

    Returns:
        DatasetSummary: Row and column counts, missing-value total and the
            class distribution.

    Raises:
        ColumnsNotFoundError: If `label` is not a column of `df`.
    """
    if label not in df.columns:
        raise ColumnsNotFoundError(missing_columns=[label], available_columns=df.columns)
    distribution = df[label].cast(pl.String).value_counts(sort=True)
    return DatasetSummary(
        rows=df.height,
        columns=df.width,
        missing_values=sum(count_missing_values(df).values()),
        class_distribution={
            str(value): int(count)
            for value, count in zip(distribution[label], distribution["count"], strict=True)
        },
    )
