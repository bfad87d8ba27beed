"""Custom exceptions for the ojtree analysis pipeline.

Data validation exceptions (subclass ValueError):
- ColumnsNotFoundError: Raised when requested columns do not exist in a DataFrame.
- MissingValuesError: Raised when the dataset contains null or NaN values.
- DegenerateDataError: Raised when a partition is empty or a label has fewer
  than two observed classes, so no meaningful tree can be fitted.

Dataset lookup exceptions:
- UnknownDatasetError (KeyError): Raised for a dataset name that is not registered.
- DatasetUnavailableError (RuntimeError): Raised when a registered dataset is
  neither cached locally nor downloadable.
"""

from __future__ import annotations

from collections.abc import Mapping


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the DataFrame.

    Examples:
        >>> err = ColumnsNotFoundError(
        ...     missing_columns=["Purchase"],
        ...     available_columns=["PriceCH", "PriceMM"],
        ... )
        >>> err.missing_columns
        ['Purchase']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(
        self,
        missing_columns: list[str],
        available_columns: list[str],
    ) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the DataFrame.
            available_columns (list[str]): Column names present in the DataFrame.
        """
        super().__init__(f"Columns not found in DataFrame: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class MissingValuesError(ValueError):
    """Raised when a dataset that must be complete contains missing values.

    Attributes:
        total (int): Total number of null or NaN cells.
        per_column (dict[str, int]): Missing-value count for every column that
            has at least one missing value.

    Examples:
        >>> err = MissingValuesError({"PriceCH": 2, "LoyalCH": 1})
        >>> err.total
        3
        >>> str(err)
        "Dataset contains 3 missing values: {'LoyalCH': 1, 'PriceCH': 2}"
    """

    total: int
    per_column: dict[str, int]

    def __init__(self, per_column: Mapping[str, int]) -> None:
        """Initialize MissingValuesError.

        Args:
            per_column (Mapping[str, int]): Missing-value count per column.
                Columns with a zero count are dropped.
        """
        self.per_column = {name: int(count) for name, count in sorted(per_column.items()) if count > 0}
        self.total = sum(self.per_column.values())
        super().__init__(f"Dataset contains {self.total} missing values: {self.per_column}")


class DegenerateDataError(ValueError):
    """Raised when data is too degenerate to fit or evaluate a tree.

    Covers an empty training or holdout subset and a label column with fewer
    than two observed classes.

    Attributes:
        n_rows (int): Number of rows in the offending data.
        observed_classes (list[str]): Distinct label values that were observed.
    """

    n_rows: int
    observed_classes: list[str]

    def __init__(self, message: str, *, n_rows: int, observed_classes: list[str] | None = None) -> None:
        """Initialize DegenerateDataError.

        Args:
            message (str): Description of the degenerate condition.
            n_rows (int): Number of rows in the offending data.
            observed_classes (list[str] | None): Distinct label values observed.
        """
        super().__init__(message)
        self.n_rows = n_rows
        self.observed_classes = observed_classes or []


class UnknownDatasetError(KeyError):
    """Raised when a dataset name is not in the registry.

    Attributes:
        name (str): The requested dataset name.
        available (list[str]): Registered dataset names.
    """

    name: str
    available: list[str]

    def __init__(self, name: str, available: list[str]) -> None:
        """Initialize UnknownDatasetError.

        Args:
            name (str): The requested dataset name.
            available (list[str]): Registered dataset names.
        """
        super().__init__(name)
        self.name = name
        self.available = available

    def __str__(self) -> str:
        """Return a readable message instead of KeyError's quoted repr."""
        return f"Unknown dataset {self.name!r}; available datasets: {self.available}"


class DatasetUnavailableError(RuntimeError):
    """Raised when a registered dataset is neither cached nor downloadable.

    Attributes:
        name (str): The dataset name.
        cache_path (str): Where the cached copy was expected.
        url (str): The URL the download was attempted from.
    """

    name: str
    cache_path: str
    url: str

    def __init__(self, name: str, *, cache_path: str, url: str) -> None:
        """Initialize DatasetUnavailableError.

        Args:
            name (str): The dataset name.
            cache_path (str): Where the cached copy was expected.
            url (str): The URL the download was attempted from.
        """
        super().__init__(
            f"Dataset {name!r} is not cached at {cache_path} and could not be downloaded from {url}. "
            "Place the CSV at the cache path or set OJTREE_DATA_DIR."
        )
        self.name = name
        self.cache_path = cache_path
        self.url = url
