"""Seeded, stratified train/holdout partitioning."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import polars as pl
from loguru import logger

from ojtree.exceptions import DegenerateDataError


@dataclass(frozen=True)
class TrainTestPartition:
    """Two disjoint, sorted row-index subsets of one table.

    Attributes:
        train_indices (np.ndarray): Sorted row indices of the training subset.
        test_indices (np.ndarray): Sorted row indices of the holdout subset.
        train_fraction (float): Per-class fraction drawn into the training subset.
        seed (int): Seed of the draw.
    """

    train_indices: np.ndarray
    test_indices: np.ndarray
    train_fraction: float
    seed: int

    @property
    def n_rows(self) -> int:
        """Number of rows in the partitioned table."""
        return len(self.train_indices) + len(self.test_indices)

    def take(self, df: pl.DataFrame) -> tuple[pl.DataFrame, pl.DataFrame]:
        """Split a frame into its training and holdout rows.

        Args:
            df (pl.DataFrame): The frame the partition was drawn from.

        Returns:
            tuple[pl.DataFrame, pl.DataFrame]: `(train_df, test_df)`.

        Raises:
            ValueError: If `df` does not have the partitioned row count.
        """
        if df.height != self.n_rows:
            raise ValueError(f"Partition covers {self.n_rows} rows but the DataFrame has {df.height}")
        return df[self.train_indices.tolist()], df[self.test_indices.tolist()]


def stratified_split(
    labels: pl.Series,
    *,
    train_fraction: float = 0.7,
    seed: int = 123,
) -> TrainTestPartition:
    """Draw a stratified random partition of row indices.

    For every class, `ceil(train_fraction * n_class)` of its rows are drawn
    without replacement into the training subset; the remaining rows form the
    holdout. Classes are visited in sorted order and all draws share one
    `numpy.random.Generator` seeded with `seed`, so the same labels and seed
    always reproduce the same partition.

    Args:
        labels (pl.Series): Label value for every row.
        train_fraction (float): Fraction of each class to put in the training
            subset. Must lie strictly between 0 and 1.
        seed (int): Seed of the draw.

    Returns:
        TrainTestPartition: The partition.

    Raises:
        ValueError: If `train_fraction` is not strictly between 0 and 1, or
            `labels` contains nulls.
        DegenerateDataError: If `labels` is empty.

    Examples:
        >>> labels = pl.Series(["CH"] * 7 + ["MM"] * 3)
        >>> partition = stratified_split(labels, train_fraction=0.7, seed=1)
        >>> len(partition.train_indices), len(partition.test_indices)
        (8, 2)
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be strictly between 0 and 1, got {train_fraction}")
    if labels.len() == 0:
        raise DegenerateDataError("Cannot partition an empty label series", n_rows=0)
    if labels.null_count() > 0:
        raise ValueError(f"Label series '{labels.name}' contains {labels.null_count()} null values")

    rng = np.random.default_rng(seed)
    label_values = labels.cast(pl.String).to_numpy()
    train_parts: list[np.ndarray] = []

    for class_value in sorted(set(label_values.tolist())):
        class_indices = np.flatnonzero(label_values == class_value)
        n_train = math.ceil(train_fraction * len(class_indices))
        train_parts.append(rng.choice(class_indices, size=n_train, replace=False))

    train_indices = np.sort(np.concatenate(train_parts))
    test_mask = np.ones(len(label_values), dtype=bool)
    test_mask[train_indices] = False
    test_indices = np.flatnonzero(test_mask)

    logger.info(
        "Stratified partition drawn",
        train_rows=len(train_indices),
        test_rows=len(test_indices),
        train_fraction=train_fraction,
        seed=seed,
    )
    return TrainTestPartition(
        train_indices=train_indices,
        test_indices=test_indices,
        train_fraction=train_fraction,
        seed=seed,
    )
