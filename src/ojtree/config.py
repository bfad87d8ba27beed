"""Analysis settings loaded from the environment or a ``.env`` file."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ojtree.logging import LogLevel

OJ_DATASET_URL = "https://vincentarelbundock.github.io/Rdatasets/csv/ISLR/OJ.csv"


class TreeSettings(BaseModel):
    """Size controls applied to every fitted tree.

    The defaults mirror the classic recursive-partitioning defaults: a node
    needs 20 rows to be split, a leaf keeps at least 7 rows and the tree is
    capped at depth 30.

    Attributes:
        min_samples_split (int): Minimum rows a node needs before a split is attempted.
        min_samples_leaf (int): Minimum rows in any leaf.
        max_depth (int): Maximum tree depth.
        criterion (str): Impurity criterion minimised at each split.
    """

    min_samples_split: int = Field(default=20, ge=2)
    min_samples_leaf: int = Field(default=7, ge=1)
    max_depth: int = Field(default=30, ge=1)
    criterion: str = Field(default="gini", pattern="^(gini|entropy|log_loss)$")


class AnalysisSettings(BaseSettings):
    """Settings for one run of the purchase-tree analysis.

    Every field can be overridden with an ``OJTREE_`` environment variable,
    e.g. ``OJTREE_SEED=7`` or ``OJTREE_SAVE_PLOTS=false``. Nested tree
    settings use a double underscore: ``OJTREE_TREE__MIN_SAMPLES_LEAF=5``.

    Attributes:
        dataset_name (str): Registered dataset to load.
        label_column (str): Two-level label column.
        label_levels (list[str]): Declared label levels, positive class first.
        seed (int): Seed threaded through both the partition and the CV folds.
        train_fraction (float): Fraction of each class drawn into the training subset.
        cv_folds (int): Number of stratified cross-validation folds.
        initial_ccp_alpha (float): Pruning value of the first, untuned tree.
        tune_length (int): Maximum number of candidate pruning values.
        tree (TreeSettings): Size controls for every fitted tree.
        data_dir (Path): Local dataset cache directory.
        dataset_url (str): Where the dataset CSV is downloaded from when not cached.
        plots_dir (Path): Directory PNG charts are written to.
        save_plots (bool): Whether charts are rendered and saved.
        log_level (LogLevel): Level used by the command-line entry point.
    """

    model_config = SettingsConfigDict(
        env_prefix="OJTREE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    dataset_name: str = "OJ"
    label_column: str = "Purchase"
    label_levels: list[str] = Field(default_factory=lambda: ["CH", "MM"], min_length=2, max_length=2)
    seed: int = 123
    train_fraction: float = Field(default=0.7, gt=0.0, lt=1.0)
    cv_folds: int = Field(default=10, ge=2)
    initial_ccp_alpha: float = Field(default=0.0, ge=0.0)
    tune_length: int = Field(default=10, ge=1)
    tree: TreeSettings = Field(default_factory=TreeSettings)
    data_dir: Path = Path("data")
    dataset_url: str = OJ_DATASET_URL
    plots_dir: Path = Path("output") / "plots"
    save_plots: bool = True
    log_level: LogLevel = "STAGE"

    @property
    def positive_class(self) -> str:
        """The label level treated as the positive class (the first declared level)."""
        return self.label_levels[0]
