"""Shared fixtures: a synthetic frame shaped like the orange-juice purchase data."""

from __future__ import annotations

from collections.abc import Callable

import matplotlib

matplotlib.use("Agg")

import numpy as np  # noqa: E402
import polars as pl  # noqa: E402
import pytest  # noqa: E402

from ojtree.dataset import prepare_dataset  # noqa: E402

_INTEGER_COLUMNS = ("WeekofPurchase", "StoreID", "SpecialCH", "SpecialMM", "STORE")


def make_oj_frame(n_rows: int = 300, seed: int = 0) -> pl.DataFrame:
    """Build a raw frame with the OJ layout where loyalty and price drive the purchase.

    Args:
        n_rows (int): Number of rows.
        seed (int): Seed of the generator.

    Returns:
        pl.DataFrame: Raw frame; `Purchase` and `Store7` are plain strings.
    """
    rng = np.random.default_rng(seed)
    loyal_ch = np.round(rng.uniform(0.0, 1.0, n_rows), 3)
    price_ch = rng.choice([1.69, 1.75, 1.79, 1.86, 1.99], n_rows)
    price_mm = rng.choice([1.69, 1.99, 2.09, 2.13, 2.18, 2.29], n_rows)
    disc_ch = rng.choice([0.0, 0.0, 0.0, 0.1, 0.2], n_rows)
    disc_mm = rng.choice([0.0, 0.0, 0.2, 0.4], n_rows)
    sale_price_ch = price_ch - disc_ch
    sale_price_mm = price_mm - disc_mm
    price_diff = sale_price_mm - sale_price_ch
    store_id = rng.choice([1, 2, 3, 4, 7], n_rows)

    p_ch = np.clip(0.15 + 0.7 * loyal_ch + 0.3 * price_diff, 0.02, 0.98)
    purchase = np.where(rng.uniform(0.0, 1.0, n_rows) < p_ch, "CH", "MM")

    return pl.DataFrame({
        "Purchase": purchase.tolist(),
        "WeekofPurchase": rng.integers(227, 279, n_rows),
        "StoreID": store_id,
        "PriceCH": price_ch,
        "PriceMM": price_mm,
        "DiscCH": disc_ch,
        "DiscMM": disc_mm,
        "SpecialCH": rng.integers(0, 2, n_rows),
        "SpecialMM": rng.integers(0, 2, n_rows),
        "LoyalCH": loyal_ch,
        "SalePriceMM": sale_price_mm,
        "SalePriceCH": sale_price_ch,
        "PriceDiff": price_diff,
        "Store7": np.where(store_id == 7, "Yes", "No").tolist(),
        "PctDiscMM": disc_mm / price_mm,
        "PctDiscCH": disc_ch / price_ch,
        "ListPriceDiff": price_mm - price_ch,
        "STORE": np.where(store_id == 7, 0, store_id),
    }).with_columns(pl.col(col).cast(pl.Int64) for col in _INTEGER_COLUMNS)


@pytest.fixture
def oj_raw() -> pl.DataFrame:
    """A raw synthetic OJ-shaped frame with 300 rows."""
    return make_oj_frame()


@pytest.fixture
def oj_prepared(oj_raw: pl.DataFrame) -> pl.DataFrame:
    """The synthetic frame after the missing-value check and label coercion."""
    return prepare_dataset(oj_raw)


@pytest.fixture
def oj_frame_factory() -> Callable[..., pl.DataFrame]:
    """The synthetic frame builder, for tests that need a different size or seed."""
    return make_oj_frame
