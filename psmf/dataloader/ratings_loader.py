#!filepath: psmf/dataloader/ratings_loader.py
from __future__ import annotations

from pathlib import Path
from typing import List

import pandas as pd
import pyarrow.parquet as pq

from psmf import logs
from psmf.core.types import Rating
from psmf.utils.errors import UserInputError


def load_ratings(
        path: str | Path,
        *,
        user_col: str = "user_id",
        item_col: str = "item_id",
        rating_col: str = "rating",
) -> List[Rating]:
    """
    读取 ratings 文件 → List[Rating]

    - .parquet：pyarrow
    - .csv / .tsv / 其它：pandas（.tsv 用 tab 分隔）
    - 缺列 / 非数值 / NaN → UserInputError
    """
    path = Path(path)
    if not path.exists():
        raise UserInputError(f"ratings file not found: {path}")

    if path.suffix == ".parquet":
        df = pq.read_table(path).to_pandas()
    else:
        sep = "\t" if path.suffix == ".tsv" else ","
        df = pd.read_csv(path, sep=sep)

    missing = [c for c in (user_col, item_col, rating_col) if c not in df.columns]
    if missing:
        raise UserInputError(
            f"{path.name}: missing columns {missing}, got {list(df.columns)}"
        )

    df = df[[user_col, item_col, rating_col]]
    if df.isna().any().any():
        raise UserInputError(f"{path.name}: ratings contain empty values")

    try:
        users = df[user_col].astype("int64")
        items = df[item_col].astype("int64")
        values = df[rating_col].astype("float64")
    except (TypeError, ValueError) as e:
        raise UserInputError(f"{path.name}: non-numeric ratings ({e})") from e

    ratings = [
        Rating(int(u), int(i), float(r))
        for u, i, r in zip(users, items, values)
    ]
    logs.info(f"[RatingsLoader] {path.name} rows={len(ratings)}")
    return ratings
