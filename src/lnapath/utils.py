"""Small I/O and timing helpers shared by the CLI."""

__all__ = ["Timer", "write_df"]


import logging
import os
from pathlib import Path
import time
from typing import Literal

import pandas as pd


logger = logging.getLogger(__name__)


class Timer:
    """
    Context manager logging the wall time of a block at debug level.

    Attributes:
        name: The label of the timed block.
        elapsed: Seconds spent in the block, set on exit.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.elapsed: float | None = None

    def __enter__(self) -> "Timer":
        logger.debug("[%s] started", self.name)
        self._tstart = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.elapsed = time.perf_counter() - self._tstart
        logger.debug("[%s] completed in %.2f s", self.name, self.elapsed)


def write_df(
    fname: str | os.PathLike,
    df: pd.DataFrame,
    extension: Literal[None, "", "csv", "parquet"] = "",
) -> Path:
    """
    Write a pandas DataFrame, without its index, to a csv or parquet file.

    Args:
        fname: The file to write to.
        df: The DataFrame to write.
        extension: An extension appended to `fname`, or empty to infer the format
            from the suffix of `fname`.

    Returns:
        The path written to.

    Raises:
        NotImplementedError: If the extension is neither 'csv' nor 'parquet'.
    """
    path = Path(f"{fname}.{extension}") if extension else Path(fname)
    if path.suffix == ".csv":
        df.to_csv(path, index=False)
    elif path.suffix == ".parquet":
        df.to_parquet(path, index=False, engine="pyarrow")
    else:
        raise NotImplementedError(
            f"Invalid extension '{path.suffix[1:]}'. Must be 'csv' or 'parquet'."
        )
    return path
