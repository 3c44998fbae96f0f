from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import PamConfig
from .errors import MissingColumnError

logger = logging.getLogger(__name__)

PED_COLUMNS = ["tstart", "tend", "interval", "offset", "ped_status"]


def load_dataset(path: str | Path) -> pd.DataFrame:
    path = Path(path)
    if path.suffix.lower() in {".csv"}:
        return pd.read_csv(path)
    if path.suffix.lower() in {".parquet"}:
        return pd.read_parquet(path)
    raise ValueError(f"Unsupported dataset format: {path.suffix}. Use .csv or .parquet")


def require_columns(df: pd.DataFrame, columns: Iterable[str]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise MissingColumnError(missing)


def validate_dataset(df: pd.DataFrame, cfg: PamConfig, *, strict: bool = True) -> None:
    """Check that the configured time/status/predictor columns exist and are numeric.

    With ``strict=False`` non-numeric values are only logged; they become NaN later
    and are dropped by :func:`split_data`.
    """

    require_columns(df, cfg.required_columns())

    for col in cfg.required_columns():
        coerced = pd.to_numeric(df[col], errors="coerce")
        bad = coerced.isna() & df[col].notna()
        if bad.any():
            bad_rows = coerced[bad].index[:10].tolist()
            msg = f"Column '{col}' must be numeric. Example bad rows: {bad_rows}"
            if strict:
                raise ValueError(msg)
            logger.warning(msg)

    status = pd.to_numeric(df[cfg.status], errors="coerce").dropna()
    unknown = sorted(set(status.unique()) - {0, 1})
    if unknown:
        msg = f"Status column '{cfg.status}' must be coded 0/1, found {unknown}"
        if strict:
            raise ValueError(msg)
        logger.warning(msg)


def default_cut_points(times: np.ndarray, quantiles: Sequence[float]) -> np.ndarray:
    times = np.asarray(times, dtype=float)
    times = times[np.isfinite(times)]
    if times.size == 0:
        raise ValueError("Cannot derive cut points from an empty time vector.")
    return np.quantile(times, list(quantiles))


def split_data(
    df: pd.DataFrame,
    *,
    time: str,
    status: str,
    cut: Optional[Sequence[float]] = None,
    id_col: str = "id",
    cut_quantiles: Optional[Sequence[float]] = None,
) -> pd.DataFrame:
    """Transform one-row-per-subject survival data to piece-wise exponential data (PED).

    Every subject gets one row per follow-up interval ``(tstart, tend]`` it was at risk
    in. ``offset`` is the log of the time spent in the interval and ``ped_status``
    flags the interval in which the event happened. Covariates are repeated on every
    row; the original ``time`` and ``status`` columns are dropped.

    Parameters
    ----------
    df:
        Raw data, one row per subject.
    time, status:
        Names of the event time and event indicator (1 = event, 0 = censored).
    cut:
        Interval boundaries. If omitted, quantiles of the observed event times are
        used (``cut_quantiles``, default ``0, 0.02, ..., 1``). ``0`` is prepended when
        missing. Follow-up beyond the last cut point is censored.
    id_col:
        Subject identifier; created from the row position if absent.
    """

    require_columns(df, [time, status])

    data = df.copy()
    t = pd.to_numeric(data[time], errors="coerce")
    d = pd.to_numeric(data[status], errors="coerce")
    keep = t.notna() & d.notna()
    if not keep.all():
        logger.warning("Dropping %d rows with missing %s/%s", int((~keep).sum()), time, status)
    data = data.loc[keep].reset_index(drop=True)
    times = t.loc[keep].to_numpy(dtype=float)
    events = d.loc[keep].to_numpy(dtype=float) == 1

    if id_col not in data.columns:
        data[id_col] = np.arange(1, len(data) + 1)

    if cut is None:
        qs = list(cut_quantiles) if cut_quantiles is not None else list(np.linspace(0, 1, 51))
        source = times[events] if events.any() else times
        cut = default_cut_points(source, qs)

    cut_arr = np.unique(np.asarray(cut, dtype=float))
    if cut_arr[0] > 0:
        cut_arr = np.concatenate(([0.0], cut_arr))
    if cut_arr.size < 2:
        raise ValueError(f"Need at least two distinct cut points, got {cut_arr.tolist()}")

    starts = cut_arr[:-1]
    ends = cut_arr[1:]

    at_risk = times[:, None] > starts[None, :]
    rows, ints = np.nonzero(at_risk)

    n_dropped = int((~at_risk.any(axis=1)).sum())
    if n_dropped:
        logger.warning("%d subjects have non-positive follow-up and were dropped", n_dropped)

    row_times = times[rows]
    exposure = np.minimum(row_times, ends[ints]) - starts[ints]
    ped_status = events[rows] & (row_times > starts[ints]) & (row_times <= ends[ints])

    labels = np.array([f"({a:g},{b:g}]" for a, b in zip(starts, ends)])

    covariates = data.drop(columns=[time, status, id_col]).iloc[rows].reset_index(drop=True)
    ped = pd.DataFrame(
        {
            id_col: data[id_col].to_numpy()[rows],
            "tstart": starts[ints],
            "tend": ends[ints],
            "interval": labels[ints],
            "offset": np.log(exposure),
            "ped_status": ped_status.astype(int),
        }
    )
    ped = pd.concat([ped, covariates], axis=1)

    logger.info(
        "Split %d subjects into %d PED rows over %d intervals",
        len(data) - n_dropped,
        len(ped),
        len(starts),
    )
    return ped


def ped_from_config(df: pd.DataFrame, cfg: PamConfig) -> pd.DataFrame:
    """Validate raw data and split it using the cut points/columns in ``cfg``."""

    validate_dataset(df, cfg, strict=False)
    keep_cols: List[str] = [cfg.time, cfg.status, *cfg.predictors]
    if cfg.id_col in df.columns:
        keep_cols.append(cfg.id_col)
    raw = df[keep_cols].copy()
    for col in cfg.predictors:
        raw[col] = pd.to_numeric(raw[col], errors="coerce")
    n_before = len(raw)
    raw = raw.dropna(subset=list(cfg.predictors)).reset_index(drop=True)
    if len(raw) < n_before:
        logger.warning("Dropping %d rows with missing predictor values", n_before - len(raw))

    return split_data(
        raw,
        time=cfg.time,
        status=cfg.status,
        id_col=cfg.id_col,
        cut_quantiles=cfg.cut_quantiles(),
    )
