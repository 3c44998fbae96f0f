from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from pamviz.core.errors import AmbiguousTermError, TermNotFoundError

# Elapsed-time axis of piece-wise exponential data.
TIME = "tend"


@dataclass
class TermGrid:
    """One smooth term evaluated on a regular grid.

    For 1-D terms ``fit``/``se`` have shape ``(len(x),)`` and ``y`` is None.
    For 2-D terms they have shape ``(len(x), len(y))`` with ``fit[i, j]`` at
    ``(x[i], y[j])``; ``labels[0]`` names the x axis, ``labels[1]`` the y axis.
    """

    labels: Tuple[str, ...]
    x: np.ndarray
    fit: np.ndarray
    se: Optional[np.ndarray] = None
    y: Optional[np.ndarray] = None

    @property
    def dim(self) -> int:
        return len(self.labels)

    def transposed(self) -> "TermGrid":
        if self.dim != 2:
            raise ValueError(f"Only 2-D terms can be transposed, got {self.labels}")
        assert self.y is not None
        return TermGrid(
            labels=(self.labels[1], self.labels[0]),
            x=self.y,
            y=self.x,
            fit=self.fit.T,
            se=None if self.se is None else self.se.T,
        )


@dataclass
class ViewGrid:
    """Joint linear predictor over two variables (others held fixed)."""

    view: Tuple[str, str]
    x: np.ndarray
    y: np.ndarray
    fit: np.ndarray
    se_fit: np.ndarray
    fixed: dict = field(default_factory=dict)


class EffectModel(Protocol):
    def evaluate_terms(self, n_grid: int) -> List[TermGrid]:
        ...

    def evaluate_view(self, view: Sequence[str], n_grid: int) -> ViewGrid:
        ...


@dataclass(frozen=True)
class Found:
    term: TermGrid


@dataclass(frozen=True)
class NotFound:
    labels: Tuple[str, ...]


@dataclass(frozen=True)
class Ambiguous:
    labels: Tuple[str, ...]
    candidates: Tuple[TermGrid, ...]


TermLookup = Union[Found, NotFound, Ambiguous]


def lookup_term(terms: Sequence[TermGrid], labels: Sequence[str], *, ordered: bool = False) -> TermLookup:
    """Find the term whose axis labels match ``labels``.

    With ``ordered=False`` the labels are compared as a multiset, so
    ``("tend", "x")`` also matches a term labelled ``("x", "tend")``.
    """

    wanted = tuple(labels)
    if ordered:
        matches = [t for t in terms if t.labels == wanted]
    else:
        matches = [t for t in terms if sorted(t.labels) == sorted(wanted)]

    if not matches:
        return NotFound(labels=wanted)
    if len(matches) > 1:
        return Ambiguous(labels=wanted, candidates=tuple(matches))
    return Found(term=matches[0])


def require_term(terms: Sequence[TermGrid], labels: Sequence[str], *, ordered: bool = False) -> TermGrid:
    res = lookup_term(terms, labels, ordered=ordered)
    if isinstance(res, Found):
        return res.term
    if isinstance(res, Ambiguous):
        raise AmbiguousTermError(res.labels, [c.labels for c in res.candidates])
    raise TermNotFoundError(res.labels, [t.labels for t in terms])
