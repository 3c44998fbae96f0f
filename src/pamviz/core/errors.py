from __future__ import annotations

from typing import Sequence, Tuple


class PamVizError(Exception):
    """Base class for errors raised by pamviz."""


class TermNotFoundError(PamVizError, KeyError):
    def __init__(self, labels: Sequence[str], available: Sequence[Tuple[str, ...]] = ()):
        self.labels = tuple(labels)
        self.available = [tuple(a) for a in available]
        super().__init__(
            f"No model term with labels {self.labels}. Available terms: {self.available}"
        )

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


class AmbiguousTermError(PamVizError, KeyError):
    def __init__(self, labels: Sequence[str], candidates: Sequence[Tuple[str, ...]]):
        self.labels = tuple(labels)
        self.candidates = [tuple(c) for c in candidates]
        super().__init__(
            f"{len(self.candidates)} model terms match labels {self.labels}: {self.candidates}"
        )

    def __str__(self) -> str:
        return str(self.args[0])


class MissingColumnError(PamVizError, ValueError):
    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        super().__init__(f"Dataset is missing required columns: {self.missing}")
