import numpy as np
import pytest

from pamviz.core.errors import AmbiguousTermError, TermNotFoundError
from pamviz.model.terms import Ambiguous, Found, NotFound, TermGrid, lookup_term, require_term


def _terms():
    g = np.linspace(0, 1, 3)
    return [
        TermGrid(labels=("tend",), x=g, fit=np.zeros(3)),
        TermGrid(labels=("x",), x=g, fit=np.zeros(3)),
        TermGrid(labels=("x", "tend"), x=g, y=g, fit=np.arange(9.0).reshape(3, 3)),
    ]


def test_lookup_is_typed():
    terms = _terms()
    assert isinstance(lookup_term(terms, ("x",)), Found)
    assert isinstance(lookup_term(terms, ("age",)), NotFound)
    assert isinstance(lookup_term(terms + [terms[1]], ("x",)), Ambiguous)


def test_lookup_unordered_vs_ordered():
    terms = _terms()
    res = lookup_term(terms, ("tend", "x"))
    assert isinstance(res, Found) and res.term.labels == ("x", "tend")
    assert isinstance(lookup_term(terms, ("tend", "x"), ordered=True), NotFound)


def test_require_term_errors_carry_labels():
    terms = _terms()
    with pytest.raises(TermNotFoundError) as exc:
        require_term(terms, ("age",))
    assert exc.value.labels == ("age",)
    assert ("x",) in exc.value.available
    assert "age" in str(exc.value)

    with pytest.raises(AmbiguousTermError) as exc:
        require_term(terms + [terms[1]], ("x",))
    assert exc.value.candidates == [("x",), ("x",)]

    # Both are KeyErrors for callers that only care about lookup failure.
    with pytest.raises(KeyError):
        require_term(terms, ("age",))


def test_transposed_swaps_axes():
    t = _terms()[2].transposed()
    assert t.labels == ("tend", "x")
    np.testing.assert_array_equal(t.fit, np.arange(9.0).reshape(3, 3).T)
    with pytest.raises(ValueError):
        _terms()[0].transposed()
