import numpy as np
import pytest

from robustdesign.abundance import estimate_abundance

def test_estimate_abundance():
    caught = [10, 20]
    pstar = np.array([[0.5, 0.5], [0.25, 0.5], [0.5, 0.8]])

    results = estimate_abundance(caught, pstar)

    assert list(results.columns) == ['occasion', 'year', 'estimate', 'lower',
                                     'upper', 'naive', 'excluded']
    assert np.allclose(results.estimate, [(20 + 40 + 20) / 3, (40 + 40 + 25) / 3])
    assert np.array_equal(results.naive, [10, 20])
    assert np.array_equal(results.excluded, [0, 0])
    assert all(results.lower <= results.estimate)
    assert all(results.estimate <= results.upper)

def test_zero_pstar_excluded():
    caught = [10, 5]
    pstar = np.array([[0.5, 0.0], [0.0, 0.0], [0.25, 0.5]])

    results = estimate_abundance(caught, pstar, years=[2011, 2012])

    assert np.array_equal(results.excluded, [1, 2])
    assert np.allclose(results.estimate, [30, 10])
    assert np.array_equal(results.year, [2011, 2012])

def test_all_draws_excluded():
    results = estimate_abundance([3], np.zeros((4, 1)))

    assert results.excluded[0] == 4
    assert np.isnan(results.estimate[0])

def test_inputs_not_mutated():
    caught = np.array([4, 8])
    pstar = np.array([[0.5, 0.0], [0.2, 0.4]])
    caught_copy = caught.copy()
    pstar_copy = pstar.copy()

    estimate_abundance(caught, pstar)

    assert np.array_equal(caught, caught_copy)
    assert np.array_equal(pstar, pstar_copy)

def test_decreasing_in_pstar():
    pstar = np.linspace(0.05, 1, 20)
    results = [estimate_abundance([12], np.array([[p]])).estimate[0] 
               for p in pstar]
    assert np.all(np.diff(results) < 0)

def test_shape_mismatch():
    with pytest.raises(ValueError):
        estimate_abundance([1, 2, 3], np.ones((5, 2)))
