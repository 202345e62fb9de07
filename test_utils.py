import numpy as np

from robustdesign.utils import first_nonzero, age_class, upstar, freeze

def test_first_nonzero():
    ch = np.array([[0, 1, 1], [1, 0, 0], [0, 0, 0]])
    first = first_nonzero(ch)
    assert np.array_equal(first, np.array([1, 0, -1]))

def test_age_class():
    ages = np.array([0, 1, 2, 3, 4, 10])
    assert np.array_equal(age_class(ages), np.array([1, 1, 2, 2, 3, 3]))

def test_upstar_bounds():
    rng = np.random.default_rng(17)
    for S in range(1, 6):
        p = rng.uniform(size=(50, S))
        ustar = upstar(p)
        assert np.all((ustar >= 0) & (ustar <= 1))

def test_upstar_zero_only_when_all_zero():
    assert upstar(np.zeros(4)) == 0
    assert upstar(np.array([0, 0, 0.1, 0])) > 0
    assert np.isclose(upstar(np.full(2, 0.5)), 0.75)

def test_upstar_ragged():
    p = np.full((2, 3), 0.5)
    ustar = upstar(p, secondary_counts=np.array([1, 3]))
    assert np.allclose(ustar, [0.5, 0.875])

def test_freeze():
    result = freeze({'a': np.zeros(2), 'b': 'label'})
    assert not result['a'].flags.writeable
