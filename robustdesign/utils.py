import numpy as np

def first_nonzero(arr, axis=1, invalid_val=-1):
    """Finds the first nonzero value along an axis."""
    mask = arr!=0
    return np.where(mask.any(axis=axis), mask.argmax(axis=axis), invalid_val)

def age_class(age):
    """Buckets ages into survival classes 1 (<2), 2 (2 to 3), and 3 (>3)."""
    age = np.asarray(age)
    return np.where(age < 2, 1, np.where(age <= 3, 2, 3))

def upstar(p, secondary_counts=None):
    """Probability of at least one detection within a primary occasion.

    Works on numpy arrays and on pytensor tensors alike, so the model and the
    numeric checks share one definition.

    Args:
        p: array whose last axis holds the secondary occasion detection 
          probabilities
        secondary_counts: optional number of secondary occasions in each 
          primary occasion, for ragged grids; the last axis of p must then 
          have length max(secondary_counts) and the one before it one entry 
          per primary occasion
    Returns:
        array with the last axis reduced
    """
    if not hasattr(p, 'prod'):
        p = np.asarray(p, dtype=float)
    if secondary_counts is not None:
        secondary_counts = np.asarray(secondary_counts)
        in_season = np.arange(secondary_counts.max()) < secondary_counts[:, None]
        p = p * in_season
    return 1 - (1 - p).prod(axis=-1)

def freeze(result):
    """Marks every array in a result dict as read-only."""
    for val in result.values():
        if isinstance(val, np.ndarray):
            val.setflags(write=False)
    return result
