"""Convert raw detection records into robust design capture histories.

Each individual in the detection table has one 0/1 column per secondary
occasion (a month within the sampling season) of every primary occasion (a
year). This module collapses those records into dense arrays bounded by each
individual's first and last occasion, with explicit masks marking the cells
where each array is defined.

A season with a single detection is treated as a tie: that detection is the
same event that produced the primary capture, so it is withheld from the
secondary occasion likelihood, i.e., its availability and its detection are
both set to zero. The other secondary occasions in that season remain
informative zeros.

Typical usage example:

    table = read_detection_table('input/study.csv')
    grid = [(2001, 6), (2001, 7), (2002, 6), (2002, 7)]
    data = transform(table, grid, censoring={'B': 1})
    data['caught']
"""

import logging

import numpy as np
import pandas as pd

from robustdesign.utils import first_nonzero, age_class, freeze

META_COLUMNS = ['id', 'sex', 'birth_year', 'first_capture', 'age_first_capture']

def read_detection_table(path: str) -> pd.DataFrame:
    """Reads the labelled detection table, one row per individual."""
    table = pd.read_csv(path)
    missing = [c for c in META_COLUMNS if c not in table.columns]
    if missing:
        raise ValueError(f'{path} is missing the columns {missing}')
    return table

def primary_structure(grid) -> dict:
    """Splits the (year, month) grid into primary and secondary occasions.

    Args:
        grid: ordered list of (year, month) pairs within the sampling season
    Returns:
        dict with the years, the count of secondary occasions per year, and
          the (primary, secondary) index for every column of the grid
    """
    grid_years = np.array([year for year, _ in grid])
    if grid_years.size == 0:
        raise ValueError('occasion grid is empty')
    if np.any(np.diff(grid_years) < 0):
        raise ValueError('occasion grid must be ordered by year')
    if len(set(map(tuple, grid))) != len(grid):
        raise ValueError('occasion grid has duplicated (year, month) cells')

    years, primary_index, secondary_counts = np.unique(
        grid_years,
        return_inverse=True,
        return_counts=True
    )

    # position of each month within its year
    season_start = np.concatenate(([0], np.cumsum(secondary_counts)[:-1]))
    secondary_index = np.arange(len(grid)) - season_start[primary_index]

    return {'years': years, 'secondary_counts': secondary_counts,
            'primary_index': primary_index, 'secondary_index': secondary_index}

def validate(table: pd.DataFrame, grid, censoring: dict) -> None:
    """Raises ValueError for configuration errors, before any computation."""
    if list(table.columns[:len(META_COLUMNS)]) != META_COLUMNS:
        raise ValueError(f'table must start with the columns {META_COLUMNS}')

    detection_columns = table.columns[len(META_COLUMNS):]
    if len(detection_columns) != len(grid):
        e = (f'table has {len(detection_columns)} detection columns but the '
             f'occasion grid has {len(grid)} cells')
        raise ValueError(e)

    values = table[detection_columns].to_numpy()
    if not np.isin(values, [0, 1]).all():
        raise ValueError('detection columns must only contain 0 or 1')

    ids = table['id'].astype(str)
    if ids.duplicated().any():
        raise ValueError(f'duplicated ids: {ids[ids.duplicated()].tolist()}')

    known = set(ids)
    unknown = [i for i in censoring if str(i) not in known]
    if unknown:
        raise ValueError(f'censored ids not in the table: {unknown}')

    occasion_count = len(primary_structure(grid)['years'])
    for i, occasion in censoring.items():
        if not 1 <= int(occasion) <= occasion_count:
            e = f'censoring occasion {occasion} for {i} outside 1..{occasion_count}'
            raise ValueError(e)

def correct_availability(obs, avail, defined, ch):
    """Withholds lone within-season detections from the detection likelihood.

    Seasons with more than one detection are fully available. Seasons with no
    detection are unavailable. In a season with a single detection, every cell
    is available except the detected one, whose detection and availability are
    both zeroed. Cells already withheld in a season with a primary capture are
    counted as detections, so applying the correction twice changes nothing.

    Args:
        obs: (individual, primary, secondary) array of detections
        avail: array with the shape of obs; pass `defined` for raw data
        defined: boolean array marking the cells inside [first, last]
        ch: (individual, primary) array of primary captures
    Returns:
        tuple of the corrected obs and avail arrays
    """
    defined = np.asarray(defined, dtype=bool)
    withheld = defined & (np.asarray(avail) == 0) & (np.asarray(ch)[..., None] == 1)
    detections = np.where(withheld, 1, obs) * defined

    total = detections.sum(axis=-1, keepdims=True)
    lone = (total == 1) & (detections == 1)

    avail = (defined & (total > 0) & ~lone).astype(int)
    obs = np.where(lone, 0, detections).astype(int)

    return obs, avail

def valid_ages(ages) -> np.ndarray:
    """Flags ages at first capture that are nonnegative integers."""
    ages = pd.to_numeric(pd.Series(ages), errors='coerce').to_numpy(dtype=float)
    with np.errstate(invalid='ignore'):
        # NaN compares False, so missing ages are flagged too
        return np.isfinite(ages) & (ages >= 0) & (np.mod(ages, 1) == 0)

def transform(table: pd.DataFrame, grid, censoring: dict = None) -> dict:
    """Builds the capture history arrays for the robust design model.

    Individuals excluded for data errors, and those first detected on the
    last occasion, are dropped before `caught` is computed, so it counts
    the retained individuals detected on each occasion.

    Args:
        table: detection table, see META_COLUMNS, followed by one column per
          (year, month) cell of the grid
        grid: ordered list of (year, month) pairs
        censoring: optional mapping of id to the last occasion (1-based) the
          individual could have been observed, e.g., a known date of death
    Returns:
        dict of read-only arrays for the retained individuals, where
          `modeled` flags those with at least one transition interval
    """
    censoring = {} if censoring is None else censoring
    validate(table, grid, censoring)

    structure = primary_structure(grid)
    years = structure['years']
    secondary_counts = structure['secondary_counts']
    occasion_count = len(years)
    secondary_max = secondary_counts.max()

    ids = table['id'].astype(str).to_numpy()
    individual_count = len(ids)

    # dense (individual, primary, secondary) array of raw detections
    raw = table.iloc[:, len(META_COLUMNS):].to_numpy(dtype=int)
    detections = np.zeros((individual_count, occasion_count, secondary_max),
                          dtype=int)
    detections[:, structure['primary_index'], structure['secondary_index']] = raw
    ch_raw = detections.any(axis=2).astype(int)

    # first and last occasion, last defaults to the final primary occasion
    first = first_nonzero(ch_raw)
    last = np.full(individual_count, occasion_count - 1)
    id_index = {i: k for k, i in enumerate(ids)}
    for i, occasion in censoring.items():
        last[id_index[str(i)]] = int(occasion) - 1

    # data errors exclude the individual but don't stop the run
    occasions = np.arange(occasion_count)
    ages = pd.to_numeric(table['age_first_capture'], errors='coerce')
    ages = ages.to_numpy(dtype=float)

    seen = first >= 0
    age_ok = valid_ages(ages)
    censored_early = seen & (last < first)
    after_last = occasions > last[:, None]
    seen_after_death = (ch_raw.astype(bool) & after_last).any(axis=1)
    seen_after_death &= ~censored_early
    no_interval = seen & (first == occasion_count - 1)

    logging.debug(f'{(~seen).sum()} individuals were never detected')
    for label, flag in [('invalid age at first capture', seen & ~age_ok),
                        ('censored before first detection', censored_early),
                        ('detected after censoring', seen & seen_after_death)]:
        if flag.any():
            logging.warning(f'excluding {flag.sum()} individuals with {label}: '
                            f'{ids[flag].tolist()}')
    logging.debug(f'{no_interval.sum()} individuals first seen on the final '
                  'occasion were dropped')

    keep = seen & age_ok & ~censored_early & ~seen_after_death & ~no_interval
    detections = detections[keep]
    ch_raw = ch_raw[keep]
    first = first[keep]
    last = last[keep]
    age_first = ages[keep].astype(int)

    # masks for the cells inside [first, last]
    ch_defined = ((occasions >= first[:, None]) &
                  (occasions <= last[:, None]))
    in_season = np.arange(secondary_max) < secondary_counts[:, None]
    defined = ch_defined[:, :, None] & in_season[None, :, :]

    obs = detections * defined
    ch = ch_raw * ch_defined

    # age grows by one each interval after first capture
    intervals = np.arange(occasion_count - 1)
    age_defined = intervals >= first[:, None]
    age_years = age_first[:, None] + intervals - first[:, None]
    age = np.where(age_defined, age_class(age_years), 0)

    # naive counts use the detections before the tie correction
    caught = (obs.sum(axis=2) > 0).sum(axis=0)

    obs, avail = correct_availability(obs, defined, defined, ch)

    modeled = first < last

    logging.info(f'{keep.sum()} of {individual_count} individuals retained, '
                 f'{modeled.sum()} modeled')

    result = {
        'ids': ids[keep],
        'sex': table['sex'].to_numpy()[keep],
        'years': years,
        'secondary_counts': secondary_counts,
        'obs': obs,
        'avail': avail,
        'defined': defined,
        'ch': ch,
        'ch_defined': ch_defined,
        'age': age,
        'age_defined': age_defined,
        'first': first,
        'last': last,
        'caught': caught,
        'modeled': modeled
    }

    return freeze(result)
