"""Simulating data and estimating parameters for a robust design model.

The model is the state-space formulation of the robust design, with survival
depending on age class, random temporary emigration, and two latent classes of
detection heterogeneity. The simulation code follows the same generative
process, adapted from Kery and Schaub (2011) BPA, Chapters 10 and 12.

Detection within a season is constant across secondary occasions, so the
probability of at least one detection in year t is upstar = 1 - (1 - p)^S_t.
The mixture detection rates are an ordered pair, which keeps class 1 as the
lower detectability class in every draw.

Typical usage example:

    rd = RobustDesign(seed=17)
    sim = rd.simulate(N=200, grid=grid, beta=[0.6, 0.8, 0.9], gamma=0.2,
                      mu=[0.2, 0.6], prop=[0.5, 0.5])
    data = transform(sim['table'], grid)

    model = rd.compile_pymc_model(data)
    idata = sample_model(model, {'draws': 1000, 'tune': 1000})
    check_convergence(idata)
"""

import logging

import numpy as np
import pandas as pd
import pymc as pm
import arviz as az
from pytensor import tensor as pt

from robustdesign.transform import primary_structure, META_COLUMNS
from robustdesign.utils import age_class, upstar

PARAMETERS = ['beta', 'gamma', 'mu', 'prop', 'pstar']

class RobustDesign:
    """Robust design model with age-dependent survival and mixture detection.

    Typical usage example:

        rd = RobustDesign()
        model = rd.compile_pymc_model(data)
        with model:
            idata = pm.sample()
    """

    def __init__(self, seed: int = None) -> None:
        self.rng = np.random.default_rng(seed)

    def compile_pymc_model(self, data: dict) -> pm.Model:
        '''Generate the robust design model in PyMC.

        Only the individuals flagged in data['modeled'] enter the model. The
        latent state z, alive and present, is one Bernoulli vector per primary
        occasion, covering the individuals whose state is stochastic at that
        occasion, i.e., first < t <= last. Each starts at one.

        Args:
            data: output of robustdesign.transform.transform
        Returns:
            pm.Model with the posterior of beta, gamma, mu, prop, and pstar
        '''
        modeled = data['modeled']
        if not modeled.any():
            raise ValueError('no individuals with a transition interval')

        # summarize the data
        obs = data['obs'][modeled]
        avail = data['avail'][modeled]
        defined = data['defined'][modeled]
        ch = data['ch'][modeled]
        ch_defined = data['ch_defined'][modeled]
        age = data['age'][modeled]
        first = data['first'][modeled]
        secondary_counts = data['secondary_counts']
        years = data['years']

        # utility vectors for creating arrays and array indices
        individual_count, occasion_count = ch.shape
        occasions = np.arange(occasion_count)

        # cells where the latent state follows a transition from t - 1
        transition = ch_defined & (occasions > first[:, None])
        ch_rows, ch_cols = transition.nonzero()

        # secondary cells that enter the detection likelihood
        obs_rows, obs_occ, obs_sec = ((avail == 1) & defined).nonzero()

        coords = {
            'age_class': [1, 2, 3],
            'mixture': [1, 2],
            'year': years
        }

        with pm.Model(coords=coords) as robust:
            # priors for survival and temporary emigration
            beta = pm.Uniform('beta', 0., 1., dims='age_class')
            gamma = pm.Uniform('gamma', 0., 1.)

            # two iid uniforms, sorted, make an ordered pair of detection rates
            mu_raw = pm.Uniform('mu_raw', 0., 1., dims='mixture',
                                initval=np.array([0.25, 0.75]))
            mu = pm.Deterministic('mu', pt.sort(mu_raw), dims='mixture')

            # mixture weights and class membership
            prop = pm.Dirichlet('prop', a=np.ones(2), dims='mixture')
            eta = pm.Categorical('eta', p=prop, shape=individual_count)

            # alive and present, one column per primary occasion
            z_columns = []
            z_previous = None
            for t in range(occasion_count):

                # certain at first capture, zero outside [first, last]
                z_current = pt.as_tensor_variable(
                    (first == t).astype('int64')
                )

                rows = np.flatnonzero(transition[:, t])
                if rows.size:
                    # survival depends on the age class at the interval start
                    survival = z_previous[rows] * beta[age[rows, t - 1] - 1]
                    z_t = pm.Bernoulli(
                        f'z_{years[t]}',
                        p=survival,
                        initval=np.ones(rows.size, dtype='int64')
                    )
                    z_current = pt.set_subtensor(z_current[rows], z_t)

                z_columns.append(z_current)
                z_previous = z_current

            z = pt.stack(z_columns, axis=1)

            # detection is constant across the secondary occasions of a season
            p = mu[eta]
            secondary_max = int(secondary_counts.max())
            cells = (individual_count, occasion_count, secondary_max)
            p_cells = pt.ones(cells) * p[:, None, None]
            u_star = upstar(p_cells, secondary_counts)
            pm.Deterministic('pstar', u_star.mean(axis=0), dims='year')

            # present, not temporarily emigrated, and detected at least once
            pm.Bernoulli(
                'ch',
                p=z[ch_rows, ch_cols] * (1 - gamma) * u_star[ch_rows, ch_cols],
                observed=ch[ch_rows, ch_cols]
            )

            # withheld cells carry no information, so leave them out
            if obs_rows.size:
                pm.Bernoulli(
                    'obs',
                    p=p[obs_rows],
                    observed=obs[obs_rows, obs_occ, obs_sec]
                )

        return robust

    def simulate(self, N: int, grid, beta, gamma: float, mu, prop,
                 b: np.ndarray = None, max_age: int = 6) -> dict:
        '''Simulate a detection table under the robust design model.

        Every animal enters the population at some primary occasion, with an
        age drawn uniformly from 0 to max_age. Survival between years depends
        on the age class at the start of the interval. Each year, survivors are
        present with probability 1 - gamma, and present animals are detected
        on each secondary occasion with the rate of their mixture class.

        Args:
            N: superpopulation size
            grid: ordered list of (year, month) pairs
            beta: survival for age classes 1, 2, and 3
            gamma: probability of temporary emigration
            mu: detection rates for the two mixture classes
            prop: mixture weights
            b: entry probabilities for each primary occasion, uniform if None
            max_age: oldest age at entry
        Returns:
            dict with the detection table, the true number alive and present
              in each year, and the true number alive
        '''
        structure = primary_structure(grid)
        years = structure['years']
        secondary_counts = structure['secondary_counts']
        T = len(years)

        if b is None:
            b = np.full(T, 1 / T)
        if len(b) != T:
            raise ValueError('b must have one entry per primary occasion')

        # each animal has some entry (birth, imm.) time and age at entry
        entry_occasions = self.simulate_entry(b, N)
        entry_ages = self.rng.integers(0, max_age + 1, size=N)

        # Z in (0,1) of shape (N, T) indicating alive and entered
        Z = self.simulate_z(np.asarray(beta), entry_occasions, entry_ages, T)

        # temporary emigration, resampled every year
        present = self.rng.binomial(n=1, p=1 - gamma, size=(N, T)) * Z

        # class membership, then coin flips on every secondary occasion
        eta = self.rng.choice(2, size=N, p=prop)
        P = np.asarray(mu)[eta]
        captures = self.simulate_capture(P, len(grid))
        captures *= present[:, structure['primary_index']]

        # age at first capture, filter all zero histories
        first = (captures > 0).argmax(axis=1)
        first_primary = structure['primary_index'][first]
        was_seen = captures.any(axis=1)

        age_first_capture = entry_ages + first_primary - entry_occasions
        birth_year = years[first_primary] - age_first_capture

        columns = [f'{year}_{month:02d}' for year, month in grid]
        table = pd.DataFrame(captures[was_seen], columns=columns)
        table.insert(0, META_COLUMNS[0], np.arange(N)[was_seen])
        table.insert(1, META_COLUMNS[1], self.rng.choice(['F', 'M'], size=N)[was_seen])
        table.insert(2, META_COLUMNS[2], birth_year[was_seen])
        table.insert(3, META_COLUMNS[3], 1)
        table.insert(4, META_COLUMNS[4], age_first_capture[was_seen])

        out_dict = {'table': table, 'N': present.sum(axis=0),
                    'alive': Z.sum(axis=0)}

        return out_dict

    def simulate_entry(self, b, N):
        """Simulate occasion for animal's entry into population."""

        # matrix where one indicates entry
        entry_matrix = self.rng.multinomial(n=1, pvals=b, size=N)

        # index of the first nonzero value (entry)
        entry_occasions = entry_matrix.nonzero()[1]

        return entry_occasions

    def simulate_z(self, beta: np.ndarray, entry_occasions: np.ndarray,
                   entry_ages: np.ndarray, T: int) -> np.ndarray:
        """Simulate discrete latent state, alive and entered.

        Args:
            beta: survival for each of the three age classes
            entry_occasions: A 1D array with length N indicating the time of
              entry.
            entry_ages: A 1D array with length N of the age at entry
            T: number of primary occasions

        Returns:
            N by T matrix indicating that the animal is alive and entered
        """
        N = len(entry_occasions)
        Z = np.zeros((N, T), dtype=int)

        for i in range(N):
            Z[i, entry_occasions[i]] = 1

            for t in range(entry_occasions[i] + 1, T):

                # age class at the start of the interval
                age = entry_ages[i] + (t - 1) - entry_occasions[i]
                survived = self.rng.binomial(1, beta[age_class(age) - 1])

                # dead animals stay dead
                if not survived:
                    break

                Z[i, t] = 1

        return Z

    def simulate_capture(self, P: np.ndarray, occasion_count: int) -> np.ndarray:
        """Generate a binomial matrix indicating capture."""
        capture = [
            self.rng.binomial(n=1, p=P[i], size=occasion_count)
            for i in range(len(P))
        ]
        capture = np.stack(capture, axis=0)

        return capture

def sample_model(model: pm.Model, sample_kwargs: dict = None):
    '''Wrapper for sampling a model, discarding the tuning draws.'''
    with model:
        if sample_kwargs:
            idata = pm.sample(**sample_kwargs)
        else:
            idata = pm.sample()

    return idata

def check_convergence(idata: az.InferenceData,
                      rhat_threshold: float = 1.1) -> pd.DataFrame:
    '''Flags signs that the chains haven't converged.

    Problems are logged as warnings rather than raised: parameters with a
    large r_hat, divergent transitions, and chains whose low detection class
    sits above the pooled mean of the high detection class.

    Args:
        idata: inference data object from PyMC sampling
        rhat_threshold: largest acceptable r_hat
    Returns:
        pd.DataFrame from az.summary, with the number of divergences added
    '''
    summary = az.summary(idata, var_names=PARAMETERS)

    # r_hat is NaN with a single chain, which never compares greater
    for parameter in summary.index[summary.r_hat > rhat_threshold]:
        logging.warning(f'{parameter} has r_hat '
                        f'{summary.loc[parameter, "r_hat"]:.3f} above '
                        f'{rhat_threshold}')

    # report number of divergent transitions
    divergences = 0
    if 'diverging' in idata.sample_stats:
        divergences = int(idata.sample_stats.diverging.to_numpy().sum())
    if divergences:
        logging.warning(f'{divergences} divergent transitions')
    summary['divergences'] = divergences

    # chains that disagree on which class is which
    mu = idata.posterior['mu']
    chain_low = mu.sel(mixture=1).mean('draw').to_numpy()
    pooled_high = mu.sel(mixture=2).mean().item()
    switched = np.flatnonzero(chain_low > pooled_high)
    if switched.size:
        logging.warning(f'chains {switched.tolist()} disagree on the '
                        'ordering of the detection classes')

    return summary
