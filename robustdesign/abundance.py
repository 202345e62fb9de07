"""Abundance from the naive counts and the posterior detection probability.

Each posterior draw of pstar, the pooled probability of detecting an animal at
least once during a season, turns the naive count into a Horvitz-Thompson type
estimate, Nhat = caught / pstar. Draws where pstar is zero have no estimate and
are excluded, with the number of exclusions reported per occasion.
"""

import logging

import numpy as np
import pandas as pd
import arviz as az

def extract_pstar(idata: az.InferenceData) -> np.ndarray:
    '''Returns the (draw, occasion) matrix of pstar from all chains.'''
    pstar = az.extract(idata, var_names='pstar')
    return pstar.transpose('sample', ...).to_numpy()

def estimate_abundance(caught, pstar_samples, years=None) -> pd.DataFrame:
    """Estimate abundance for each primary occasion.

    Args:
        caught: number of animals detected at least once on each occasion
        pstar_samples: R by P matrix of posterior draws of pstar
        years: optional labels for the occasions
    Returns:
        pd.DataFrame with the posterior mean and the 95% interval of Nhat for
          each occasion, alongside the naive count and the excluded draws
    """
    # copies, so the inputs are never touched
    caught = np.array(caught, dtype=float)
    pstar_samples = np.array(pstar_samples, dtype=float)

    if pstar_samples.ndim != 2 or pstar_samples.shape[1] != len(caught):
        e = (f'pstar_samples must have shape (draws, {len(caught)}), '
             f'not {pstar_samples.shape}')
        raise ValueError(e)

    occasion_count = len(caught)
    if years is None:
        years = np.arange(1, occasion_count + 1)

    # NaN compares False, so those draws are excluded as well
    valid = pstar_samples > 0
    excluded = (~valid).sum(axis=0)

    estimate = np.full(occasion_count, np.nan)
    lower = np.full(occasion_count, np.nan)
    upper = np.full(occasion_count, np.nan)
    for t in range(occasion_count):

        n_hat = caught[t] / pstar_samples[valid[:, t], t]
        if n_hat.size == 0:
            logging.warning(f'no valid draws of pstar for occasion {t + 1}')
            continue

        estimate[t] = n_hat.mean()
        lower[t], upper[t] = np.quantile(n_hat, [0.025, 0.975])

    if excluded.any():
        logging.warning(f'excluded {excluded.sum()} draws with pstar of zero: '
                        f'{excluded.tolist()} by occasion')

    results = pd.DataFrame({
        'occasion': np.arange(1, occasion_count + 1),
        'year': years,
        'estimate': estimate,
        'lower': lower,
        'upper': upper,
        'naive': caught.astype(int),
        'excluded': excluded
    })

    return results
