"""Simulates trial_count detection tables for a study.

Wraps the simulation code in model.py. Each trial is written as a detection
table in the same format as the field data, alongside the true number of
animals alive and present in each year.

Typical usage example:
    $ python -m robustdesign.simulate --study debug
"""
import argparse
import json
import os
import logging

import numpy as np
from tqdm import tqdm

from config.config import load_config, occasion_grid
from robustdesign.model import RobustDesign

def parse():
    '''Parses arguments from the command line'''
    parser = argparse.ArgumentParser(description="Simulating study")
    parser.add_argument('-s', "--study", default="debug")
    return parser.parse_args()

class NumpyEncoder(json.JSONEncoder):
    '''Easy conversion between numpy and json.'''
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        return json.JSONEncoder.default(self, obj)

def main():
    '''Simulate trial_count datasets for the study.'''
    args = parse()
    simulate_study(args.study)

def simulate_study(study):
    """Simulate the datasets for a given study."""

    # load the cfg for the study
    config_path = f'config/studies/{study}.yaml'
    cfg = load_config(config_path, "config/default.yaml")

    # don't overwrite, unless we're writing the debug study
    study_dir = f'sim_data/{study}'
    if os.path.isdir(study_dir):
        if study != 'debug':
            raise NameError(f'Directory: {study_dir} already exists.')
    else:
        os.makedirs(study_dir)

    logging.basicConfig(filename=f'{study_dir}/simulate.log', level=logging.DEBUG)
    logging.debug(f'Simulating data for study: {study}')

    grid = occasion_grid(cfg)
    rd = RobustDesign(seed=cfg.seed)

    truth = {}
    for trial in tqdm(range(cfg.trial_count)):

        sim_results = rd.simulate(N=cfg.N, grid=grid, beta=cfg.beta,
                                  gamma=cfg.gamma, mu=cfg.mu, prop=cfg.prop)

        path = f'{study_dir}/trial_{trial}.csv'
        sim_results['table'].to_csv(path, index=False)

        truth[f'trial_{trial}'] = {'N': sim_results['N'],
                                   'alive': sim_results['alive']}

    # save the settings as well (perhaps redundant with config)
    settings = {'N': cfg.N, 'beta': cfg.beta, 'gamma': cfg.gamma,
                'mu': cfg.mu, 'prop': cfg.prop, 'truth': truth}
    with open(f'{study_dir}/study_settings.json', 'w') as f:
        json.dump(settings, f, cls=NumpyEncoder)

    logging.debug('study complete.')

if __name__ == '__main__':
    main()
