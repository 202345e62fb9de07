"""Estimate abundance for a study, or for every simulated trial of a study.

The detection table is converted into capture histories, the robust design
model is sampled with PyMC, and the posterior draws of pstar turn the naive
counts into abundance estimates. Inference data, the convergence summary, and
the abundance table are written to the results directory. For simulation
studies, each trial is run in parallel while the chains are run sequentially.

The script is called from the command line with the following arguments:
    -s: study name (default: debug)
    -d: path to the detection table (default: input/<study>.csv)
    -t: estimate the simulated trials in sim_data/<study> instead

Typical usage example:
    $ python -m robustdesign.estimate --study debug --trials
"""

from multiprocessing import Pool, cpu_count

import argparse
import os
import logging

import pandas as pd

from config.config import load_config, occasion_grid, load_censoring
from robustdesign.transform import read_detection_table, transform
from robustdesign.model import RobustDesign, sample_model, check_convergence
from robustdesign.abundance import estimate_abundance, extract_pstar

def parse():
    '''Parse arguments from the command line.'''
    parser = argparse.ArgumentParser(description="Estimating abundance")
    parser.add_argument('-s', "--study", default="debug")
    parser.add_argument('-d', "--data", default=None)
    parser.add_argument('-t', "--trials", action='store_true')
    return parser.parse_args()

def main():
    '''Estimate abundance for the study, or each of its simulated trials.'''
    args = parse()

    # add a directory for the output
    results_dir = f'results/{args.study}'
    os.makedirs(results_dir, exist_ok=True)

    logging.basicConfig(filename=f'{results_dir}/{args.study}.log',
                        level=logging.INFO)

    study = Study(args.study, data_path=args.data)
    if args.trials:
        study.estimate_trials()
    else:
        study.estimate(study.data_path, results_dir)

class Study:
    '''Convenience class for estimating abundance in a study.'''
    def __init__(self, study, data_path=None) -> None:
        self.study = study
        self.data_path = data_path or f'input/{study}.csv'
        self.data_dir = f'sim_data/{study}'
        self.results_dir = f'results/{study}'
        self.config_path = f'config/studies/{study}.yaml'

        self.cfg = load_config(self.config_path, "config/default.yaml")

        # arguments for mcmc sampler
        self.sample_kwargs = {
            'draws': self.cfg.draws,
            'tune': self.cfg.tune,
            'chains': self.cfg.chains,
            'cores': self.cfg.cores,
            'random_seed': self.cfg.seed,
            'progressbar': False
        }

    def estimate(self, data_path, results_dir) -> pd.DataFrame:
        '''Sample the model for one detection table and summarize abundance.'''
        logging.info(f'Estimating {data_path}...')

        if not os.path.isfile(data_path):
            raise OSError(f'{data_path} does not exist')

        # configuration errors surface before any computation
        grid = occasion_grid(self.cfg)
        censoring = load_censoring(self.cfg)
        table = read_detection_table(data_path)
        data = transform(table, grid, censoring)

        # mcmc sampling
        model = RobustDesign().compile_pymc_model(data)
        idata = sample_model(model, self.sample_kwargs)

        os.makedirs(results_dir, exist_ok=True)
        idata.to_json(f'{results_dir}/idata.json')

        summary = check_convergence(idata, self.cfg.rhat_threshold)
        summary.to_csv(f'{results_dir}/summary.csv')

        abundance = estimate_abundance(data['caught'], extract_pstar(idata),
                                       years=data['years'])
        abundance.to_csv(f'{results_dir}/abundance.csv', index=False)

        logging.info(f'Finished {data_path}')

        return abundance

    def estimate_trials(self):
        '''Estimate abundance for every simulated trial of the study.'''
        files = [f'{self.data_dir}/trial_{t}.csv'
                 for t in range(self.cfg.trial_count)]
        if not all(os.path.isfile(f) for f in files):
            e = f'{self.data_dir} missing data for each trial in {self.cfg.trial_count}'
            raise OSError(e)

        # trials run in parallel, so the chains can't
        self.sample_kwargs['cores'] = 1

        counts = max(cpu_count() - 2, 1)
        with Pool(counts) as p:
            p.map(self.run_trial, range(self.cfg.trial_count))

    def run_trial(self, trial):
        '''Estimate abundance for a single simulated trial.'''
        print(f'Sampling for trial {trial} of {self.study}...')

        data_path = f'{self.data_dir}/trial_{trial}.csv'
        results_dir = f'{self.results_dir}/trial_{trial}'

        return self.estimate(data_path, results_dir)

if __name__ == '__main__':
    main()
