from typing import Optional

import os
import yaml
import logging
import argparse
import pandas as pd

def parse():
    parser = argparse.ArgumentParser(description="Writing config files")
    parser.add_argument('-s', "--study", default="debug")
    parser.add_argument('-y', "--years", nargs=2, type=int)
    parser.add_argument('-m', "--months", nargs='+', type=int)
    return parser.parse_args()

class Config(dict):
    def __getattr__(self, key):
        try:
            val = self[key]
        except KeyError:
            return super().__getattr__(key)
        if isinstance(val, dict):
            return Config(val)
        return val

def load_config(path: str, default_path: Optional[str]) -> Config:
    with open(path) as f:
        cfg = Config(yaml.full_load(f) or {})
    if default_path is not None:
        # set keys not included in `path` by default
        with open(default_path) as f:
            default_cfg = Config(yaml.full_load(f))
        for key, val in default_cfg.items():
            if key not in cfg:
                logging.debug(f"used default config {key}: {val}")
                cfg[key] = val
    return cfg

def occasion_grid(cfg: Config) -> list:
    """Ordered (year, month) pairs, from `grid` or `years` x `season_months`."""
    if cfg.get('grid'):
        return [(int(year), int(month)) for year, month in cfg.grid]

    if not cfg.get('years') or not cfg.get('season_months'):
        raise ValueError('config needs either grid or years and season_months')

    first_year, last_year = cfg.years
    return [(year, month) for year in range(first_year, last_year + 1)
            for month in cfg.season_months]

def load_censoring(cfg: Config) -> dict:
    """Mapping of id to last occasion, inline or from a csv (id, occasion)."""
    censoring = cfg.get('censoring')
    if not censoring:
        return {}

    if isinstance(censoring, dict):
        return {str(i): int(occasion) for i, occasion in censoring.items()}

    if not os.path.isfile(censoring):
        raise OSError(f'censoring file {censoring} does not exist')
    censored = pd.read_csv(censoring, dtype={'id': str})
    return dict(zip(censored['id'], censored['occasion'].astype(int)))

def write_config():

    args = parse()

    config_dir = 'config/studies'
    if not os.path.isdir(config_dir):
        os.makedirs(config_dir)

    study_dict = {'censoring': {}}
    if args.years:
        study_dict['years'] = args.years
    if args.months:
        study_dict['season_months'] = args.months

    yaml_path = f'{config_dir}/{args.study}.yaml'
    if os.path.isfile(yaml_path):
        raise NameError(f'Config: {yaml_path} already exists.')

    with open(yaml_path, 'w') as outfile:
        yaml.dump(study_dict, outfile, default_flow_style=False)

    return None

if __name__ == '__main__':
    write_config()
