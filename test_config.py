import pytest
import yaml

from config.config import Config, load_config, occasion_grid, load_censoring

def write_yaml(path, content):
    with open(path, 'w') as f:
        yaml.dump(content, f)
    return str(path)

def test_load_config_defaults(tmp_path):
    default_path = write_yaml(tmp_path / 'default.yaml', {'draws': 2000, 'tune': 500})
    path = write_yaml(tmp_path / 'study.yaml', {'draws': 100})

    cfg = load_config(path, default_path)

    assert cfg.draws == 100
    assert cfg.tune == 500

def test_nested_config():
    cfg = Config({'censoring': {'A': 2}})
    assert cfg.censoring.A == 2

def test_occasion_grid_from_years():
    cfg = Config({'years': [2011, 2012], 'season_months': [6, 7]})
    grid = occasion_grid(cfg)
    assert grid == [(2011, 6), (2011, 7), (2012, 6), (2012, 7)]

def test_occasion_grid_explicit():
    cfg = Config({'grid': [[2011, 6], [2011, 7], [2012, 6]]})
    assert occasion_grid(cfg) == [(2011, 6), (2011, 7), (2012, 6)]

def test_occasion_grid_missing():
    with pytest.raises(ValueError):
        occasion_grid(Config({'years': [2011, 2012]}))

def test_load_censoring_inline():
    cfg = Config({'censoring': {12: 3, 'B': '2'}})
    assert load_censoring(cfg) == {'12': 3, 'B': 2}

def test_load_censoring_csv(tmp_path):
    path = tmp_path / 'deaths.csv'
    path.write_text('id,occasion\n007,2\nB,1\n')

    censoring = load_censoring(Config({'censoring': str(path)}))

    assert censoring == {'007': 2, 'B': 1}

def test_load_censoring_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_censoring(Config({'censoring': str(tmp_path / 'missing.csv')}))

def test_no_censoring():
    assert load_censoring(Config({})) == {}
