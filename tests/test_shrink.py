import pytest
import numpy as np
import pandas as pd
import os
import sys
scripts_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, scripts_path)
from pyMethDMR.shrink import *

class LookupZ:
    """
    z-score function backed by a table of spans, recording every call.
    """
    def __init__(self, z, default=0.0):
        self.z = z
        self.default = default
        self.calls = []

    def __call__(self, start_idx, end_idx):
        self.calls.append((start_idx, end_idx))
        return self.z.get((start_idx, end_idx), self.default)

def test_single_site_unchanged():
    stat = LookupZ({})
    assert shrink_region(7, 7, stat)[:2] == (7, 7)
    assert shrink_region(7, 7, stat)[3] == 0
    assert stat.calls == []

def test_left_trim_then_plateau():
    """
    z increases when the leftmost of five sites is dropped and stays flat afterwards:
    the four-site span is returned after one accepted trim.
    """
    stat = LookupZ({(0, 4): 2.0, (1, 4): 3.0, (0, 3): 1.5,
                    (2, 4): 3.0, (1, 3): 3.0})
    start, end, z, n_tests = shrink_region(0, 4, stat)
    assert (start, end) == (1, 4)
    assert z == 3.0
    assert n_tests == 5
    assert stat.calls == [(0, 4), (1, 4), (0, 3), (2, 4), (1, 3)]

def test_right_trim():
    stat = LookupZ({(0, 2): -2.0, (1, 2): -1.0, (0, 1): -2.5, (1, 1): -1.0, (0, 0): -2.4})
    assert shrink_region(0, 2, stat) == (0, 1, -2.5, 5)

def test_tie_prefers_left():
    stat = LookupZ({(0, 2): 1.0, (1, 2): 2.0, (0, 1): 2.0})
    assert shrink_region(0, 2, stat)[:2] == (1, 2)

def test_no_improvement_keeps_candidate():
    stat = LookupZ({(3, 6): 4.0}, default=1.0)
    assert shrink_region(3, 6, stat) == (3, 6, 4.0, 3)

def test_walk_to_single_site():
    z = {(0, 3): 1.0, (1, 3): 2.0, (2, 3): 3.0, (3, 3): 4.0}
    stat = LookupZ(z, default=0.0)
    start, end, best, n_tests = shrink_region(0, 3, stat)
    assert (start, end, best) == (3, 3, 4.0)
    assert n_tests == 7

def test_shrink_candidates():
    stat = LookupZ({(0, 4): 2.0, (1, 4): 3.0, (0, 3): 1.5, (2, 4): 3.0, (1, 3): 3.0})
    res = shrink_candidates(np.array([0, 6, 9]), np.array([4, 6, 10]), stat)
    assert isinstance(res, pd.DataFrame)
    assert list(res.columns) == ['start_idx', 'end_idx', 'z', 'n_tests']
    assert res['start_idx'].tolist() == [1, 6, 9]
    assert res['end_idx'].tolist() == [4, 6, 10]
    assert res['n_tests'].tolist() == [5, 0, 3]
    assert np.isnan(res['z'][1])

def test_shrink_no_candidates():
    res = shrink_candidates(np.array([], dtype=int), np.array([], dtype=int), LookupZ({}))
    assert res.empty
    assert list(res.columns) == ['start_idx', 'end_idx', 'z', 'n_tests']
