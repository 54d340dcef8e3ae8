import pytest
import numpy as np
import os
import sys
scripts_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, scripts_path)
from pyMethDMR.candidates import find_candidates

np.random.seed(10)

@pytest.fixture
def three_sites():
    estimate = np.array([0.2, 0.3, 0.25])
    pval = np.array([0.01, 0.02, 0.01])
    chr = np.array(['1', '1', '1'])
    pos = np.array([100, 150, 600])
    return estimate, pval, chr, pos

@pytest.fixture
def random_sites():
    n = 500
    estimate = np.random.normal(size=n)
    pval = np.random.uniform(size=n)**2
    chr = np.repeat(['1', '2', '3'], [200, 200, 100])
    pos = np.concatenate([np.sort(np.random.randint(0, 40000, size=200)),
                          np.sort(np.random.randint(0, 40000, size=200)),
                          np.sort(np.random.randint(0, 20000, size=100))])
    return estimate, pval, chr, pos

def test_gap_500_merges(three_sites):
    candidates = find_candidates(*three_sites, maxgap=500)
    assert candidates['start_idx'].tolist() == [0]
    assert candidates['end_idx'].tolist() == [2]

def test_gap_400_splits(three_sites):
    candidates = find_candidates(*three_sites, maxgap=400)
    assert candidates['start_idx'].tolist() == [0, 2]
    assert candidates['end_idx'].tolist() == [1, 2]

def test_sign_change_splits(three_sites):
    estimate, pval, chr, pos = three_sites
    candidates = find_candidates(np.array([0.2, -0.3, -0.25]), pval, chr, pos)
    assert candidates['start_idx'].tolist() == [0, 1]
    assert candidates['end_idx'].tolist() == [0, 2]

def test_chromosome_change_splits(three_sites):
    estimate, pval, chr, pos = three_sites
    candidates = find_candidates(estimate, pval, np.array(['1', '2', '2']), np.array([100, 120, 140]))
    assert candidates['start_idx'].tolist() == [0, 1]
    assert candidates['end_idx'].tolist() == [0, 2]

def test_non_significant_breaks(three_sites):
    estimate, pval, chr, pos = three_sites
    candidates = find_candidates(estimate, np.array([0.01, 0.5, 0.01]), chr, pos, p_cutoff=0.05)
    assert candidates['start_idx'].tolist() == [0, 2]
    assert candidates['end_idx'].tolist() == [0, 2]

def test_cutoff_is_strict(three_sites):
    estimate, pval, chr, pos = three_sites
    candidates = find_candidates(estimate, pval, chr, pos, p_cutoff=0.02)
    assert candidates['start_idx'].tolist() == [0, 2]

def test_no_candidates(three_sites):
    estimate, pval, chr, pos = three_sites
    candidates = find_candidates(estimate, np.ones(3), chr, pos)
    assert candidates.empty
    assert list(candidates.columns) == ['start_idx', 'end_idx']

def test_candidates_cover_qualifying_sites(random_sites):
    """
    Test that candidates are ordered, non-overlapping and contain exactly the qualifying sites
    """
    estimate, pval, chr, pos = random_sites
    candidates = find_candidates(estimate, pval, chr, pos, maxgap=300, p_cutoff=0.1)
    covered = np.zeros(len(estimate), dtype=int)
    for start, end in zip(candidates['start_idx'], candidates['end_idx']):
        assert start <= end
        covered[start:end+1] += 1
        assert all(pval[start:end+1] < 0.1)
        assert len(set(np.sign(estimate[start:end+1]))) == 1
        assert len(set(chr[start:end+1])) == 1
        assert all(np.diff(pos[start:end+1]) <= 300)
    assert covered.max() <= 1
    assert np.array_equal(covered == 1, pval < 0.1)
    assert all(np.diff(candidates['start_idx']) > 0)

def test_candidates_are_maximal(random_sites):
    estimate, pval, chr, pos = random_sites
    candidates = find_candidates(estimate, pval, chr, pos, maxgap=300, p_cutoff=0.1)
    for end, next_start in zip(candidates['end_idx'][:-1], candidates['start_idx'][1:]):
        if next_start == end + 1:
            assert (np.sign(estimate[end]) != np.sign(estimate[next_start])
                    or chr[end] != chr[next_start]
                    or pos[next_start] - pos[end] > 300)

def test_length_mismatch(three_sites):
    estimate, pval, chr, pos = three_sites
    with pytest.raises(ValueError):
        find_candidates(estimate, pval[:2], chr, pos)
