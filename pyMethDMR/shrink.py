import numpy as np
import pandas as pd
import ray
import math
from itertools import chain
from pyMethDMR.type_annotations import SpanStatFunction

def shrink_candidates(start_idx,end_idx,stat_function: SpanStatFunction,ncpu: int=1):
    """
    Shrink each candidate region to the sub-region with the strongest combined association.

    Parameters:
        start_idx (1D numpy array): Index of the first site of each candidate.
        end_idx (1D numpy array): Index of the last site of each candidate (inclusive).
        stat_function (function): Takes (start_idx, end_idx) of a span and returns its combined z-score.
        ncpu (integer, default: 1): Number of cpus to use. If > 1 will use a parallel backend with Ray.

    Returns:
        pandas dataframe: One row per candidate, in the order given, with the chosen sub-region
        ('start_idx', 'end_idx'), its z-score ('z', NaN for single-site candidates which are not tested)
        and the number of times stat_function was called for the candidate ('n_tests').
    """
    start_idx = np.asarray(start_idx, dtype=int)
    end_idx = np.asarray(end_idx, dtype=int)
    assert len(start_idx) == len(end_idx), "start_idx and end_idx must have the same length"
    assert isinstance(ncpu,int), "ncpu must be positive integer"
    assert ncpu>0, "ncpu must be positive integer"

    if ncpu > 1 and len(start_idx) > 1: #Use ray for parallel processing
        ray_initialized = ray.is_initialized()
        if not ray_initialized:
            ray.init(num_cpus=ncpu)
        chunksize = math.ceil(len(start_idx)/ncpu)
        result = ray.get([shrink_chunk.remote(start_idx[chunk:chunk+chunksize],end_idx[chunk:chunk+chunksize],stat_function)
                          for chunk in range(0,len(start_idx),chunksize)])
        result = list(chain.from_iterable(result))
        if not ray_initialized:
            ray.shutdown()

    else:
        result = [shrink_region(start,end,stat_function) for start,end in zip(start_idx,end_idx)]

    return pd.DataFrame(result, columns=['start_idx','end_idx','z','n_tests']).astype(
        {'start_idx': int, 'end_idx': int, 'z': 'float64', 'n_tests': int})

@ray.remote
def shrink_chunk(chunk_start_idx,chunk_end_idx,stat_function):
    """
    Shrink a chunk of candidate regions within a Ray worker.
    """
    return [shrink_region(start,end,stat_function) for start,end in zip(chunk_start_idx,chunk_end_idx)]

def shrink_region(start_idx,end_idx,stat_function):
    """
    Greedily trim sites off either end of a candidate while doing so increases |z|.

    At each step both one-site trims are scored and the one with the larger |z| is kept
    if it beats the current span (left trim wins ties). The walk stops when neither trim
    improves or a single site remains.

    Parameters:
        start_idx (integer): Index of the first site of the candidate.
        end_idx (integer): Index of the last site of the candidate (inclusive).
        stat_function (function): Takes (start_idx, end_idx) of a span and returns its combined z-score.

    Returns:
        tuple: (start_idx, end_idx, z, n_tests) of the chosen span, where n_tests is the number of
        calls made to stat_function.
    """
    start_idx = int(start_idx)
    end_idx = int(end_idx)
    if end_idx == start_idx:
        return start_idx, end_idx, np.nan, 0

    z = stat_function(start_idx,end_idx)
    n_tests = 1
    while end_idx > start_idx:
        z_left = stat_function(start_idx+1,end_idx)
        z_right = stat_function(start_idx,end_idx-1)
        n_tests += 2
        if abs(z_left) >= abs(z_right) and abs(z_left) > abs(z):
            start_idx += 1
            z = z_left
        elif abs(z_right) > abs(z):
            end_idx -= 1
            z = z_right
        else:
            break

    return start_idx, end_idx, z, n_tests
