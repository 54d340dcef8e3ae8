import numpy as np
import pandas as pd
import ray
import math
from itertools import chain
from scipy.stats import norm
from statsmodels.stats.multitest import multipletests
from pyMethDMR.type_annotations import DMRRecord

DMR_COLUMNS = list(DMRRecord.__annotations__)

def compute_region_stats(start_idx,end_idx,stat_function,ncpu=1):
    """
    Recompute the full combined statistics of each shrunk region.

    Parameters:
        start_idx (1D numpy array): Index of the first site of each region.
        end_idx (1D numpy array): Index of the last site of each region (inclusive).
        stat_function (function): Takes (start_idx, end_idx) of a span and returns a dict with
            'estimate' and 'se' (see ivwfe.ivwfe_stats).
        ncpu (integer, default: 1): Number of cpus to use. If > 1 will use a parallel backend with Ray.

    Returns:
        pandas dataframe: 'estimate' and 'se' of each region, in the order given.
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
        full = ray.get([region_stats_chunk.remote(start_idx[chunk:chunk+chunksize],end_idx[chunk:chunk+chunksize],stat_function)
                        for chunk in range(0,len(start_idx),chunksize)])
        full = list(chain.from_iterable(full))
        if not ray_initialized:
            ray.shutdown()

    else:
        full = [stat_function(start,end) for start,end in zip(start_idx,end_idx)]

    return pd.DataFrame({
        'estimate': np.array([stats['estimate'] for stats in full], dtype='float64'),
        'se': np.array([stats['se'] for stats in full], dtype='float64')
    })

@ray.remote
def region_stats_chunk(chunk_start_idx,chunk_end_idx,stat_function):
    return [stat_function(start,end) for start,end in zip(chunk_start_idx,chunk_end_idx)]

def collate_stats(stats,chr,pos,n_sites,padjust_method="bonferroni"):
    """
    Assemble the final table of regions and correct their p-values for every test performed.

    Parameters:
        stats (pandas dataframe): One row per shrunk region with columns 'start_idx', 'end_idx', 'n_tests',
            'estimate' and 'se'.
        chr (1D numpy array): Chromosome of each site of the sorted site table.
        pos (1D numpy array): Genomic position of each site of the sorted site table.
        n_sites (integer): Number of sites tested individually.
        padjust_method (string, default: "bonferroni"): Multiple testing correction
            (passed to statsmodels.stats.multitest.multipletests).

    Returns:
        pandas dataframe: Columns 'chr', 'start', 'end', 'num_sites', 'estimate', 'se', 'z', 'pval', 'padj',
        'start_idx' and 'end_idx', one row per region in the order of stats. The number of tests used for the
        correction (n_sites plus all region tests) is stored in attrs['n_tests'].
    """
    chr = np.asarray(chr).astype(str)
    pos = np.asarray(pos)
    start_idx = stats['start_idx'].to_numpy(dtype=int)
    end_idx = stats['end_idx'].to_numpy(dtype=int)
    estimate = stats['estimate'].to_numpy(dtype='float64')
    se = stats['se'].to_numpy(dtype='float64')
    n_tests = int(n_sites + stats['n_tests'].sum())

    with np.errstate(divide='ignore', invalid='ignore'):
        z = estimate/se
    pval = 2*norm.sf(np.abs(z))

    dmrs = pd.DataFrame({
        'chr': chr[start_idx],
        'start': pos[start_idx],
        'end': pos[end_idx],
        'num_sites': end_idx - start_idx + 1,
        'estimate': estimate,
        'se': se,
        'z': z,
        'pval': pval,
        'padj': p_adjust(pval, padjust_method, n_tests),
        'start_idx': start_idx,
        'end_idx': end_idx
    }, columns=DMR_COLUMNS)
    dmrs.attrs['n_tests'] = n_tests
    return dmrs

def p_adjust(pvals,method="bonferroni",n=None):
    """
    Adjust p-values for multiple testing when more tests were performed than p-values are reported.

    The reported p-values are adjusted as if they were part of n tests whose remaining p-values are all 1,
    which for bonferroni, holm and fdr_bh is the same as adjusting with n comparisons.

    Parameters:
        pvals (1D numpy array): P-values to adjust. NaN values are left as NaN.
        method (string, default: "bonferroni"): Method passed to statsmodels.stats.multitest.multipletests.
        n (optional: integer): Total number of tests. Defaults to the number of non-missing p-values.

    Returns:
        1D numpy array: Adjusted p-values.
    """
    pvals = np.asarray(pvals, dtype='float64')
    ok = ~np.isnan(pvals)
    if n is None:
        n = int(ok.sum())
    if n < ok.sum():
        raise ValueError(f"Number of tests ({n}) is smaller than the number of p-values ({int(ok.sum())})")

    padj = np.full(pvals.shape, np.nan)
    if ok.any():
        padded = np.concatenate([pvals[ok], np.ones(n - ok.sum())])
        padj[ok] = multipletests(padded, method=method)[1][:ok.sum()]
    return padj

def region_sites(dmrs,sites):
    """
    List the sites making up each region.

    Parameters:
        dmrs (pandas dataframe): Region table with 'start_idx' and 'end_idx' columns (see collate_stats).
        sites (pandas dataframe): The sorted site table the indices refer to.

    Returns:
        pandas dataframe: One row per (region, site) pair: a 'region' column holding the region's row label
        in dmrs, followed by the columns of sites.
    """
    members = [sites.iloc[start:end+1].assign(region=region)
               for region,start,end in zip(dmrs.index,dmrs['start_idx'],dmrs['end_idx'])]
    if len(members) == 0:
        return pd.DataFrame(columns=['region'] + list(sites.columns))
    members = pd.concat(members, ignore_index=True)
    return members[['region'] + list(sites.columns)]
