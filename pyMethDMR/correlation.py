import numpy as np
import pandas as pd
import ray
import math
from pyMethDMR.type_annotations import BandedCorrelation, MethylationMatrix

def site_correlations(meth: MethylationMatrix, window: int=20, chr=None, ncpu: int=1) -> BandedCorrelation:
    """
    Compute the correlation of each site's methylation levels with each of the next `window` sites.

    Parameters:
        meth (2D numpy array or pandas DataFrame): Methylation levels at each site (rows) for each sample (columns),
            with rows ordered by genomic position. Missing values (NaN) are excluded pairwise.
        window (integer, default: 20): Number of downstream neighbours to correlate each site with.
        chr (optional: 1D numpy array): Chromosome of each site. If given, correlations between sites on different
            chromosomes are left undefined (NaN).
        ncpu (integer, default: 1): Number of cpus to use. If > 1 will use a parallel backend with Ray.

    Returns:
        2D numpy array: Banded correlation matrix of shape (number sites, window). Entry [i, k-1] is the
        correlation between site i and site i+k, NaN where that neighbour does not exist or the correlation
        is undefined.
    """
    if isinstance(meth, pd.DataFrame):
        meth = meth.to_numpy()
    meth = np.asarray(meth, dtype='float64')
    if meth.ndim != 2:
        raise ValueError("'meth' must be a 2D matrix with one row per site and one column per sample")
    assert isinstance(window,int), "window must be positive integer"
    assert window>0, "window must be positive integer"
    assert isinstance(ncpu,int), "ncpu must be positive integer"
    assert ncpu>0, "ncpu must be positive integer"
    if chr is not None:
        chr = np.asarray(chr).astype(str)
        if len(chr) != meth.shape[0]:
            raise ValueError("Length of 'chr' should be equal to the number of rows (sites) in meth")

    nsites = meth.shape[0]
    chunksize = math.ceil(nsites/ncpu) if nsites > 0 else 1

    if ncpu > 1 and nsites > window: #Use ray for parallel processing
        ray_initialized = ray.is_initialized()
        if not ray_initialized:
            ray.init(num_cpus=ncpu)
        meth_id=ray.put(meth)
        chr_id=ray.put(chr)
        band = ray.get([band_correlations_chunk.remote(meth_id,chr_id,chunk,min(chunk+chunksize,nsites),window)
                        for chunk in range(0,nsites,chunksize)])
        band = np.vstack(band)
        if not ray_initialized:
            ray.shutdown()

    else:
        band = band_correlations(meth,window,chr)

    return band

@ray.remote
def band_correlations_chunk(meth_id,chr_id,start,stop,window=20):
    """
    Compute banded correlations for the rows start..stop-1 of a shared methylation matrix.

    The chunk is extended by `window` rows past `stop` so that the last rows of the chunk see the same
    neighbours they would in a sequential pass.

    Parameters:
        meth_id (ray ID): ID of global value produced by ray.put(), pointing to the methylation matrix.
        chr_id (ray ID): ID of global value produced by ray.put(), pointing to the site chromosomes (or None).
        start (integer): First row of the chunk.
        stop (integer): One past the last row of the chunk.
        window (integer, default: 20): Number of downstream neighbours.

    Returns:
        2D numpy array: Banded correlations of shape (stop-start, window).
    """
    end = min(stop+window, meth_id.shape[0])
    chunk_chr = chr_id[start:end] if chr_id is not None else None
    band = band_correlations(meth_id[start:end],window,chunk_chr)
    return band[:stop-start]

def band_correlations(meth,window=20,chr=None):
    """
    Compute banded correlations one offset at a time.

    Each offset k correlates every row with the row k positions below it, so the cost is
    proportional to the number of sites times the window rather than to all site pairs.
    """
    nsites = meth.shape[0]
    band = np.full((nsites, window), np.nan)
    for k in range(1, min(window, nsites-1)+1):
        r = rowwise_correlation(meth[:-k], meth[k:])
        if chr is not None:
            r[chr[:-k] != chr[k:]] = np.nan
        band[:nsites-k, k-1] = r
    return band

def rowwise_correlation(x,y,min_pairs=3):
    """
    Pearson correlation between matching rows of x and y, excluding missing values pairwise.

    Rows with fewer than `min_pairs` complete pairs, or with no variance, get NaN.
    """
    ok = ~(np.isnan(x) | np.isnan(y))
    npairs = ok.sum(axis=1)
    x = np.where(ok, x, 0.0)
    y = np.where(ok, y, 0.0)
    with np.errstate(divide='ignore', invalid='ignore'):
        x_mean = x.sum(axis=1)/npairs
        y_mean = y.sum(axis=1)/npairs
        dx = np.where(ok, x - x_mean[:, np.newaxis], 0.0)
        dy = np.where(ok, y - y_mean[:, np.newaxis], 0.0)
        r = (dx*dy).sum(axis=1)/np.sqrt((dx**2).sum(axis=1)*(dy**2).sum(axis=1))
    r[npairs < min_pairs] = np.nan
    return np.clip(r, -1, 1)

def extract_rho(band,diag=1.05):
    """
    Rebuild the dense correlation matrix of a contiguous span of sites from its rows of the banded structure.

    Parameters:
        band (2D numpy array): Rows of the banded correlation matrix for the K sites in the span.
        diag (float, default: 1.05): Value placed on the diagonal. Slightly above one to keep the
            covariance matrix invertible.

    Returns:
        2D numpy array: Symmetric K x K correlation matrix. Undefined correlations are set to 0.

    Raises:
        ValueError: If the span needs neighbours further apart than the band stores (K > window + 1).
    """
    band = np.atleast_2d(band)
    n = band.shape[0]
    if n - 1 > band.shape[1]:
        raise ValueError(f"A span of {n} sites needs a correlation window of at least {n-1}, have {band.shape[1]}")
    rho = np.diag(np.repeat(float(diag), n))
    for i in range(n-1):
        vals = np.nan_to_num(band[i, :n-i-1], nan=0.0)
        rho[i, i+1:] = vals
        rho[i+1:, i] = vals
    return rho
