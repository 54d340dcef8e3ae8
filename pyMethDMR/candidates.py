import numpy as np
import pandas as pd

def find_candidates(estimate,pval,chr,pos,maxgap=500,p_cutoff=0.05,verbose=False):
    """
    Find candidate regions: maximal runs of consecutive sites that are all nominally significant,
    share the sign of their estimates, lie on the same chromosome and are no more than `maxgap` apart.

    Sites must already be sorted by chromosome and position.

    Parameters:
        estimate (1D numpy array): Association estimate of each site.
        pval (1D numpy array): Association p-value of each site.
        chr (1D numpy array): Chromosome of each site.
        pos (1D numpy array): Genomic position of each site.
        maxgap (integer, default: 500): Maximum distance between consecutive sites in a region.
        p_cutoff (float, default: 0.05): Unadjusted p-value below which a site may join a region.
        verbose (boolean, default: False): Print the number of candidates found.

    Returns:
        pandas dataframe: One row per candidate with inclusive site indices 'start_idx' and 'end_idx',
        in genomic order. Single-site candidates are included.
    """
    estimate = np.asarray(estimate, dtype='float64')
    pval = np.asarray(pval, dtype='float64')
    chr = np.asarray(chr).astype(str)
    pos = np.asarray(pos)
    if not len(estimate) == len(pval) == len(chr) == len(pos):
        raise ValueError("'estimate', 'pval', 'chr' and 'pos' must all have one entry per site")
    assert maxgap>=0, "maxgap must be non-negative"
    assert 0<p_cutoff<=1, "p_cutoff must be in (0,1]"

    # +1/-1 for sites that may join a region, 0 otherwise
    sig = np.sign(estimate) * (pval < p_cutoff)
    sig = np.nan_to_num(sig, nan=0.0)

    start_idx = []
    end_idx = []
    open_start = None
    for i in range(len(sig)):
        if sig[i] == 0:
            open_start = None
            continue
        if (open_start is not None and sig[i] == sig[open_start] and chr[i] == chr[i-1]
                and pos[i] - pos[i-1] <= maxgap):
            end_idx[-1] = i
            continue
        open_start = i
        start_idx.append(i)
        end_idx.append(i)

    candidates = pd.DataFrame({'start_idx': np.array(start_idx, dtype=int),
                               'end_idx': np.array(end_idx, dtype=int)})

    if verbose:
        print(f"Found {len(candidates)} candidate regions from {int((sig != 0).sum())} significant sites.")

    return candidates
