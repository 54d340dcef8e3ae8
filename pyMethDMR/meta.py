import numpy as np
import pandas as pd
from functools import partial
from pyMethDMR.dmrObj import dmrObj
from pyMethDMR.candidates import find_candidates
from pyMethDMR.ivwfe import ivwfe_stats, ivwfe_getz, ivwfe_ma
from pyMethDMR.shrink import shrink_candidates
from pyMethDMR.collate import collate_stats, compute_region_stats, DMR_COLUMNS
from pyMethDMR.type_annotations import MetaResult

EWAS_COLUMNS = ['site','chr','pos','estimate','se','z','pval']

def dmrff_meta(objects,maxgap=500,p_cutoff=0.05,padjust_method="bonferroni",ncpu: int=1,verbose=False):
    """
    Identify differentially methylated regions by meta-analysing multiple independent datasets
    using inverse-variance weighted fixed effects meta-analysis.

    Site statistics are first combined across datasets (treating datasets as independent) to find
    candidate regions. Each candidate is then shrunk using, for every dataset, the correlated combination
    of that dataset's sites in the region, combined again across datasets.

    Parameters:
        objects (list of dmrObj): One prepared object per dataset (at least two).
        maxgap (int, default: 500): Maximum distance between consecutive sites in a region.
        p_cutoff (float, default: 0.05): Unadjusted p-value cutoff for membership in a candidate region.
        padjust_method (str, default: "bonferroni"): Multiple testing correction
            (passed to statsmodels.stats.multitest.multipletests).
        ncpu (int, default: 1): Number of CPU cores to use. Values > 1 will use Ray for parallelization.
        verbose (bool, default: False): Print progress messages.

    Returns:
        tuple: (ewas, dmrs)
            ewas (pandas dataframe): Meta-analysed site statistics over the sites present in every dataset,
                with columns 'site', 'chr', 'pos', 'estimate', 'se', 'z' and 'pval', sorted by position.
            dmrs (pandas dataframe): Region table (see dmrObj.cohort) whose indices refer to the rows of ewas.

    Raises:
        ValueError: If fewer than two datasets are given.

    Example:
        pre1 = dmrObj(est1, se1, chr1, pos1, methylation=meth1, site_names=ids1)
        pre2 = dmrObj(est2, se2, chr2, pos2, methylation=meth2, site_names=ids2)
        ewas, dmrs = dmrff_meta([pre1, pre2])
        dmrs[dmrs.padj < 0.05]
    """
    if not isinstance(objects, (list,tuple)) or len(objects) < 2:
        raise ValueError("Meta-analysis requires a list of at least two datasets")
    assert all([isinstance(obj,dmrObj) for obj in objects]), "objects must be dmrObj instances"
    assert isinstance(ncpu,int), "ncpu must be positive integer"
    assert ncpu>0, "ncpu must be positive integer"

    # sites present in every dataset, in the (sorted) order of the first
    sites = objects[0].site_names
    for obj in objects[1:]:
        sites = sites[np.isin(sites, obj.site_names)]

    if len(sites) == 0:
        if verbose:
            print("No sites are shared by all datasets.")
        dmrs = pd.DataFrame(columns=DMR_COLUMNS)
        dmrs.attrs['n_tests'] = 0
        return pd.DataFrame(columns=EWAS_COLUMNS), dmrs

    indices = [pd.Index(obj.site_names).get_indexer(sites) for obj in objects]
    estimate = np.column_stack([obj.estimate[idx] for obj,idx in zip(objects,indices)])
    se = np.column_stack([obj.se[idx] for obj,idx in zip(objects,indices)])

    ma = ivwfe_ma(estimate,se)
    ewas = pd.DataFrame({
        'site': sites,
        'chr': objects[0].chr[indices[0]],
        'pos': objects[0].pos[indices[0]],
        'estimate': ma['estimate'].to_numpy(),
        'se': ma['se'].to_numpy(),
        'z': ma['z'].to_numpy(),
        'pval': ma['pval'].to_numpy()
    }, columns=EWAS_COLUMNS)

    if verbose:
        print(f"Meta-analysed {len(ewas)} sites shared by {len(objects)} datasets.")

    candidates = find_candidates(ewas['estimate'],ewas['pval'],ewas['chr'],ewas['pos'],
                                 maxgap=maxgap,p_cutoff=p_cutoff,verbose=verbose)
    stats = shrink_candidates(candidates['start_idx'],candidates['end_idx'],
                              partial(meta_region_z,objects=objects,indices=indices),ncpu=ncpu)
    full = compute_region_stats(stats['start_idx'],stats['end_idx'],
                                partial(meta_region_stats,objects=objects,indices=indices),ncpu=ncpu)
    stats['estimate'] = full['estimate'].to_numpy()
    stats['se'] = full['se'].to_numpy()

    dmrs = collate_stats(stats,ewas['chr'],ewas['pos'],len(ewas),padjust_method=padjust_method)
    if verbose:
        print(f"Tested {len(dmrs)} regions, correcting for {dmrs.attrs['n_tests']} tests.")
    return ewas, dmrs

def dataset_region_stats(start_idx,end_idx,objects,indices):
    """
    Combined estimate and standard error of a region within each dataset.

    Each dataset contributes the correlated combination of its own sites lying between the region's
    first and last shared site.

    Parameters:
        start_idx (integer): Row of the meta-analysed site table where the region starts.
        end_idx (integer): Row of the meta-analysed site table where the region ends (inclusive).
        objects (list of dmrObj): Datasets.
        indices (list of 1D numpy arrays): For each dataset, the index of each meta-analysed site in that dataset.

    Returns:
        tuple: (estimate, se), 1D numpy arrays with one entry per dataset.
    """
    estimate = np.empty(len(objects))
    se = np.empty(len(objects))
    for i,(obj,idx) in enumerate(zip(objects,indices)):
        first, last = sorted((idx[start_idx], idx[end_idx]))
        stats = obj.region_stats(first,last)
        estimate[i], se[i] = stats['estimate'], stats['se']
    return estimate, se

def meta_region_stats(start_idx,end_idx,objects,indices) -> MetaResult:
    """
    Per-dataset region statistics combined across datasets as independent estimates.
    """
    return ivwfe_stats(*dataset_region_stats(start_idx,end_idx,objects,indices))

def meta_region_z(start_idx,end_idx,objects,indices) -> float:
    return ivwfe_getz(*dataset_region_stats(start_idx,end_idx,objects,indices))
