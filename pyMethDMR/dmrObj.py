import numpy as np
import pandas as pd
from scipy.stats import norm
from pyMethDMR.correlation import site_correlations, extract_rho
from pyMethDMR.candidates import find_candidates
from pyMethDMR.ivwfe import ivwfe_stats, ivwfe_getz, null_stats
from pyMethDMR.shrink import shrink_candidates
from pyMethDMR.collate import collate_stats, compute_region_stats
from pyMethDMR.type_annotations import MetaResult, Site

class dmrObj():
    """
    A Python class holding the site-level association statistics of one dataset, sorted by genomic position,
    together with the correlation between neighbouring sites needed to combine them into regions.
    These include:
        Combining the statistics of any contiguous span of sites, accounting for their correlation: region_stats().
        Finding differentially methylated regions within this dataset: cohort().

    A list of dmrObj's from independent datasets can be meta-analysed with pyMethDMR.meta.dmrff_meta().
    """

    def __init__(self,estimate,se,chr,pos,methylation=None,site_names=None,p_value=None,rho=None,
                 window: int=20,diag: float=1.05,ncpu: int=1):
        """
        Initialize dmrObj Class with site statistics and configuration parameters.

        Parameters:
            estimate (1D numpy array): Association estimate at each site.
            se (1D numpy array): Standard error of each estimate. Must be positive.
            chr (1D numpy array): Chromosome of each site.
            pos (1D numpy array): Genomic position of each site.
            methylation (2D numpy array or pandas DataFrame, optional): Methylation levels at each site (rows)
                for each sample (columns), rows in the same order as estimate. Used to compute the correlation
                between neighbouring sites.
            site_names (1D numpy array or None, default: None): Unique identifier of each site.
                If None, sites are named by their input index.
            p_value (1D numpy array or None, default: None): Association p-value at each site.
                If None, computed from estimate/se using the normal distribution.
            rho (2D numpy array or None, default: None): Precomputed banded correlation matrix
                (see correlation.site_correlations). Only accepted for sites already sorted by chromosome
                and position. Used instead of methylation.
            window (int, default: 20): Number of downstream neighbours each site is correlated with.
                Regions of more than window+1 sites are given a null result.
            diag (float, default: 1.05): Diagonal of reconstructed correlation matrices.
            ncpu (int, default: 1): Number of CPU cores used to compute correlations.
                Values > 1 will use Ray for parallelization.

        Raises:
            ValueError: If the inputs have inconsistent lengths or row counts, site names are not unique,
                a standard error is not positive, or neither methylation nor rho is supplied.
            AssertionError: If configuration parameters are invalid.
        """
        assert isinstance(window,int), "window must be positive integer"
        assert window>0, "window must be positive integer"
        assert diag>=1, "diag must be at least 1"

        estimate = np.asarray(estimate, dtype='float64')
        se = np.asarray(se, dtype='float64')
        chr = np.asarray(chr).astype(str)
        pos = np.asarray(pos).astype('int64')
        nsites = len(estimate)
        if not len(se) == len(chr) == len(pos) == nsites:
            raise ValueError("'estimate', 'se', 'chr' and 'pos' must all have one entry per site")
        if site_names is None:
            site_names = np.arange(nsites)
        site_names = np.asarray(site_names)
        if len(site_names) != nsites:
            raise ValueError("Length of 'site_names' should be equal to the number of sites")
        if len(pd.unique(site_names)) != nsites:
            raise ValueError("'site_names' must be unique")
        if not np.all(se > 0):
            raise ValueError("Standard errors must be positive")
        if p_value is None:
            p_value = 2*norm.sf(np.abs(estimate/se))
        p_value = np.asarray(p_value, dtype='float64')
        if len(p_value) != nsites:
            raise ValueError("Length of 'p_value' should be equal to the number of sites")

        if methylation is None and rho is None:
            raise ValueError("Either 'methylation' or 'rho' must be supplied")
        if methylation is not None:
            if isinstance(methylation, pd.DataFrame):
                methylation = methylation.to_numpy()
            methylation = np.asarray(methylation, dtype='float64')
            if methylation.ndim != 2 or methylation.shape[0] != nsites:
                raise ValueError(f"'methylation' must have one row per site: {nsites} sites but "
                                 f"{methylation.shape[0] if methylation.ndim > 0 else 0} rows")

        order = pd.DataFrame({'chr': chr, 'pos': pos}).sort_values(by=['chr','pos']).index.to_numpy()

        if rho is not None:
            rho = np.asarray(rho, dtype='float64')
            if rho.ndim != 2 or rho.shape[0] != nsites:
                raise ValueError(f"'rho' must have one row per site: {nsites} sites but {rho.shape[0]} rows")
            if not np.array_equal(order, np.arange(nsites)):
                raise ValueError("A precomputed 'rho' requires sites sorted by chromosome and position")
        else:
            rho = site_correlations(methylation[order],window=window,chr=chr[order],ncpu=ncpu)

        self.site_names = self.read_only(site_names[order])
        self.chr = self.read_only(chr[order])
        self.pos = self.read_only(pos[order])
        self.estimate = self.read_only(estimate[order])
        self.se = self.read_only(se[order])
        self.pval = self.read_only(p_value[order])
        self.rho = self.read_only(rho)
        self.nsites = nsites
        self.window = rho.shape[1]
        self.diag = diag

    @staticmethod
    def read_only(array):
        array = np.array(array)
        array.flags.writeable = False
        return array

    @property
    def sites(self):
        """
        Sorted site table with columns 'site', 'chr', 'pos', 'estimate', 'se' and 'pval'.
        """
        return pd.DataFrame({
            'site': self.site_names,
            'chr': self.chr,
            'pos': self.pos,
            'estimate': self.estimate,
            'se': self.se,
            'pval': self.pval
        }, columns=list(Site.__annotations__))

    def region_inputs(self,start_idx,end_idx):
        """
        Estimates, standard errors and dense correlation matrix of the sites start_idx..end_idx (inclusive)
        of the sorted table, or None for spans longer than window+1 sites, whose correlations are unknown.
        """
        if end_idx - start_idx > self.window:
            return None
        idx = slice(start_idx, end_idx+1)
        return self.estimate[idx], self.se[idx], extract_rho(self.rho[idx],self.diag)

    def region_stats(self,start_idx,end_idx) -> MetaResult:
        """
        Correlated fixed effects meta-analysis of the sites start_idx..end_idx (inclusive) of the sorted table.

        Spans longer than window+1 sites get the null result (B=0, S=1).

        Returns:
            dict: 'B', 'S', 'estimate', 'se', 'z' and 'pval' (see ivwfe.ivwfe_stats).
        """
        inputs = self.region_inputs(start_idx,end_idx)
        if inputs is None:
            return null_stats()
        return ivwfe_stats(*inputs)

    def region_z(self,start_idx,end_idx) -> float:
        inputs = self.region_inputs(start_idx,end_idx)
        if inputs is None:
            return null_stats()['z']
        return ivwfe_getz(*inputs)

    def cohort(self,maxgap=500,p_cutoff=0.05,padjust_method="bonferroni",ncpu: int=1,verbose=False):
        """
        Identify differentially methylated regions within this dataset.

        Parameters:
            maxgap (int, default: 500): Maximum distance between consecutive sites in a region.
            p_cutoff (float, default: 0.05): Unadjusted p-value cutoff for membership in a candidate region.
            padjust_method (str, default: "bonferroni"): Multiple testing correction
                (passed to statsmodels.stats.multitest.multipletests).
            ncpu (int, default: 1): Number of CPU cores to use for shrinking candidate regions.
                Values > 1 will use Ray for parallelization.
            verbose (bool, default: False): Print progress messages.

        Returns:
            pandas dataframe: One row per candidate region, in genomic order, with columns 'chr', 'start', 'end',
            'num_sites', 'estimate', 'se', 'z', 'pval', 'padj', 'start_idx' and 'end_idx'.
            Indices refer to the sorted site table (self.sites).

        Notes:
            The p-value correction counts one test per site plus one per sub-region scored while shrinking.
            Single-site regions are returned too; filter on num_sites and padj as needed, e.g.
            dmrs[(dmrs.num_sites > 1) & (dmrs.padj < 0.05)]
        """
        assert isinstance(ncpu,int), "ncpu must be positive integer"
        assert ncpu>0, "ncpu must be positive integer"

        candidates = find_candidates(self.estimate,self.pval,self.chr,self.pos,
                                     maxgap=maxgap,p_cutoff=p_cutoff,verbose=verbose)
        stats = shrink_candidates(candidates['start_idx'],candidates['end_idx'],self.region_z,ncpu=ncpu)
        full = compute_region_stats(stats['start_idx'],stats['end_idx'],self.region_stats,ncpu=ncpu)
        stats['estimate'] = full['estimate'].to_numpy()
        stats['se'] = full['se'].to_numpy()

        dmrs = collate_stats(stats,self.chr,self.pos,self.nsites,padjust_method=padjust_method)
        if verbose:
            print(f"Tested {len(dmrs)} regions, correcting for {dmrs.attrs['n_tests']} tests.")
        return dmrs

def dmrff(estimate,se,methylation,chr,pos,site_names=None,p_value=None,maxgap=500,p_cutoff=0.05,
          padjust_method="bonferroni",window: int=20,ncpu: int=1,verbose=False):
    """
    Identify differentially methylated regions from site-level association statistics and the
    methylation matrix they were computed from.

    Parameters:
        estimate (1D numpy array): Association estimate at each site.
        se (1D numpy array): Standard error of each estimate.
        methylation (2D numpy array or pandas DataFrame): Methylation levels at each site (rows) for each sample (columns).
        chr (1D numpy array): Chromosome of each site.
        pos (1D numpy array): Genomic position of each site.
        site_names (optional: 1D numpy array): Unique identifier of each site.
        p_value (optional: 1D numpy array): Association p-value at each site.
        maxgap (int, default: 500): Maximum distance between consecutive sites in a region.
        p_cutoff (float, default: 0.05): Unadjusted p-value cutoff for membership in a candidate region.
        padjust_method (str, default: "bonferroni"): Multiple testing correction.
        window (int, default: 20): Number of downstream neighbours each site is correlated with.
        ncpu (int, default: 1): Number of CPU cores to use. Values > 1 will use Ray for parallelization.
        verbose (bool, default: False): Print progress messages.

    Returns:
        pandas dataframe: Region table as returned by dmrObj.cohort().

    Example:
        dmrs = dmrff(estimate, se, methylation, chr, pos)
        dmrs[(dmrs.num_sites > 1) & (dmrs.padj < 0.05)]
    """
    obj = dmrObj(estimate,se,chr,pos,methylation=methylation,site_names=site_names,p_value=p_value,
                 window=window,ncpu=ncpu)
    return obj.cohort(maxgap=maxgap,p_cutoff=p_cutoff,padjust_method=padjust_method,ncpu=ncpu,verbose=verbose)
