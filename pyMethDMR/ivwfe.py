import numpy as np
import pandas as pd
from scipy import linalg
from scipy.stats import norm
import warnings
from pyMethDMR.type_annotations import MetaResult

# Combined estimate and variance reported for spans that cannot be combined
# (too many sites for the correlation window, or a failed covariance solve).
NULL_B = 0.0
NULL_S = 1.0

def ivwfe_stats(estimate,se,rho=None) -> MetaResult:
    """
    Combine the estimates of a contiguous span of sites by inverse-variance weighted fixed effects
    meta-analysis, accounting for correlation between the sites.

    Parameters:
        estimate (1D numpy array): Association estimate of each site in the span.
        se (1D numpy array): Standard error of each estimate.
        rho (optional: 2D numpy array): K x K correlation matrix of the sites (see correlation.extract_rho).
            If None the sites are treated as independent.

    Returns:
        dict: 'B' (combined estimate), 'S' (its variance), 'estimate' (= B), 'se' (= sqrt(S)),
        'z' (B / sqrt(S)) and 'pval' (two-sided normal p-value).

    Notes:
        With covariance Sigma = D rho D (D = diag(se)), the weights are Sigma^-1 1 normalised to sum to one,
        B = w'estimate and S = 1 / (1' Sigma^-1 1). If Sigma cannot be inverted, B = 0 and S = 1 are returned
        with a RuntimeWarning.
    """
    B, S = ivwfe_BS(estimate,se,rho)
    return meta_result(B,S)

def ivwfe_getz(estimate,se,rho=None) -> float:
    """
    z-score of the correlated fixed effects combination, without building the full result.
    """
    B, S = ivwfe_BS(estimate,se,rho)
    return B/np.sqrt(S)

def null_stats() -> MetaResult:
    return meta_result(NULL_B,NULL_S)

def meta_result(B,S) -> MetaResult:
    se = np.sqrt(S)
    z = B/se
    return {'B': B, 'S': S, 'estimate': B, 'se': se, 'z': z, 'pval': 2*norm.sf(abs(z))}

def ivwfe_BS(estimate,se,rho=None):
    """
    Combined estimate B and variance S of a span of (possibly correlated) sites.
    """
    estimate = np.asarray(estimate, dtype='float64')
    se = np.asarray(se, dtype='float64')

    if rho is None or is_diagonal(rho):
        var = se**2 if rho is None else se**2 * np.diag(rho)
        w = 1/var
        S = 1/np.sum(w)
        B = np.sum(w*estimate)*S
    else:
        sigma = se[:, np.newaxis] * rho * se[np.newaxis, :]
        try:
            sigma_inv_1 = linalg.solve(sigma, np.ones(len(se)))
        except (linalg.LinAlgError, ValueError):
            warnings.warn("Covariance matrix of region is singular. Reporting a null result for this region.",
                          RuntimeWarning)
            return NULL_B, NULL_S
        S = 1/np.sum(sigma_inv_1)
        B = np.dot(sigma_inv_1, estimate)*S

    if not (np.isfinite(B) and np.isfinite(S) and S > 0):
        warnings.warn("Combined variance of region is not positive. Reporting a null result for this region.",
                      RuntimeWarning)
        return NULL_B, NULL_S

    return B, S

def is_diagonal(mat):
    mat = np.asarray(mat)
    return np.count_nonzero(mat - np.diag(np.diag(mat))) == 0

def ivwfe_ma(estimate,se):
    """
    Combine independent estimates by inverse-variance weighted fixed effects meta-analysis.

    Parameters:
        estimate (2D numpy array): Estimates with one row per site (or region) and one column per dataset.
            A 1D array is treated as a single row.
        se (2D numpy array): Standard errors, same shape as estimate.

    Returns:
        pandas dataframe: Combined 'estimate', 'se', 'z' and 'pval' for each row. Missing (NaN) entries
        are left out of their row's combination.
    """
    estimate = np.atleast_2d(np.asarray(estimate, dtype='float64'))
    se = np.atleast_2d(np.asarray(se, dtype='float64'))
    if estimate.shape != se.shape:
        raise ValueError("'estimate' and 'se' must have the same shape")

    with np.errstate(divide='ignore', invalid='ignore'):
        w = 1/se**2
        missing = np.isnan(estimate) | np.isnan(w)
        w = np.where(missing, 0.0, w)
        S = 1/np.sum(w, axis=1)
        B = np.sum(w*np.where(missing, 0.0, estimate), axis=1)*S
        combined_se = np.sqrt(S)
        z = B/combined_se

    return pd.DataFrame({
        'estimate': B,
        'se': combined_se,
        'z': z,
        'pval': 2*norm.sf(np.abs(z))
    })
