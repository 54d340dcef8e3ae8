"""
Type annotations for improved static type checking with mypy.

This module provides TypedDicts and other custom type definitions for use in
pyMethDMR: the fixed-column records of the site and region tables and the
signature of the span scoring functions passed to the shrinker.
"""

from typing import TypedDict, Union, Protocol
import numpy as np
import pandas as pd

# Common types used across the codebase
SiteID = Union[int, str]
SiteIndex = int
BandedCorrelation = np.ndarray
MethylationMatrix = Union[pd.DataFrame, np.ndarray]

# TypedDicts for structured records
class Site(TypedDict):
    site: SiteID
    chr: str
    pos: int
    estimate: float
    se: float
    pval: float

class MetaResult(TypedDict):
    B: float
    S: float
    estimate: float
    se: float
    z: float
    pval: float

class DMRRecord(TypedDict):
    chr: str
    start: int
    end: int
    num_sites: int
    estimate: float
    se: float
    z: float
    pval: float
    padj: float
    start_idx: SiteIndex
    end_idx: SiteIndex

# Protocol for functions scoring a contiguous span of sites
class SpanStatFunction(Protocol):
    def __call__(self, start_idx: SiteIndex, end_idx: SiteIndex) -> float: ...
