"""
Scale Validation Package
========================
Modules:
    config            – Configuration loading + study design constants
    exceptions        – Error types shared by every stage
    data_loading      – CSV loading, consent filter, Hampel outlier removal
    descriptives      – Sociodemographic, satisfaction and item summaries
    preprocessing     – Random EFA/CFA split
    correlation       – Polychoric correlation matrix
    assumptions       – Normality, factorability, ordinal alpha
    factor_retention  – Number-of-factors criteria
    efa               – Exploratory factor analysis (WLS + rotation)
    cfa               – Confirmatory factor analysis (semopy)
    validity          – AVE, CR, Fornell-Larcker, HTMT
    network           – Exploratory graph analysis and bootEGA
    plots             – Figures
    report            – Markdown validation report
"""

from scale_validation import config
from scale_validation import exceptions
from scale_validation import data_loading
from scale_validation import descriptives
from scale_validation import preprocessing
from scale_validation import correlation
from scale_validation import assumptions
from scale_validation import factor_retention
from scale_validation import efa
from scale_validation import cfa
from scale_validation import validity
from scale_validation import network
