"""Gaussian Hidden Markov Model using normalized gaussian statistics and
under a normal inverse Wishart (NIW) prior, fitted on variable-length
sequences.

The model is kept purely functional: parameters, prior parameters and
statistics are NamedTuples of arrays, and every algorithm is a function of
them. The hierarchical classifier stacks one such model per label.
"""

from ._model import(
    Parameters,
    PriorParameters,
    NormalizedGaussianHMMStatistics,
    log_likelihood,
    sample,
)

from ._algorithms import (
    e_step,
    m_step,
    constrain,
    check_psd,
    fit_em,
    forward_step,
    filter_sequence,
)

from ._initialization import(
    TRANSITION_MODES,
    INIT_METHODS,
    topology_masks,
    initialize_model,
    initialize_prior_from_scalar_values,
    initialize_statistics,
)
