"""Configuration of hierarchical models."""
from typing import NamedTuple

import numpy as onp

from hhmm.errors import InvalidArgument
from hhmm.gaussian_hmm import TRANSITION_MODES, INIT_METHODS

__all__ = [
    'ModelConfig',
    'validate_config',
]


class ModelConfig(NamedTuple):
    """Hyperparameters shared by every per-label sub-model.

    num_states: number of hidden states of each label's HMM
    transition_mode: 'left_right' or 'ergodic'
    num_epochs: maximum number of EM iterations per label
    tolerance: relative change of the log likelihood that stops EM early
    init_method: 'segments' or 'kmeans'
    likelihood_window: number of recent steps the streaming classifier
        averages its per-label log likelihoods over
    relative_regularization: fraction of the per-dimension data variance
        added to every covariance diagonal
    absolute_regularization: lower bound of that addition
    seed: seed of the random initialization
    verbose: print a progress bar over EM epochs
    """
    num_states: int = 5
    transition_mode: str = 'left_right'
    num_epochs: int = 10
    tolerance: float = 1e-3
    init_method: str = 'segments'
    likelihood_window: int = 5
    relative_regularization: float = 1e-2
    absolute_regularization: float = 1e-3
    seed: int = 0
    verbose: bool = False


def validate_config(config) -> ModelConfig:
    """Return `config` (or the default config if None), raising
    InvalidArgument on mistyped or out-of-range values."""
    if config is None:
        return ModelConfig()
    if not isinstance(config, ModelConfig):
        raise InvalidArgument(f'Expected a ModelConfig, received {type(config)}.')

    for name in ('num_states', 'num_epochs', 'likelihood_window', 'seed'):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, (int, onp.integer)):
            raise InvalidArgument(f'{name} must be an integer, received {value!r}.')
    for name in ('tolerance', 'relative_regularization', 'absolute_regularization'):
        value = getattr(config, name)
        if value is None and name == 'tolerance':
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float, onp.integer, onp.floating)) \
           or not onp.isfinite(value):
            raise InvalidArgument(f'{name} must be a finite real number, received {value!r}.')
    if not isinstance(config.verbose, (bool, onp.bool_)):
        raise InvalidArgument(f'verbose must be a boolean, received {config.verbose!r}.')

    if config.num_states < 1:
        raise InvalidArgument(f'num_states must be >= 1, received {config.num_states}.')
    if config.num_epochs < 1:
        raise InvalidArgument(f'num_epochs must be >= 1, received {config.num_epochs}.')
    if config.likelihood_window < 1:
        raise InvalidArgument(
            f'likelihood_window must be >= 1, received {config.likelihood_window}.')
    if config.transition_mode not in TRANSITION_MODES:
        raise InvalidArgument(
            f'transition_mode must be one of {TRANSITION_MODES}, received {config.transition_mode!r}.')
    if config.init_method not in INIT_METHODS:
        raise InvalidArgument(
            f'init_method must be one of {INIT_METHODS}, received {config.init_method!r}.')
    if config.absolute_regularization <= 0. or config.relative_regularization < 0.:
        raise InvalidArgument('Covariance regularization must be positive.')
    if config.tolerance is not None and config.tolerance < 0.:
        raise InvalidArgument(f'tolerance must be >= 0, received {config.tolerance}.')
    return config
