"""Hierarchical HMM classifier: one Gaussian HMM per label.

This is the sequence model the bridge drives. Each label owns a Gaussian HMM
fitted on that label's phrases; on top of them sits a prior over labels.
Classification is streaming: `reset` puts every sub-model back in its
initial state, and each `filter` call advances all sub-models by one
observation and re-ranks the labels.
"""
import logging
from typing import Dict, List, NamedTuple, Optional

import numpy as onp
import jax
import jax.numpy as jnp
import jax.random as jr
from jax import jit, vmap
from jax.tree_util import tree_map
from chex import dataclass, Array

from hhmm import gaussian_hmm
from hhmm.config import ModelConfig, validate_config
from hhmm.data import TrainingSet
from hhmm.errors import InvalidArgument, ModelFitError, FormatError

logger = logging.getLogger(__name__)

__all__ = [
    'DOCUMENT_FORMAT',
    'ClassificationResult',
    'DecodeState',
    'HierarchicalHMM',
]

DOCUMENT_FORMAT = 'HierarchicalHMM'


class ClassificationResult(NamedTuple):
    """Ranking of the labels after the latest observation.

    labels: labels, most likely first
    likelihoods: normalized label likelihoods, same order
    log_likelihoods: per-label log likelihood averaged over the likelihood
        window, same order
    progress: per-label expected position within the label's state chain,
        0 at the first state and 1 at the last, same order
    """
    labels: List[str]
    likelihoods: Array
    log_likelihoods: Array
    progress: Array

    @property
    def likeliest(self) -> Optional[str]:
        return self.labels[0] if self.labels else None

    @classmethod
    def empty(cls):
        return cls([], onp.zeros(0), onp.zeros(0), onp.zeros(0))


@dataclass
class DecodeState:
    """Forward-recursion state of every label, stacked along axis 0."""
    predicted_probs: Array      # (L, K)
    filtered_probs: Array       # (L, K)
    window: Array               # (W, L) recent per-step log likelihoods
    num_steps: Array            # ()

@jit
def _decode_step(stacked_params, state, emission):
    """Advance every label by one emission.

    Returns the updated DecodeState and the windowed log likelihood of
    each label.
    """
    filtered_probs, predicted_probs, log_norms = vmap(
        gaussian_hmm.forward_step, in_axes=(0, 0, None)
    )(stacked_params, state.predicted_probs, emission)

    window_size = state.window.shape[0]
    window = state.window.at[state.num_steps % window_size].set(log_norms)
    num_steps = state.num_steps + 1
    smoothed = window.sum(axis=0) / jnp.minimum(num_steps, window_size)

    return DecodeState(predicted_probs=predicted_probs,
                       filtered_probs=filtered_probs,
                       window=window,
                       num_steps=num_steps), smoothed


class HierarchicalHMM:
    """Collection of per-label Gaussian HMMs with a streaming classifier.

    Args:
        config (ModelConfig): Hyperparameters. Defaults to ModelConfig().

    Attributes:
        models: label -> gaussian_hmm.Parameters, in training (or document) order
        prior: prior probability of each label, same order
        training_log_probs: label -> marginal log likelihood per EM epoch
        dimension: input dimension, fixed by the first training or restore
        results: ClassificationResult of the latest `filter` call
    """

    def __init__(self, config: Optional[ModelConfig]=None):
        self.config = validate_config(config)
        self.models: Dict[str, gaussian_hmm.Parameters] = {}
        self.prior = onp.zeros(0)
        self.training_log_probs: Dict[str, Array] = {}
        self.dimension: Optional[int] = None
        self.column_names: Optional[List[str]] = None
        self.results = ClassificationResult.empty()
        self._stacked = None
        self._state = None

    @property
    def labels(self) -> List[str]:
        return list(self.models)

    @property
    def is_trained(self) -> bool:
        return len(self.models) > 0

    # ------------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------------

    def fit(self, training_set: TrainingSet):
        """Fit one sub-model per label present in `training_set`.

        The model is only modified once every label has been fitted; if any
        fit fails, ModelFitError is raised and the model keeps its state.
        """
        if len(training_set) == 0:
            raise InvalidArgument('Cannot train on an empty training set.')
        if self.dimension is not None and training_set.dimension != self.dimension:
            raise InvalidArgument(
                f'Training set dimension {training_set.dimension} does not match '
                f'model dimension {self.dimension}.')

        labels = training_set.labels()
        seeds = jr.split(jr.PRNGKey(self.config.seed), len(labels))
        logger.info('Training %d labels on %d phrases.', len(labels), len(training_set))

        models, training_log_probs = {}, {}
        for label, seed in zip(labels, seeds):
            try:
                models[label], training_log_probs[label] = \
                    self._fit_label(seed, label, training_set.sequences(label))
            except (ValueError, ArithmeticError) as err:
                raise ModelFitError(f'Training label {label!r} failed: {err}') from err

        prior = onp.full(len(labels), 1. / len(labels))
        self._commit(models, prior, training_log_probs,
                     training_set.dimension, training_set.column_names)

    def _fit_label(self, seed, label, sequences):
        config = self.config

        if any(len(seq) == 0 for seq in sequences):
            raise ValueError('phrase without any frame.')
        data = onp.concatenate(sequences, axis=0)
        if not onp.all(onp.isfinite(data)):
            raise ValueError('phrases contain NaN or infinite values.')

        num_states, emission_dim = config.num_states, data.shape[-1]
        variance = data.var(axis=0)
        covariance_floor = jnp.maximum(config.relative_regularization * variance,
                                       config.absolute_regularization)
        initial_mask, transition_mask = \
            gaussian_hmm.topology_masks(num_states, config.transition_mode)

        initial_params = gaussian_hmm.initialize_model(
            seed, config.init_method, num_states, sequences, config.transition_mode,
            emission_covs_scale=float(max(variance.mean(), config.absolute_regularization)))
        prior_params = gaussian_hmm.initialize_prior_from_scalar_values(num_states, emission_dim)

        params, log_probs = gaussian_hmm.fit_em(
            initial_params, prior_params, sequences,
            num_epochs=config.num_epochs,
            tolerance=config.tolerance,
            initial_mask=initial_mask,
            transition_mask=transition_mask,
            covariance_floor=covariance_floor,
            verbose=config.verbose)

        logger.info('Label %r: %d phrases, %d frames, %d epochs, final lp %.3f.',
                    label, len(sequences), len(data), len(log_probs), float(log_probs[-1]))
        return params, log_probs

    def _commit(self, models, prior, training_log_probs, dimension, column_names,
                config=None):
        if config is not None:
            self.config = config
        self.models = dict(models)
        self.prior = onp.asarray(prior, dtype=onp.float32)
        self.training_log_probs = dict(training_log_probs)
        self.dimension = int(dimension)
        self.column_names = list(column_names)
        self._stacked = tree_map(lambda *arrs: jnp.stack(arrs), *self.models.values())
        self._state = None
        self.results = ClassificationResult.empty()

    # ------------------------------------------------------------------------
    # Streaming classification
    # ------------------------------------------------------------------------

    def reset(self):
        """Return every sub-model to its initial decode state."""
        if not self.is_trained:
            self._state = None
            self.results = ClassificationResult.empty()
            return

        num_labels = len(self.models)
        self._state = DecodeState(
            predicted_probs=self._stacked.initial_probs,
            filtered_probs=self._stacked.initial_probs,
            window=jnp.zeros((self.config.likelihood_window, num_labels)),
            num_steps=jnp.array(0),
        )
        self.results = self._rank(jnp.zeros(num_labels), self._state.filtered_probs)

    def filter(self, observation) -> ClassificationResult:
        """Feed one observation of shape (dimension,) and return the ranking."""
        if not self.is_trained:
            raise InvalidArgument('Model has not been trained.')
        emission = jnp.asarray(observation, dtype=jnp.float32)
        if emission.shape != (self.dimension,):
            raise InvalidArgument(
                f'Expected observation of shape ({self.dimension},), received {emission.shape}.')

        if self._state is None:
            self.reset()
        self._state, smoothed = _decode_step(self._stacked, self._state, emission)
        self.results = self._rank(smoothed, self._state.filtered_probs)
        return self.results

    def _rank(self, smoothed, filtered_probs) -> ClassificationResult:
        # Stable sort: equal scores keep label order
        log_posterior = onp.log(self.prior) + onp.asarray(smoothed)
        order = onp.argsort(-log_posterior, kind='stable')

        likelihoods = onp.asarray(jax.nn.softmax(log_posterior))
        num_states = filtered_probs.shape[-1]
        progress = onp.asarray(filtered_probs @ jnp.linspace(0., 1., num_states))

        labels = self.labels
        return ClassificationResult(
            labels=[labels[i] for i in order],
            likelihoods=likelihoods[order],
            log_likelihoods=onp.asarray(smoothed)[order],
            progress=progress[order],
        )

    def score(self, emissions) -> Dict[str, float]:
        """Marginal log likelihood of a whole (t, dimension) sequence under each label."""
        if not self.is_trained:
            raise InvalidArgument('Model has not been trained.')
        emissions = jnp.asarray(emissions, dtype=jnp.float32)
        if emissions.ndim != 2 or emissions.shape[-1] != self.dimension:
            raise InvalidArgument(
                f'Expected emissions of shape (t, {self.dimension}), received {emissions.shape}.')

        return {label: float(gaussian_hmm.filter_sequence(params, emissions)[0])
                for label, params in self.models.items()}

    # ------------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------------

    def to_document(self) -> dict:
        """Return the full trained state as a JSON-serializable dict."""
        if not self.is_trained:
            raise InvalidArgument('Cannot export a model that has not been trained.')

        return {
            'format': DOCUMENT_FORMAT,
            'dimension': self.dimension,
            'column_names': list(self.column_names),
            'configuration': {name: value.item() if isinstance(value, onp.generic) else value
                              for name, value in self.config._asdict().items()},
            'prior': onp.asarray(self.prior).tolist(),
            'models': {
                label: {
                    'initial_probs': onp.asarray(params.initial_probs).tolist(),
                    'transition_probs': onp.asarray(params.transition_probs).tolist(),
                    'emission_means': onp.asarray(params.emission_means).tolist(),
                    'emission_covariances': onp.asarray(params.emission_covariances).tolist(),
                    'training_log_probs':
                        onp.asarray(self.training_log_probs.get(label, [])).tolist(),
                }
                for label, params in self.models.items()
            },
        }

    def from_document(self, document) -> List[str]:
        """Replace the model state with the one described by `document`.

        The document is fully validated before anything is replaced; on
        FormatError the model keeps its previous state.

        Returns
            labels, in the iteration order of the document's "models" mapping
        """
        if not isinstance(document, dict):
            raise FormatError(f'Expected a JSON object, received {type(document).__name__}.')
        if document.get('format') != DOCUMENT_FORMAT:
            raise FormatError(f'Expected "format" to be {DOCUMENT_FORMAT!r}, '
                              f'received {document.get("format")!r}.')

        config = _parse_config(document.get('configuration'))
        dimension = document.get('dimension')
        if isinstance(dimension, bool) or not isinstance(dimension, int) or dimension < 1:
            raise FormatError(f'"dimension" must be an integer >= 1, received {dimension!r}.')

        column_names = document.get('column_names', ['col'] * dimension)
        if not isinstance(column_names, list) or len(column_names) != dimension \
           or not all(isinstance(name, str) for name in column_names):
            raise FormatError(f'"column_names" must list {dimension} strings.')

        entries = document.get('models')
        if not isinstance(entries, dict) or len(entries) == 0:
            raise FormatError('"models" must be a non-empty object.')

        num_states = config.num_states
        models, training_log_probs = {}, {}
        for label, entry in entries.items():
            if not isinstance(entry, dict):
                raise FormatError(f'Model {label!r} must be an object.')
            models[label] = _parse_parameters(entry, label, num_states, dimension)
            try:
                training_log_probs[label] = jnp.asarray(
                    onp.asarray(entry.get('training_log_probs', []), dtype=onp.float32))
            except (TypeError, ValueError) as err:
                raise FormatError(f'{label!r}: "training_log_probs" is not a numeric array.') from err

        prior = _parse_array(document, 'prior', (len(models),), 'document')
        if not onp.all(prior > 0.):
            raise FormatError('"prior" must be positive.')

        self._commit(models, prior / prior.sum(), training_log_probs,
                     dimension, column_names, config=config)
        logger.info('Restored %d labels of dimension %d.', len(models), dimension)
        return self.labels

# -----------------------------------------------------------------------------

def _parse_config(entry) -> ModelConfig:
    if not isinstance(entry, dict):
        raise FormatError('"configuration" must be an object.')
    unknown = set(entry) - set(ModelConfig._fields)
    if unknown:
        raise FormatError(f'Unknown configuration fields {sorted(unknown)}.')
    try:
        return validate_config(ModelConfig(**entry))
    except (InvalidArgument, TypeError) as err:
        raise FormatError(f'Invalid configuration: {err}') from err

def _parse_array(entry, key, shape, owner):
    if key not in entry:
        raise FormatError(f'{owner!r} is missing {key!r}.')
    try:
        arr = onp.asarray(entry[key], dtype=onp.float32)
    except (TypeError, ValueError) as err:
        raise FormatError(f'{owner!r}: {key!r} is not a numeric array.') from err
    if arr.shape != shape:
        raise FormatError(f'{owner!r}: expected {key!r} of shape {shape}, received {arr.shape}.')
    if not onp.all(onp.isfinite(arr)):
        raise FormatError(f'{owner!r}: {key!r} contains NaN or infinite values.')
    return arr

def _parse_probabilities(entry, key, shape, owner):
    probs = _parse_array(entry, key, shape, owner)
    if onp.any(probs < 0.):
        raise FormatError(f'{owner!r}: {key!r} contains negative probabilities.')
    if not onp.allclose(probs.sum(axis=-1), 1., atol=1e-4):
        raise FormatError(f'{owner!r}: {key!r} does not sum to 1.')
    return probs

def _parse_parameters(entry, label, num_states, dimension) -> gaussian_hmm.Parameters:
    """Validate one label entry and return its parameters."""
    initial_probs = _parse_probabilities(entry, 'initial_probs', (num_states,), label)
    transition_probs = _parse_probabilities(entry, 'transition_probs',
                                            (num_states, num_states), label)
    emission_means = _parse_array(entry, 'emission_means', (num_states, dimension), label)
    emission_covs = _parse_array(entry, 'emission_covariances',
                                 (num_states, dimension, dimension), label)

    # eigvalsh reads only one triangle
    if not onp.allclose(emission_covs, onp.swapaxes(emission_covs, -1, -2), rtol=1e-5, atol=1e-6):
        raise FormatError(f'{label!r}: "emission_covariances" must be symmetric.')
    if onp.any(onp.linalg.eigvalsh(emission_covs) <= 0.):
        raise FormatError(f'{label!r}: "emission_covariances" must be positive definite.')

    return tree_map(jnp.asarray, gaussian_hmm.Parameters(
        initial_probs=initial_probs,
        transition_probs=transition_probs,
        emission_means=emission_means,
        emission_covariances=emission_covs,
    ))
