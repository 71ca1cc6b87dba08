"""Handle-based facade over the hierarchical HMM.

Hosts that cannot hold Python objects drive models and corpora through
opaque handles, passing observations as flat nested buffers with explicit
shapes. Every operation either returns its value or raises a BridgeError.
"""
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from hhmm.config import ModelConfig
from hhmm.data import (
    BufferView,
    SequenceView,
    TrainingSet,
    fill_training_set,
    check_count,
)
from hhmm.errors import InvalidArgument
from hhmm.hierarchical import ClassificationResult, HierarchicalHMM
from hhmm.persistence import load_document, restore_model, save_model
from hhmm.registry import CorpusHandle, HandleRegistry, ModelHandle

logger = logging.getLogger(__name__)

__all__ = [
    'Bridge',
]


class Bridge:
    """Owner of every model and corpus created through it.

    Bridges are independent of one another; nothing is shared at module
    level. A bridge does no locking.
    """

    def __init__(self):
        self._registry = HandleRegistry()

    # ------------------------------------------------------------------------
    # Lifetimes
    # ------------------------------------------------------------------------

    def create_model(self, config: Optional[ModelConfig]=None) -> ModelHandle:
        """Allocate a fresh, untrained model."""
        handle = self._registry.register(ModelHandle, HierarchicalHMM(config))
        logger.info('Created model %d.', handle.id)
        return handle

    def destroy_model(self, handle: ModelHandle):
        self._registry.release(handle, ModelHandle)
        logger.info('Destroyed model %d.', handle.id)

    def create_corpus(self, dimension: int,
                      column_names: Optional[Sequence[str]]=None) -> CorpusHandle:
        """Allocate a fresh, empty corpus of the given dimension."""
        handle = self._registry.register(CorpusHandle, TrainingSet(dimension, column_names))
        logger.info('Created corpus %d of dimension %d.', handle.id, dimension)
        return handle

    def destroy_corpus(self, handle: CorpusHandle):
        self._registry.release(handle, CorpusHandle)
        logger.info('Destroyed corpus %d.', handle.id)

    def destroy(self, model: Optional[ModelHandle]=None,
                corpus: Optional[CorpusHandle]=None):
        """Destroy a model and a corpus together; either may be omitted.

        Both handles are checked before either is released.
        """
        if model is not None:
            self._registry.resolve(model, ModelHandle)
        if corpus is not None:
            self._registry.resolve(corpus, CorpusHandle)

        if model is not None:
            self.destroy_model(model)
        if corpus is not None:
            self.destroy_corpus(corpus)

    def close(self):
        """Destroy every live handle."""
        for handle in self._registry.handles():
            self._registry.release(handle, type(handle))
        logger.info('Closed bridge.')

    # ------------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------------

    def model(self, handle: ModelHandle) -> HierarchicalHMM:
        return self._registry.resolve(handle, ModelHandle)

    def corpus(self, handle: CorpusHandle) -> TrainingSet:
        return self._registry.resolve(handle, CorpusHandle)

    def labels(self, handle: ModelHandle) -> List[str]:
        """Labels known to the model, in model order. The list is a copy."""
        return list(self.model(handle).labels)

    def classification(self, handle: ModelHandle) -> ClassificationResult:
        """Full ranking produced by the latest `classify` call."""
        return self.model(handle).results

    # ------------------------------------------------------------------------
    # Corpus, training and classification
    # ------------------------------------------------------------------------

    def build_corpus(self,
                     corpus: CorpusHandle,
                     buffers,
                     sample_count: int,
                     sample_lengths: Sequence[int],
                     labels,
                     dimensionality: int):
        """Replace the content of `corpus` with `sample_count` labeled samples.

        Args:
            corpus: target corpus
            buffers: buffers[j][i][t], feature i at time t of sample j
            sample_count: number of samples to read
            sample_lengths: sample_lengths[j], time steps of sample j
            labels: labels[j], a label byte or string per sample
            dimensionality: features per time step; must equal the corpus
                dimension
        """
        training_set = self.corpus(corpus)
        view = BufferView(buffers, sample_count, sample_lengths, labels, dimensionality)
        fill_training_set(training_set, view)
        logger.info('Built corpus %d: %d phrases.', corpus.id, len(training_set))

    def train(self, model: ModelHandle, corpus: CorpusHandle):
        """Fit `model` on the current content of `corpus`."""
        hmm = self.model(model)
        training_set = self.corpus(corpus)
        hmm.fit(training_set)
        logger.info('Trained model %d on corpus %d: labels %s.',
                    model.id, corpus.id, hmm.labels)

    def classify(self, model: ModelHandle, buffer, length: int,
                 dimensionality: int) -> str:
        """Classify one sequence buffer[i][t] and return the likeliest label.

        The model is reset first, so consecutive calls are independent.
        """
        hmm = self.model(model)
        if not hmm.is_trained:
            raise InvalidArgument(f'Model {model.id} has not been trained.')
        check_count(dimensionality, 'dimensionality')
        if dimensionality != hmm.dimension:
            raise InvalidArgument(
                f'Buffer dimensionality {dimensionality} does not match '
                f'model dimension {hmm.dimension}.')

        view = SequenceView(buffer, length, dimensionality)
        hmm.reset()
        for observation in view.as_array():
            hmm.filter(observation)
        return hmm.results.likeliest

    # ------------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------------

    def save(self, model: ModelHandle, path: Union[str, Path]):
        save_model(self.model(model), path)

    def load(self, path: Union[str, Path]) -> Tuple[ModelHandle, List[str]]:
        """Create a new model from the document at `path`.

        Returns the new handle and the restored labels in document order.
        No handle is allocated if the document cannot be read or parsed.
        """
        document = load_document(path)
        hmm = HierarchicalHMM()
        labels = hmm.from_document(document)
        handle = self._registry.register(ModelHandle, hmm)
        logger.info('Loaded model %d from %s: labels %s.', handle.id, path, labels)
        return handle, list(labels)

    def restore(self, model: ModelHandle, path: Union[str, Path]) -> List[str]:
        """Replace the state of an existing model with the document at `path`."""
        return restore_model(self.model(model), path)

    def __len__(self) -> int:
        return len(self._registry)
