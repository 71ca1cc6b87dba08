"""Classes for viewing caller buffers and holding the training corpus."""
import logging

import numpy as onp

# Typing
from chex import Array
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from hhmm.errors import InvalidArgument

logger = logging.getLogger(__name__)

Label = str
LabelLike = Union[str, bytes, int]
Rows = Sequence[Sequence[float]]    # buffer[dimension][time]

DEFAULT_COLUMN_NAME = 'col'

# ============================================================================

__all__ = [
    'check_count',
    'decode_label',
    'SequenceView',
    'BufferView',
    'Phrase',
    'TrainingSet',
    'fill_training_set',
]

def decode_label(item: LabelLike) -> Label:
    """Convert a label byte (int or bytes) or a string into a label string."""
    if isinstance(item, (bytes, bytearray)):
        label = bytes(item).decode('latin-1')
    elif isinstance(item, str):
        label = item
    elif isinstance(item, (int, onp.integer)) and not isinstance(item, bool):
        if not 0 <= int(item) < 256:
            raise InvalidArgument(f'Label byte must be in [0, 256), received {item}.')
        label = chr(int(item))
    else:
        raise InvalidArgument(f'Expected label to be a byte or a string, received {type(item)}.')

    if len(label) == 0:
        raise InvalidArgument('Labels must not be empty.')
    return label

def check_count(value, name: str) -> int:
    if value is None:
        raise InvalidArgument(f'`{name}` is required.')
    if isinstance(value, bool) or not isinstance(value, (int, onp.integer)):
        raise InvalidArgument(f'Expected `{name}` to be an integer, received {type(value)}.')
    if value < 0:
        raise InvalidArgument(f'`{name}` must be non-negative, received {value}.')
    return int(value)


class SequenceView:
    """Bounds-checked view of a single caller buffer `buffer[i][t]`.

    The extents are validated once at construction: the buffer must hold at
    least `dimension` rows and every one of those rows must hold at least
    `length` values. Extra rows or values beyond the declared extents are
    ignored, as the caller only promises the declared shape.

    Args:
        buffer: nested sequence or array indexed as [dimension][time]
        length: number of time steps to read
        dimension: number of features per time step
    """

    length: int
    dimension: int

    def __init__(self, buffer: Rows, length: int, dimension: int, name: str='buffer'):
        self.length = check_count(length, f'{name} length')
        self.dimension = check_count(dimension, f'{name} dimensionality')
        if self.dimension == 0:
            raise InvalidArgument(f'`{name}` dimensionality must be at least 1.')
        if buffer is None:
            raise InvalidArgument(f'`{name}` is required.')

        if not isinstance(buffer, onp.ndarray) and \
           (not hasattr(buffer, '__len__') or len(buffer) < self.dimension):
            raise InvalidArgument(f'`{name}` does not hold {self.dimension} rows.')
        try:
            if isinstance(buffer, onp.ndarray) and buffer.ndim == 2:
                rows = onp.asarray(buffer, dtype=onp.float32)
            else:
                rows = [onp.asarray(buffer[i], dtype=onp.float32) for i in range(self.dimension)]
        except (TypeError, ValueError, IndexError) as err:
            raise InvalidArgument(f'`{name}` is not a numeric [dimension][time] buffer.') from err

        if len(rows) < self.dimension:
            raise InvalidArgument(
                f'`{name}` has {len(rows)} rows, expected at least {self.dimension}.')
        for i in range(self.dimension):
            if onp.ndim(rows[i]) != 1:
                raise InvalidArgument(f'Row {i} of `{name}` is not one-dimensional.')
            if len(rows[i]) < self.length:
                raise InvalidArgument(
                    f'Row {i} of `{name}` has {len(rows[i])} values, expected at least {self.length}.')

        self._rows = rows

    def __len__(self) -> int:
        return self.length

    def frame(self, t: int) -> Array:
        """Return the feature vector at time step t, shape (dimension,)."""
        if not 0 <= t < self.length:
            raise IndexError(f'Time step {t} out of range [0, {self.length}).')
        return onp.asarray([self._rows[i][t] for i in range(self.dimension)], dtype=onp.float32)

    def __iter__(self) -> Iterator[Array]:
        for t in range(self.length):
            yield self.frame(t)

    def as_array(self) -> Array:
        """Return the viewed sequence as a (length, dimension) array."""
        data = onp.empty((self.length, self.dimension), dtype=onp.float32)
        for i in range(self.dimension):
            data[:, i] = onp.asarray(self._rows[i][:self.length], dtype=onp.float32)
        return data


class BufferView:
    """Bounds-checked view of a batch of caller buffers `buffers[j][i][t]`.

    Args:
        buffers: sequence of per-sample buffers, each indexed as [dimension][time]
        sample_count: number of samples to read
        sample_lengths: number of time steps of each sample
        labels: one label per sample; a `bytes` object, a sequence of label
            bytes (ints) or a sequence of strings
        dimension: number of features per time step
    """

    sample_count: int
    dimension: int
    labels: List[Label]
    samples: List[SequenceView]

    def __init__(self,
                 buffers: Sequence[Rows],
                 sample_count: int,
                 sample_lengths: Sequence[int],
                 labels: Union[bytes, Sequence[LabelLike]],
                 dimension: int):
        self.sample_count = check_count(sample_count, 'sample_count')
        self.dimension = dimension
        for value, name in ((buffers, 'buffers'),
                            (sample_lengths, 'sample_lengths'),
                            (labels, 'labels')):
            if value is None:
                raise InvalidArgument(f'`{name}` is required.')
            if not hasattr(value, '__len__') or len(value) < self.sample_count:
                raise InvalidArgument(f'`{name}` does not hold {self.sample_count} entries.')

        self.labels = [decode_label(labels[j]) for j in range(self.sample_count)]
        self.samples = [
            SequenceView(buffers[j], sample_lengths[j], dimension, name=f'buffers[{j}]')
            for j in range(self.sample_count)
        ]

    def __len__(self) -> int:
        return self.sample_count

    def __getitem__(self, j: int) -> Tuple[Label, SequenceView]:
        return self.labels[j], self.samples[j]

    def __iter__(self) -> Iterator[Tuple[Label, SequenceView]]:
        return zip(self.labels, self.samples)

# ============================================================================

class Phrase:
    """One labeled, ordered series of feature vectors.

    Args:
        index: identity of the phrase within its training set
        label: label shared by every frame of the phrase
        dimension: number of features per frame
        column_names: names of the features
    """

    index: int
    label: Label
    dimension: int
    column_names: List[str]

    def __init__(self, index: int, label: Label, dimension: int,
                 column_names: Optional[Sequence[str]]=None):
        self.index = index
        self.label = label
        self.dimension = dimension
        self.column_names = list(column_names) if column_names is not None \
                            else [DEFAULT_COLUMN_NAME] * dimension
        self._frames = []

    def record(self, observation: Sequence[float]):
        """Append one feature vector of length `dimension`."""
        observation = onp.asarray(observation, dtype=onp.float32)
        if observation.shape != (self.dimension,):
            raise InvalidArgument(
                f'Phrase {self.index}: expected observation of shape ({self.dimension},), '
                f'received {observation.shape}.')
        self._frames.append(observation)

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def data(self) -> Array:
        """Recorded frames, shape (len(self), dimension)."""
        if len(self._frames) == 0:
            return onp.empty((0, self.dimension), dtype=onp.float32)
        return onp.stack(self._frames)

    def __repr__(self) -> str:
        return f'Phrase(index={self.index}, label={self.label!r}, length={len(self)})'


class TrainingSet:
    """Ordered collection of phrases sharing one dimension.

    Args:
        dimension: number of features per frame, at least 1
        column_names: names of the features, defaults to 'col' for each
    """

    dimension: int
    column_names: List[str]

    def __init__(self, dimension: int, column_names: Optional[Sequence[str]]=None):
        if isinstance(dimension, bool) or not isinstance(dimension, (int, onp.integer)) \
           or dimension < 1:
            raise InvalidArgument(f'Training set dimension must be an integer >= 1, received {dimension}.')
        self.dimension = int(dimension)

        if column_names is None:
            column_names = [DEFAULT_COLUMN_NAME] * self.dimension
        elif len(column_names) != self.dimension:
            raise InvalidArgument(
                f'Expected {self.dimension} column names, received {len(column_names)}.')
        self.column_names = list(column_names)
        self._phrases: Dict[int, Phrase] = {}

    def empty(self):
        """Discard every phrase."""
        self._phrases = {}

    def add_phrase(self, index: int, label: Label) -> Phrase:
        """Create (or overwrite) the phrase with identity `index`."""
        phrase = Phrase(index, label, self.dimension, self.column_names)
        self._phrases[index] = phrase
        return phrase

    def get_phrase(self, index: int) -> Phrase:
        return self._phrases[index]

    def __len__(self) -> int:
        return len(self._phrases)

    def __iter__(self) -> Iterator[Phrase]:
        return iter(self._phrases.values())

    def labels(self) -> List[Label]:
        """Distinct labels, in order of first appearance."""
        return list(dict.fromkeys(phrase.label for phrase in self))

    def sequences(self, label: Label) -> List[Array]:
        """Frames of every phrase carrying `label`, each of shape (t, dimension)."""
        return [phrase.data for phrase in self if phrase.label == label]

    def __repr__(self) -> str:
        return f'TrainingSet(dimension={self.dimension}, num_phrases={len(self)})'

# ============================================================================

def fill_training_set(training_set: TrainingSet, view: BufferView):
    """Replace the content of `training_set` with the samples of `view`.

    The rebuild is destructive: previous phrases are discarded. It is also
    atomic: the new phrases are recorded into a scratch set and only swapped
    in once every sample has been recorded, so a failure leaves the previous
    content untouched.
    """
    if view.dimension != training_set.dimension:
        raise InvalidArgument(
            f'Buffer dimensionality {view.dimension} does not match '
            f'training set dimension {training_set.dimension}.')

    scratch = TrainingSet(training_set.dimension, training_set.column_names)
    for j, (label, sample) in enumerate(view):
        phrase = scratch.add_phrase(j, label)
        for observation in sample:
            phrase.record(observation)

    training_set.empty()
    training_set._phrases = scratch._phrases
    logger.debug('Filled training set with %d phrases over labels %s.',
                 len(training_set), training_set.labels())
