"""Test buffer views and the training set builder."""

import pytest
import numpy as onp

from hhmm.data import (
    decode_label,
    SequenceView,
    BufferView,
    TrainingSet,
    fill_training_set,
)
from hhmm.errors import InvalidArgument

# A = [1,2] x 3, B = [5,5] x 2, laid out as buffers[j][i][t]
BUFFERS = [
    [[1., 1., 1.], [2., 2., 2.]],
    [[5., 5.], [5., 5.]],
]
LENGTHS = [3, 2]

# -----------------------------------------------------------------------------

def test_decode_label():
    assert decode_label(ord('A')) == 'A'
    assert decode_label(b'B') == 'B'
    assert decode_label('circle') == 'circle'
    assert decode_label(onp.uint8(67)) == 'C'

    for bad in (256, -1, '', b'', 1.5, None, True):
        with pytest.raises(InvalidArgument):
            decode_label(bad)

def test_sequence_view():
    view = SequenceView([[1., 2., 3., 99.], [4., 5., 6., 99.], [7., 8., 9.]], 3, 2)

    assert len(view) == 3
    onp.testing.assert_array_equal(view.frame(1), [2., 5.])
    onp.testing.assert_array_equal(view.as_array(), [[1., 4.], [2., 5.], [3., 6.]])
    assert [f.tolist() for f in view] == [[1., 4.], [2., 5.], [3., 6.]]
    assert view.as_array().dtype == onp.float32

    with pytest.raises(IndexError):
        view.frame(3)

def test_sequence_view_from_array():
    buffer = onp.arange(12, dtype=onp.float64).reshape(3, 4)
    view = SequenceView(buffer, 4, 3)
    onp.testing.assert_array_equal(view.as_array(), buffer.T)

def test_sequence_view_rejects_non_numeric_array():
    with pytest.raises(InvalidArgument):
        SequenceView(onp.array([['a', 'b'], ['c', 'd']]), 2, 2)
    with pytest.raises(InvalidArgument):
        SequenceView(onp.zeros(1), 1, 2)

@pytest.mark.parametrize('buffer,length,dimension', [
    ([[1., 2.], [3.]], 2, 2),           # short row
    ([[1., 2.]], 2, 2),                 # missing row
    ([[1., 2.], [3., 4.]], -1, 2),      # negative length
    ([[1., 2.], [3., 4.]], 2, 0),       # no dimension
    (None, 2, 2),
    ([['a', 'b'], [3., 4.]], 2, 2),     # not numeric
    ([[[1.], [2.]], [3., 4.]], 2, 2),   # not one-dimensional
])
def test_sequence_view_rejects(buffer, length, dimension):
    with pytest.raises(InvalidArgument):
        SequenceView(buffer, length, dimension)

def test_sequence_view_zero_length():
    view = SequenceView([[], []], 0, 2)
    assert view.as_array().shape == (0, 2)
    assert list(view) == []

# -----------------------------------------------------------------------------

def test_buffer_view():
    view = BufferView(BUFFERS, 2, LENGTHS, b'AB', 2)

    assert len(view) == 2
    assert view.labels == ['A', 'B']
    label, sample = view[1]
    assert label == 'B'
    onp.testing.assert_array_equal(sample.as_array(), [[5., 5.], [5., 5.]])

def test_buffer_view_reads_only_sample_count():
    view = BufferView(BUFFERS, 1, LENGTHS, [ord('A'), 'garbage'], 2)
    assert view.labels == ['A']

@pytest.mark.parametrize('buffers,count,lengths,labels', [
    (BUFFERS, 3, LENGTHS, b'ABC'),      # too few buffers
    (BUFFERS, 2, [3], b'AB'),           # too few lengths
    (BUFFERS, 2, LENGTHS, b'A'),        # too few labels
    (BUFFERS, 2, [3, 4], b'AB'),        # sample shorter than declared
    (BUFFERS, -1, LENGTHS, b'AB'),
    (None, 2, LENGTHS, b'AB'),
    (BUFFERS, 2, None, b'AB'),
    (BUFFERS, 2, LENGTHS, None),
])
def test_buffer_view_rejects(buffers, count, lengths, labels):
    with pytest.raises(InvalidArgument):
        BufferView(buffers, count, lengths, labels, 2)

# -----------------------------------------------------------------------------

def test_training_set_defaults():
    training_set = TrainingSet(3)
    assert training_set.column_names == ['col', 'col', 'col']
    assert len(training_set) == 0

    with pytest.raises(InvalidArgument):
        TrainingSet(0)
    with pytest.raises(InvalidArgument):
        TrainingSet(2, column_names=['x'])

def test_phrase_record_checks_dimension():
    training_set = TrainingSet(2)
    phrase = training_set.add_phrase(0, 'A')
    phrase.record([1., 2.])
    with pytest.raises(InvalidArgument):
        phrase.record([1., 2., 3.])
    assert len(phrase) == 1
    assert phrase.data.shape == (1, 2)

def test_fill_training_set():
    training_set = TrainingSet(2, column_names=['x', 'y'])
    fill_training_set(training_set, BufferView(BUFFERS, 2, LENGTHS, b'AB', 2))

    assert len(training_set) == 2
    assert training_set.labels() == ['A', 'B']

    phrase = training_set.get_phrase(0)
    assert phrase.label == 'A'
    assert phrase.column_names == ['x', 'y']
    onp.testing.assert_array_equal(phrase.data, [[1., 2.], [1., 2.], [1., 2.]])

    [b_seq] = training_set.sequences('B')
    onp.testing.assert_array_equal(b_seq, [[5., 5.], [5., 5.]])

def test_fill_training_set_is_destructive():
    training_set = TrainingSet(2)
    fill_training_set(training_set, BufferView(BUFFERS, 2, LENGTHS, b'AB', 2))
    fill_training_set(training_set, BufferView(BUFFERS[1:], 1, LENGTHS[1:], b'C', 2))

    assert len(training_set) == 1
    assert training_set.labels() == ['C']

def test_fill_training_set_labels_first_appearance():
    buffers = [BUFFERS[1], BUFFERS[0], BUFFERS[1]]
    training_set = TrainingSet(2)
    fill_training_set(training_set, BufferView(buffers, 3, [2, 3, 2], ['B', 'A', 'B'], 2))

    assert training_set.labels() == ['B', 'A']
    assert len(training_set.sequences('B')) == 2

def test_fill_training_set_dimension_mismatch_keeps_content():
    training_set = TrainingSet(2)
    fill_training_set(training_set, BufferView(BUFFERS, 2, LENGTHS, b'AB', 2))

    with pytest.raises(InvalidArgument):
        fill_training_set(training_set, BufferView([[[1.]]], 1, [1], b'Z', 1))

    assert training_set.labels() == ['A', 'B']
    assert len(training_set) == 2
