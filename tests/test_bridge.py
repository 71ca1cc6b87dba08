"""Test the handle-based bridge end to end."""

import pytest
import numpy as onp

from hhmm import (
    Bridge,
    ModelConfig,
    InvalidArgument,
    InvalidHandle,
    ModelFitError,
)

# A = [1,2] x 3, B = [5,5] x 2, laid out as buffers[j][i][t]
BUFFERS = [
    [[1., 1., 1.], [2., 2., 2.]],
    [[5., 5.], [5., 5.]],
]
LENGTHS = [3, 2]

def make_trained(config=None):
    bridge = Bridge()
    model = bridge.create_model(config)
    corpus = bridge.create_corpus(2)
    bridge.build_corpus(corpus, BUFFERS, 2, LENGTHS, b'AB', 2)
    bridge.train(model, corpus)
    return bridge, model, corpus

def make_gesture(direction, num_timesteps, rng, noise=0.05):
    """Ramp from 0 to 1 (`up`) or 1 to 0 (`down`) on both dimensions, as buffer[i][t]."""
    ramp = onp.linspace(0., 1., num_timesteps)
    if direction == 'down':
        ramp = ramp[::-1]
    return onp.stack([ramp, 0.5 * ramp]) + noise * rng.standard_normal((2, num_timesteps))

# -----------------------------------------------------------------------------

def test_classify_two_labels():
    bridge, model, _ = make_trained()

    assert bridge.labels(model) == ['A', 'B']
    assert bridge.classify(model, [[1., 1., 1.], [2., 2., 2.]], 3, 2) == 'A'
    assert bridge.classify(model, [[5., 5.], [5., 5.]], 2, 2) == 'B'

def test_classification_result():
    bridge, model, _ = make_trained()
    bridge.classify(model, [[5., 5.], [5., 5.]], 2, 2)

    result = bridge.classification(model)
    assert result.labels == ['B', 'A']
    assert result.likeliest == 'B'
    onp.testing.assert_allclose(result.likelihoods.sum(), 1., rtol=1e-5)
    assert result.likelihoods[0] >= result.likelihoods[1]

def test_classify_is_deterministic():
    bridge, model, _ = make_trained()
    buffer = [[1., 1.1, 0.9, 1.], [2., 2., 2.1, 1.9]]

    results = [bridge.classify(model, buffer, 4, 2) for _ in range(3)]
    assert results == ['A', 'A', 'A']

def test_classify_zero_length_uses_prior():
    bridge, model, _ = make_trained()
    # Uniform prior: ties keep label order
    assert bridge.classify(model, [[], []], 0, 2) == 'A'

def test_classify_gestures(num_train=4):
    rng = onp.random.default_rng(0)
    lengths = [int(n) for n in rng.integers(30, 50, size=2*num_train)]
    directions = ['up', 'down'] * num_train
    buffers = [make_gesture(d, n, rng) for d, n in zip(directions, lengths)]

    bridge = Bridge()
    model = bridge.create_model(ModelConfig(num_states=4, num_epochs=5))
    corpus = bridge.create_corpus(2, column_names=['x', 'y'])
    bridge.build_corpus(corpus, buffers, len(buffers), lengths, directions, 2)
    bridge.train(model, corpus)

    assert bridge.labels(model) == ['up', 'down']
    assert bridge.classify(model, make_gesture('up', 40, rng), 40, 2) == 'up'
    assert bridge.classify(model, make_gesture('down', 35, rng), 35, 2) == 'down'

def test_ergodic_model():
    bridge, model, _ = make_trained(ModelConfig(num_states=3, transition_mode='ergodic'))
    assert bridge.classify(model, [[5., 5.], [5., 5.]], 2, 2) == 'B'

# -----------------------------------------------------------------------------

def test_untrained_model_is_rejected():
    bridge = Bridge()
    model = bridge.create_model()
    with pytest.raises(InvalidArgument):
        bridge.classify(model, [[1.], [2.]], 1, 2)
    assert bridge.labels(model) == []

def test_train_on_empty_corpus():
    bridge = Bridge()
    model = bridge.create_model()
    corpus = bridge.create_corpus(2)
    with pytest.raises(InvalidArgument):
        bridge.train(model, corpus)

def test_classify_dimension_mismatch():
    bridge, model, _ = make_trained()
    with pytest.raises(InvalidArgument):
        bridge.classify(model, [[1.], [2.], [3.]], 1, 3)

@pytest.mark.parametrize('buffer,length', [
    ([[1., 1.], [2.]], 2),      # short row
    ([[1., 1.]], 2),            # missing row
    ([[1.], [2.]], -1),
])
def test_classify_rejects_bad_buffer(buffer, length):
    bridge, model, _ = make_trained()
    with pytest.raises(InvalidArgument):
        bridge.classify(model, buffer, length, 2)

def test_build_corpus_dimension_mismatch():
    bridge = Bridge()
    corpus = bridge.create_corpus(3)
    with pytest.raises(InvalidArgument):
        bridge.build_corpus(corpus, BUFFERS, 2, LENGTHS, b'AB', 2)
    assert len(bridge.corpus(corpus)) == 0

def test_zero_length_phrase_fails_training():
    bridge, model, _ = make_trained()
    corpus = bridge.create_corpus(2)
    bridge.build_corpus(corpus, [[[], []]], 1, [0], b'Z', 2)

    with pytest.raises(ModelFitError):
        bridge.train(model, corpus)
    # Previous training survives
    assert bridge.labels(model) == ['A', 'B']

def test_nan_fails_training():
    bridge = Bridge()
    model = bridge.create_model()
    corpus = bridge.create_corpus(2)
    bridge.build_corpus(corpus, [[[1., onp.nan], [2., 2.]]], 1, [2], b'A', 2)

    with pytest.raises(ModelFitError):
        bridge.train(model, corpus)
    assert bridge.labels(model) == []

def test_retraining_replaces_labels():
    bridge, model, corpus = make_trained()
    bridge.build_corpus(corpus, BUFFERS[:1], 1, LENGTHS[:1], b'C', 2)
    bridge.train(model, corpus)
    assert bridge.labels(model) == ['C']

# -----------------------------------------------------------------------------

def test_fresh_models_are_independent():
    bridge, model, _ = make_trained()
    other = bridge.create_model()

    assert other != model
    assert bridge.labels(other) == []
    assert bridge.labels(model) == ['A', 'B']

def test_interleaved_models():
    """Two models trained on swapped labels classify independently."""
    bridge, model, _ = make_trained()
    swapped = bridge.create_model()
    corpus = bridge.create_corpus(2)
    bridge.build_corpus(corpus, BUFFERS, 2, LENGTHS, b'BA', 2)
    bridge.train(swapped, corpus)

    buffer = [[1., 1., 1.], [2., 2., 2.]]
    assert bridge.classify(model, buffer, 3, 2) == 'A'
    assert bridge.classify(swapped, buffer, 3, 2) == 'B'
    assert bridge.classify(model, buffer, 3, 2) == 'A'

def test_destroyed_handles():
    bridge, model, corpus = make_trained()
    bridge.destroy_model(model)

    with pytest.raises(InvalidHandle):
        bridge.classify(model, [[1.], [2.]], 1, 2)
    with pytest.raises(InvalidHandle):
        bridge.train(model, corpus)
    with pytest.raises(InvalidHandle):
        bridge.destroy_model(model)

    bridge.destroy_corpus(corpus)
    with pytest.raises(InvalidHandle):
        bridge.build_corpus(corpus, BUFFERS, 2, LENGTHS, b'AB', 2)

def test_handle_kinds_are_not_interchangeable():
    bridge, model, corpus = make_trained()
    with pytest.raises(InvalidHandle):
        bridge.train(corpus, model)
    with pytest.raises(InvalidHandle):
        bridge.destroy_corpus(model)

def test_destroy_together():
    bridge, model, corpus = make_trained()
    other = bridge.create_model()

    # Invalid corpus: neither handle is released
    bridge.destroy_corpus(corpus)
    with pytest.raises(InvalidHandle):
        bridge.destroy(model=model, corpus=corpus)
    assert bridge.labels(model) == ['A', 'B']

    bridge.destroy(model=model)
    bridge.destroy(model=other, corpus=None)
    assert len(bridge) == 0

def test_close():
    bridge, model, corpus = make_trained()
    bridge.close()
    assert len(bridge) == 0
    with pytest.raises(InvalidHandle):
        bridge.labels(model)

@pytest.mark.parametrize('field,value', [
    ('num_states', 0),
    ('num_states', 2.5),
    ('num_states', True),
    ('num_epochs', '10'),
    ('likelihood_window', 2.5),
    ('seed', None),
    ('tolerance', 'small'),
    ('relative_regularization', float('nan')),
    ('absolute_regularization', [1e-3]),
    ('verbose', 'yes'),
    ('transition_mode', 'circular'),
])
def test_invalid_config(field, value):
    bridge = Bridge()
    with pytest.raises(InvalidArgument):
        bridge.create_model(ModelConfig()._replace(**{field: value}))
    assert len(bridge) == 0

def test_config_accepts_numpy_scalars():
    bridge = Bridge()
    config = ModelConfig(num_states=onp.int64(3), tolerance=None,
                         absolute_regularization=onp.float32(1e-2))
    model = bridge.create_model(config)
    assert bridge.model(model).config.num_states == 3

def test_score():
    bridge, model, _ = make_trained()
    scores = bridge.model(model).score(onp.array([[1., 2.], [1., 2.], [1., 2.]]))

    assert list(scores) == ['A', 'B']
    assert scores['A'] > scores['B']
    with pytest.raises(InvalidArgument):
        bridge.model(model).score(onp.zeros((3, 3)))
