# Train a hierarchical HMM on synthetic 2D gestures, report held-out accuracy
# and save the model document.
#   python scripts/fit_gestures.py --states 5 --iters 10 --out /tmp/gestures.json

import argparse
import logging

import numpy as onp

from hhmm import Bridge, ModelConfig

GESTURES = ('line', 'circle', 'zigzag')

parser = argparse.ArgumentParser(description='Fit and evaluate a gesture classifier')
parser.add_argument(
    '--seed', type=int, default=45212276,
    help='Seed of the synthetic data and of the HMM initialization.')
parser.add_argument(
    '--num_train', type=int, default=5,
    help='Number of training phrases per gesture.')
parser.add_argument(
    '--num_test', type=int, default=10,
    help='Number of test phrases per gesture.')
parser.add_argument(
    '--noise', type=float, default=0.05,
    help='Standard deviation of the additive observation noise.')
parser.add_argument(
    '--states', type=int, default=5,
    help='Number of HMM states per gesture.')
parser.add_argument(
    '--iters', type=int, default=10,
    help='Maximum number of EM iterations per gesture.')
parser.add_argument(
    '--mode', type=str, default='left_right',
    choices=['left_right', 'ergodic'],
    help='Transition topology of each gesture model.')
parser.add_argument(
    '--out', type=str, default=None,
    help='If given, path of the saved model document.')
parser.add_argument(
    '--verbose', action='store_true',
    help='Log progress and show EM progress bars.')

# =============================================================================

def make_gesture(name, num_timesteps, rng, noise):
    """Return a noisy gesture as buffer[dimension][time]."""
    t = onp.linspace(0., 1., num_timesteps)
    if name == 'line':
        xy = onp.stack([t, t])
    elif name == 'circle':
        xy = onp.stack([onp.cos(2*onp.pi*t), onp.sin(2*onp.pi*t)])
    else:
        xy = onp.stack([t, onp.abs((4*t) % 2 - 1)])
    return xy + noise * rng.standard_normal(xy.shape)

def make_phrases(num_per_gesture, rng, noise):
    buffers, lengths, labels = [], [], []
    for _ in range(num_per_gesture):
        for name in GESTURES:
            num_timesteps = int(rng.integers(40, 80))
            buffers.append(make_gesture(name, num_timesteps, rng, noise))
            lengths.append(num_timesteps)
            labels.append(name)
    return buffers, lengths, labels

def main():
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    rng = onp.random.default_rng(args.seed)
    train_buffers, train_lengths, train_labels = make_phrases(args.num_train, rng, args.noise)
    test_buffers, test_lengths, test_labels = make_phrases(args.num_test, rng, args.noise)

    config = ModelConfig(num_states=args.states,
                         transition_mode=args.mode,
                         num_epochs=args.iters,
                         seed=args.seed,
                         verbose=args.verbose)

    bridge = Bridge()
    model = bridge.create_model(config)
    corpus = bridge.create_corpus(2, column_names=['x', 'y'])
    bridge.build_corpus(corpus, train_buffers, len(train_buffers), train_lengths, train_labels, 2)

    print(f'Training {len(GESTURES)} gestures on {len(train_buffers)} phrases...')
    bridge.train(model, corpus)

    predictions = [bridge.classify(model, buffer, length, 2)
                   for buffer, length in zip(test_buffers, test_lengths)]
    accuracy = onp.mean([p == l for p, l in zip(predictions, test_labels)])
    print(f'Held-out accuracy: {accuracy:.3f} over {len(test_buffers)} phrases')

    if args.out is not None:
        bridge.save(model, args.out)
        print(f'Saved model to {args.out}')

    bridge.close()
    return

if __name__ == '__main__':
    main()
