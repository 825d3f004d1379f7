#!/usr/bin/env python3
"""
Train a network on MNIST and save its parameters.

Usage:
    python scripts/train_mnist.py --sizes 784 30 10 --epochs 30 --seed 1

The script will:
1. Load data/mnist.npz (or the archive given with --data)
2. Train a freshly initialized network with mini-batch SGD
3. Report test accuracy after every epoch
4. Write the trained parameters in the binary network format
"""

import os
import sys
import argparse

from neuro.config import configure_logging
from neuro.mnist_loader import load_data_wrapper
from neuro.network import Network
from neuro.random_source import RandomSource


def parse_args(argv=None) -> argparse.Namespace:
    script_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(script_dir)

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--data', default=os.path.join(project_root, 'data', 'mnist.npz'),
                        help='path of the MNIST .npz archive')
    parser.add_argument('--sizes', type=int, nargs='+', default=[784, 30, 10],
                        help='layer sizes, input layer first')
    parser.add_argument('--epochs', type=int, default=30)
    parser.add_argument('--mini-batch-size', type=int, default=10)
    parser.add_argument('--eta', type=float, default=3.0, help='learning rate')
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--output', default=os.path.join(project_root, 'models', 'mnist.bin'),
                        help='where to write the trained parameters')
    return parser.parse_args(argv)


def main(argv=None):
    """Main training function."""
    args = parse_args(argv)
    configure_logging()

    print("=" * 60)
    print("MNIST Network Trainer")
    print("=" * 60)

    if not os.path.exists(args.data):
        print(f"Error: MNIST archive not found: {args.data}")
        sys.exit(1)

    training_data, _, test_data = load_data_wrapper(args.data)
    print(f"Loaded {len(training_data)} training and {len(test_data)} test samples")

    net = Network(args.sizes, RandomSource(args.seed))
    print(f"Training {net} for {args.epochs} epoch(s), "
          f"batch size {args.mini_batch_size}, eta {args.eta}")

    def report(metrics):
        print(f"   Epoch {metrics['epoch']:>3}: {metrics['correct']} / {metrics['total']} "
              f"({metrics['accuracy']:.2%}, {metrics['elapsed_time']:.1f}s)")

    net.SGD(training_data, args.epochs, args.mini_batch_size, args.eta,
            test_data=test_data, callback=report)

    output_dir = os.path.dirname(args.output)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    net.save(args.output)

    print("=" * 60)
    print(f"Saved trained network to {args.output}")


if __name__ == '__main__':
    main()
