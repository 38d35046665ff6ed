import argparse
import logging
import os
import sys

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.append(project_root)

import numpy as np

from genie.data.trace import record_trace
from genie.data.weights import ParameterStore
from genie.models.lstm import ReferenceDecoder
from genie.utils.cfg import load_config
from genie.utils.memory import BufferRegistry


def random_inputs(num_keys, num_buttons, steps, seed=0, max_dt=0.5):
    """Random walk of inputs; the first step has no previous key."""
    rng = np.random.default_rng(seed)
    keys = [-1] + rng.integers(0, num_keys, size=steps - 1).tolist()
    dts = rng.uniform(0.0, max_dt, size=steps).round(4).tolist()
    buttons = rng.integers(0, num_buttons, size=steps).tolist()
    return keys, dts, buttons


def main():
    parser = argparse.ArgumentParser(
        description="Record a golden trace from the torch reference decoder."
    )
    parser.add_argument("--config", type=str, default="config.yaml")
    parser.add_argument("--steps", type=int, default=128)
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--output", type=str, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(message)s")
    cfg = load_config(args.config)
    model_cfg = cfg["model"]

    store = ParameterStore.load(cfg["weights"]["manifest"], registry=BufferRegistry())
    params = {name: store.lookup(name).numpy() for name in store.names()}
    reference = ReferenceDecoder.from_params(params, model_cfg)
    store.dispose()

    keys, dts, buttons = random_inputs(
        model_cfg["num_keys"], model_cfg["num_buttons"], args.steps, args.seed
    )
    trace = record_trace(reference, keys, dts, buttons)
    trace.save(args.output or cfg["parity"]["trace"])


if __name__ == "__main__":
    main()
