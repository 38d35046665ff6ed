from pathlib import Path

import numpy as np
import pytest

from genie.data.trace import GoldenTrace, record_trace
from genie.data.weights import save_weights
from genie.models.lstm import ReferenceDecoder
from genie.utils.cfg import load_config
from genie.utils.memory import BufferRegistry
from scripts.record_trace import random_inputs

TRACE_STEPS = 128


@pytest.fixture
def cfg_model():
    # real key/button alphabet, narrow layers to keep the tests fast
    return {
        "num_keys": 88,
        "num_buttons": 8,
        "rnn_input_units": 24,
        "rnn_nunits": 32,
        "rnn_nlayers": 2,
        "forget_bias": 1.0,
    }


def make_params(cfg_model, seed=0, scale=0.1):
    rng = np.random.default_rng(seed)
    k, u, i = cfg_model["num_keys"], cfg_model["rnn_nunits"], cfg_model["rnn_input_units"]

    def rand(*shape):
        return (rng.standard_normal(shape) * scale).astype(np.float32)

    params = {
        "decoder/rnn_input/kernel": rand(k + 3, i),
        "decoder/rnn_input/bias": rand(i),
    }
    for l in range(cfg_model["rnn_nlayers"]):
        in_size = i if l == 0 else u
        params[f"decoder/rnn/cell_{l}/kernel"] = rand(in_size + u, 4 * u)
        params[f"decoder/rnn/cell_{l}/bias"] = rand(4 * u)
    params["decoder/pitches/kernel"] = rand(u, k)
    params["decoder/pitches/bias"] = rand(k)
    return params


@pytest.fixture
def params(cfg_model):
    return make_params(cfg_model)


@pytest.fixture
def manifest_path(tmp_path, params):
    return save_weights(params, tmp_path / "weights")


@pytest.fixture
def registry():
    return BufferRegistry()


@pytest.fixture
def reference(params, cfg_model):
    return ReferenceDecoder.from_params(params, cfg_model)


@pytest.fixture
def reference_trace(reference, cfg_model):
    keys, dts, buttons = random_inputs(
        cfg_model["num_keys"], cfg_model["num_buttons"], TRACE_STEPS, seed=7
    )
    return record_trace(reference, keys, dts, buttons)


GOLDEN_DIR = Path(__file__).parent / "data" / "golden"


@pytest.fixture
def golden_cfg():
    return load_config(GOLDEN_DIR / "config.yaml")


@pytest.fixture
def golden_manifest(golden_cfg):
    return GOLDEN_DIR / golden_cfg["weights"]["manifest"]


@pytest.fixture
def recorded_trace(golden_cfg):
    return GoldenTrace.load(GOLDEN_DIR / golden_cfg["parity"]["trace"])
