import logging
import math
import numbers
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import torch

from genie.data.weights import ParameterStore
from genie.errors import ConfigurationError, ShapeMismatchError, UsageError
from genie.models.lstm import lstm_cell
from genie.models.quantizer import Quantizer
from genie.utils.memory import default_registry

RNN_INPUT = "decoder/rnn_input"
RNN_CELL = "decoder/rnn/cell_{}"
PITCHES = "decoder/pitches"


@dataclass
class HiddenState:
    """Per-layer LSTM memory. Owned by the caller; dispose when superseded."""

    c: List[torch.Tensor]
    h: List[torch.Tensor]
    registry: object = field(default=None, repr=False)
    disposed: bool = False

    @classmethod
    def zeros(cls, layers, units, device="cpu", registry=None):
        registry = registry or default_registry()
        c = [registry.keep(torch.zeros(1, units, device=device)) for _ in range(layers)]
        h = [registry.keep(torch.zeros(1, units, device=device)) for _ in range(layers)]
        return cls(c, h, registry)

    @property
    def num_layers(self):
        return len(self.c)

    def dispose(self):
        if self.disposed:
            raise UsageError("HiddenState disposed twice")
        registry = self.registry or default_registry()
        for t in self.c + self.h:
            registry.release(t)
        self.disposed = True


@dataclass
class StepOutput:
    logits: np.ndarray  # (num_keys,)
    state: HiddenState


class Decoder:
    """
    Step-wise forward pass of the trained 2-layer LSTM decoder.

    features = [one_hot(prev_key + 1), dt, quantize(button)]
    x = features @ W_in + b_in -> LSTM stack -> h_top @ W_out + b_out
    """

    def __init__(self, manifest_path, cfg_model, device="cpu", registry=None):
        self.manifest_path = manifest_path
        self.num_keys = cfg_model["num_keys"]
        self.num_buttons = cfg_model["num_buttons"]
        self.input_units = cfg_model["rnn_input_units"]
        self.units = cfg_model["rnn_nunits"]
        self.layers = cfg_model["rnn_nlayers"]
        self.forget_bias = float(cfg_model.get("forget_bias", 1.0))
        self.device = torch.device(device)
        self.registry = registry or default_registry()

        self.quantizer = Quantizer(self.num_buttons)
        self._store: Optional[ParameterStore] = None
        self._weights = None
        self._disposed = False

    def _check_alive(self):
        if self._disposed:
            raise UsageError("Decoder used after dispose()")

    def _expected_shapes(self):
        shapes = {
            f"{RNN_INPUT}/kernel": (self.num_keys + 3, self.input_units),
            f"{RNN_INPUT}/bias": (self.input_units,),
            f"{PITCHES}/kernel": (self.units, self.num_keys),
            f"{PITCHES}/bias": (self.num_keys,),
        }
        for l in range(self.layers):
            in_size = self.input_units if l == 0 else self.units
            shapes[f"{RNN_CELL.format(l)}/kernel"] = (in_size + self.units, 4 * self.units)
            shapes[f"{RNN_CELL.format(l)}/bias"] = (4 * self.units,)
        return shapes

    def init(self):
        self._check_alive()
        if self._store is not None:
            return

        store = ParameterStore.load(
            self.manifest_path, device=self.device, registry=self.registry
        )
        try:
            for name, shape in self._expected_shapes().items():
                tensor = store.lookup(name)
                actual = tuple(tensor.shape)
                if actual != shape:
                    raise ShapeMismatchError(
                        f"{name}: expected shape {shape}, manifest has {actual}"
                    )
                if tensor.dtype != torch.float32:
                    raise ConfigurationError(
                        f"{name}: expected float32, manifest has {tensor.dtype}"
                    )
        except Exception:
            store.dispose()
            raise

        # views into the store, no extra buffers
        self._weights = {
            "in_kernel": store.lookup(f"{RNN_INPUT}/kernel"),
            "in_bias": store.lookup(f"{RNN_INPUT}/bias"),
            "cells": [
                (
                    store.lookup(f"{RNN_CELL.format(l)}/kernel"),
                    store.lookup(f"{RNN_CELL.format(l)}/bias"),
                )
                for l in range(self.layers)
            ],
            "out_kernel": store.lookup(f"{PITCHES}/kernel"),
            "out_bias": store.lookup(f"{PITCHES}/bias"),
        }
        self._store = store
        logging.info(
            f"[Decoder] Initialized {self.layers}x{self.units} LSTM on {self.device}"
        )

    def zero_state(self) -> HiddenState:
        self._check_alive()
        return HiddenState.zeros(
            self.layers, self.units, device=self.device, registry=self.registry
        )

    def _validate_step(self, previous_key, time_delta, button, state):
        if previous_key is None:
            previous_key = -1
        if isinstance(previous_key, bool) or not isinstance(previous_key, numbers.Integral):
            raise UsageError(f"Previous key must be an integer, got {previous_key!r}")
        if not -1 <= previous_key < self.num_keys:
            raise UsageError(f"Previous key {previous_key} outside [-1, {self.num_keys})")
        try:
            time_delta = float(time_delta)
        except (TypeError, ValueError):
            raise UsageError(f"Time delta must be a number, got {time_delta!r}") from None
        if not math.isfinite(time_delta) or time_delta < 0:
            raise UsageError(f"Time delta must be finite and non-negative, got {time_delta}")

        button_real = self.quantizer.discrete_to_real(button)

        if state is not None:
            if state.disposed:
                raise UsageError("forward() called with a disposed HiddenState")
            if state.num_layers != self.layers:
                raise ShapeMismatchError(
                    f"State has {state.num_layers} layers, decoder has {self.layers}"
                )
            for t in state.c + state.h:
                if tuple(t.shape) != (1, self.units):
                    raise ShapeMismatchError(
                        f"State tensor shape {tuple(t.shape)} != (1, {self.units})"
                    )
        return int(previous_key), time_delta, button_real

    def _step(self, previous_key, time_delta, button_real, state):
        w = self._weights

        features = torch.zeros(1, self.num_keys + 3, device=self.device)
        features[0, previous_key + 1] = 1.0
        features[0, self.num_keys + 1] = time_delta
        features[0, self.num_keys + 2] = button_real

        x = features @ w["in_kernel"] + w["in_bias"]  # (1, input_units)

        new_c, new_h = [], []
        for l, (kernel, bias) in enumerate(w["cells"]):
            if state is None:
                c = torch.zeros(1, self.units, device=self.device)
                h = torch.zeros(1, self.units, device=self.device)
            else:
                c, h = state.c[l], state.h[l]
            c, h = lstm_cell(x, c, h, kernel, bias, self.forget_bias)
            new_c.append(c)
            new_h.append(h)
            x = h

        logits = x @ w["out_kernel"] + w["out_bias"]  # (1, num_keys)
        logits = logits.squeeze(0).cpu().numpy()

        # track the new state only once every layer has succeeded
        for t in new_c + new_h:
            self.registry.keep(t)
        return logits, HiddenState(new_c, new_h, self.registry)

    def forward(self, previous_key, time_delta, button, state=None) -> StepOutput:
        self._check_alive()
        if self._store is None:
            raise UsageError("Decoder.forward() called before init()")
        previous_key, time_delta, button_real = self._validate_step(
            previous_key, time_delta, button, state
        )
        logits, new_state = self.registry.tidy(
            self._step, previous_key, time_delta, button_real, state
        )
        return StepOutput(logits=logits, state=new_state)

    __call__ = forward

    @property
    def disposed(self):
        return self._disposed

    def dispose(self):
        self._check_alive()
        if self._store is not None:
            self._store.dispose()
        self._store = None
        self._weights = None
        self.quantizer.dispose()
        self._disposed = True
        logging.info("[Decoder] Disposed")
