import json
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

from genie.errors import ConfigurationError

FIELDS = ("input_keys", "input_dts", "input_buttons", "output_logits")


@dataclass
class GoldenTrace:
    """Recorded inputs and reference logits, one entry per timestep."""

    input_keys: List[int] = field(default_factory=list)
    input_dts: List[float] = field(default_factory=list)
    input_buttons: List[int] = field(default_factory=list)
    output_logits: List[List[float]] = field(default_factory=list)

    def __len__(self):
        return len(self.input_keys)

    def validate(self, num_keys=None):
        lengths = {name: len(getattr(self, name)) for name in FIELDS}
        if len(set(lengths.values())) != 1:
            raise ConfigurationError(f"Trace fields have different lengths: {lengths}")
        widths = {len(row) for row in self.output_logits}
        if len(widths) > 1:
            raise ConfigurationError(f"Trace logits have mixed widths {sorted(widths)}")
        if num_keys is not None and widths and widths != {num_keys}:
            raise ConfigurationError(
                f"Trace logits have width {widths.pop()}, expected {num_keys}"
            )
        return self

    def expected(self) -> np.ndarray:
        return np.asarray(self.output_logits, dtype=np.float32)  # (N, num_keys)

    @classmethod
    def load(cls, path):
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read trace {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Malformed trace {path}: {e}") from e

        missing = [name for name in FIELDS if name not in data]
        if missing:
            raise ConfigurationError(f"Trace {path} is missing {missing}")
        trace = cls(
            input_keys=[int(k) for k in data["input_keys"]],
            input_dts=[float(d) for d in data["input_dts"]],
            input_buttons=[int(b) for b in data["input_buttons"]],
            output_logits=[[float(v) for v in row] for row in data["output_logits"]],
        )
        logging.info(f"[Trace] Loaded {len(trace)} steps from {path}")
        return trace.validate()

    def save(self, path):
        self.validate()
        with open(path, "w") as f:
            json.dump({name: getattr(self, name) for name in FIELDS}, f)
        logging.info(f"[Trace] Saved {len(self)} steps to {path}")


def record_trace(reference, keys, dts, buttons) -> GoldenTrace:
    """
    Replay inputs through a reference model and record its logits.

    reference: object with ``step(prev_key, dt, button, state) -> (logits, state)``
    """
    trace = GoldenTrace()
    state = None
    for key, dt, button in zip(keys, dts, buttons):
        logits, state = reference.step(int(key), float(dt), int(button), state)
        trace.input_keys.append(int(key))
        trace.input_dts.append(float(dt))
        trace.input_buttons.append(int(button))
        trace.output_logits.append([float(v) for v in logits.tolist()])
    return trace.validate()
