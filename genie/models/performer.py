import logging
import time as _time

import torch

from genie.errors import UsageError
from genie.models.protocol import Model


def sample_key(logits, temperature: float = 1.0, generator=None) -> int:
    """Argmax for temperature 0, otherwise sample from the tempered softmax."""
    logits = torch.as_tensor(logits, dtype=torch.float32)
    if temperature <= 0:
        return int(logits.argmax(-1))
    probs = torch.softmax(logits / max(1e-6, temperature), dim=-1)
    return int(torch.multinomial(probs, num_samples=1, generator=generator))


class Performer:
    """
    Turns button presses into piano keys, one decoder step per press.

    The performer owns the running HiddenState: each press supersedes it and
    the previous one is disposed right away.
    """

    def __init__(self, decoder: Model, temperature=0.25, max_time_delta=1.0, seed=None):
        self.decoder = decoder
        self.temperature = temperature
        self.max_time_delta = max_time_delta
        self.generator = torch.Generator()
        if seed is not None:
            self.generator.manual_seed(seed)
        else:
            self.generator.seed()

        self.history = []  # (time, button, key)
        self._state = None
        self._last_key = None
        self._last_time = None
        self._closed = False

    def press(self, button, time=None) -> int:
        if self._closed:
            raise UsageError("Performer used after dispose()")
        if time is None:
            time = _time.monotonic()

        if self._last_time is None:
            dt = 0.0
        else:
            dt = min(max(time - self._last_time, 0.0), self.max_time_delta)

        out = self.decoder.forward(self._last_key, dt, button, self._state)
        if self._state is not None:
            self._state.dispose()
        self._state = out.state

        key = sample_key(out.logits, self.temperature, self.generator)
        self._last_key = key
        self._last_time = time
        self.history.append((time, button, key))
        logging.debug(f"[Performer] button {button} dt {dt:.3f}s -> key {key}")
        return key

    def play(self, buttons, times=None):
        if times is None:
            times = [None] * len(buttons)
        return [self.press(b, t) for b, t in zip(buttons, times)]

    def reset(self):
        if self._state is not None:
            self._state.dispose()
        self._state = None
        self._last_key = None
        self._last_time = None

    def dispose(self):
        if self._closed:
            raise UsageError("Performer disposed twice")
        self.reset()
        self._closed = True
