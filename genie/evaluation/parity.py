import logging
import math
from dataclasses import dataclass

import numpy as np
from tqdm import tqdm

from genie.errors import ConfigurationError, ParityFailure, UsageError
from genie.models.decoder import Decoder
from genie.models.quantizer import Quantizer
from genie.utils.memory import default_registry

DEFAULT_TOLERANCE = 0.015


@dataclass
class ParityReport:
    steps: int
    total_error: float
    max_step_error: float
    bytes_before: int
    bytes_after: int


def check_trace_buttons(trace, quantizer):
    """Every recorded button must be a quantizer level that maps back to itself."""
    for t, button in enumerate(trace.input_buttons):
        try:
            level = quantizer.discrete_to_real(button)
        except UsageError as e:
            raise ConfigurationError(f"Trace step {t}: {e}") from e
        if quantizer.real_to_discrete(level) != button:
            raise ParityFailure(
                f"Trace step {t}: button {button} quantizes to {level}, "
                f"which maps back to {quantizer.real_to_discrete(level)}"
            )


def check_parity(
    manifest_path,
    trace,
    cfg_model,
    tolerance: float = DEFAULT_TOLERANCE,
    device="cpu",
    registry=None,
    progress: bool = False,
) -> ParityReport:
    """
    Replay a golden trace through a fresh Decoder and compare logits.

    The hidden state is carried from step to step; each superseded state is
    disposed. Fails with ParityFailure when the summed absolute logit error
    is above ``tolerance`` or not finite, or when any tracked buffer is still
    alive after the decoder, the last state and the quantizer are disposed.
    """
    registry = registry or default_registry()
    trace.validate(num_keys=cfg_model["num_keys"])
    expected = trace.expected()

    quantizer = Quantizer(cfg_model["num_buttons"])
    check_trace_buttons(trace, quantizer)

    bytes_before = registry.num_bytes()

    decoder = Decoder(manifest_path, cfg_model, device=device, registry=registry)
    total, worst = 0.0, 0.0
    state = None
    try:
        decoder.init()
        steps = zip(trace.input_keys, trace.input_dts, trace.input_buttons)
        for t, (key, dt, button) in enumerate(
            tqdm(steps, total=len(trace), desc="Parity", disable=not progress)
        ):
            out = decoder.forward(key, dt, button, state)
            if state is not None:
                state.dispose()
            state = out.state

            err = float(np.abs(out.logits - expected[t]).sum())
            total += err
            worst = max(worst, err)
    finally:
        decoder.dispose()
        if state is not None:
            state.dispose()
        quantizer.dispose()

    bytes_after = registry.num_bytes()
    report = ParityReport(len(trace), total, worst, bytes_before, bytes_after)
    logging.info(
        f"[Parity] {report.steps} steps, total |error| {total:.6f} "
        f"(max/step {worst:.6f}, tolerance {tolerance})"
    )

    if not math.isfinite(total):
        raise ParityFailure(f"Accumulated logit error is not a number: {total}")
    if total > tolerance:
        raise ParityFailure(
            f"Accumulated logit error {total:.6f} exceeds tolerance {tolerance}"
        )
    if bytes_after != bytes_before:
        raise ParityFailure(
            f"Leaked {bytes_after - bytes_before} bytes of tracked buffers"
        )
    return report
