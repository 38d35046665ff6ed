import logging

import torch

from genie.errors import UsageError


def tensor_nbytes(tensor: torch.Tensor) -> int:
    return tensor.element_size() * tensor.nelement()


class BufferRegistry:
    """
    Book-keeping for tensors that outlive a single call.

    Tensors on an accelerator are not reclaimed until every Python reference
    is gone, so owners (parameter store, hidden states) register what they
    hold here and release it exactly once. The byte count is what the parity
    harness compares to detect leaks.
    """

    def __init__(self):
        self._live = {}  # id(tensor) -> (tensor, nbytes)

    def keep(self, tensor: torch.Tensor) -> torch.Tensor:
        key = id(tensor)
        if key in self._live:
            raise UsageError("Tensor is already tracked")
        self._live[key] = (tensor, tensor_nbytes(tensor))
        return tensor

    def release(self, tensor: torch.Tensor) -> None:
        if self._live.pop(id(tensor), None) is None:
            raise UsageError("Tensor is not tracked (already released?)")

    def is_tracked(self, tensor: torch.Tensor) -> bool:
        return id(tensor) in self._live

    def memory(self) -> dict:
        return {
            "num_tensors": len(self._live),
            "num_bytes": sum(n for _, n in self._live.values()),
        }

    def num_bytes(self) -> int:
        return self.memory()["num_bytes"]

    def tidy(self, fn, *args, **kwargs):
        """
        Run ``fn`` with autograd disabled.

        Intermediate tensors created inside ``fn`` are dropped when it
        returns. Only what ``fn`` explicitly passes to :meth:`keep` stays
        tracked; everything else in the return value belongs to the caller's
        frame.
        """
        before = len(self._live)
        with torch.no_grad():
            result = fn(*args, **kwargs)
        logging.debug(f"[Memory] tidy kept {len(self._live) - before} tensors")
        return result


_default_registry = BufferRegistry()


def default_registry() -> BufferRegistry:
    return _default_registry


def keep(tensor):
    return _default_registry.keep(tensor)


def release(tensor):
    _default_registry.release(tensor)


def memory():
    return _default_registry.memory()


def tidy(fn, *args, **kwargs):
    return _default_registry.tidy(fn, *args, **kwargs)


def resolve_device(name="auto"):
    if name != "auto":
        return torch.device(name)
    return torch.device(
        "cuda"
        if torch.cuda.is_available()
        else "mps" if torch.backends.mps.is_available() else "cpu"
    )
