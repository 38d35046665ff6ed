import json
import logging
import math
from pathlib import Path

import numpy as np
import torch

from genie.errors import ConfigurationError, MissingParameterError, UsageError
from genie.utils.memory import default_registry

DTYPES = {
    "float32": np.dtype("<f4"),
    "int32": np.dtype("<i4"),
}
MANIFEST_NAME = "weights_manifest.json"
SHARD_NAME = "group1-shard1of1.bin"


def _read_manifest(manifest_path: Path):
    try:
        with open(manifest_path, "r") as f:
            manifest = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read manifest {manifest_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Malformed manifest {manifest_path}: {e}") from e

    # a full model.json nests the groups under "weightsManifest"
    if isinstance(manifest, dict) and "weightsManifest" in manifest:
        manifest = manifest["weightsManifest"]
    if not isinstance(manifest, list):
        raise ConfigurationError(f"Manifest {manifest_path} is not a list of groups")
    return manifest


def _read_group_payload(group, base_dir: Path) -> bytes:
    paths = group.get("paths")
    if not paths:
        raise ConfigurationError("Manifest group declares no payload paths")
    chunks = []
    for p in paths:
        try:
            chunks.append((base_dir / p).read_bytes())
        except OSError as e:
            raise ConfigurationError(f"Cannot read weights payload {p}: {e}") from e
    return b"".join(chunks)


def _as_index(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {value!r}")
    return value


def _parse_entry(entry):
    try:
        name = entry["name"]
        shape = tuple(int(d) for d in entry["shape"])
        dtype_name = entry.get("dtype", "float32")
        offset = _as_index(entry["offset"]) if "offset" in entry else None
        byte_length = _as_index(entry["byte_length"]) if "byte_length" in entry else None
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Malformed manifest entry {entry!r}: {e}") from e
    if dtype_name not in DTYPES:
        raise ConfigurationError(f"Unsupported dtype '{dtype_name}' for {name}")
    if any(d < 0 for d in shape):
        raise ConfigurationError(f"Negative dimension in shape {shape} for {name}")
    return name, shape, DTYPES[dtype_name], offset, byte_length


class ParameterStore:
    """
    Named, read-only tensors loaded from a weights manifest + binary payload.

    Every tensor is registered with the buffer registry on load and released
    by :meth:`dispose`.
    """

    def __init__(self, tensors, registry=None, source=None):
        self._tensors = dict(tensors)
        self._registry = registry or default_registry()
        self.source = source
        self._disposed = False
        for t in self._tensors.values():
            self._registry.keep(t)

    @classmethod
    def load(cls, manifest_path, device="cpu", registry=None):
        manifest_path = Path(manifest_path)
        manifest = _read_manifest(manifest_path)
        base_dir = manifest_path.parent

        arrays = {}
        for group in manifest:
            if not isinstance(group, dict):
                raise ConfigurationError(f"Malformed manifest group {group!r}")
            payload = _read_group_payload(group, base_dir)

            cursor, declared, ranges = 0, 0, []
            for entry in group.get("weights", []):
                name, shape, dtype, offset, byte_length = _parse_entry(entry)
                if name in arrays:
                    raise ConfigurationError(f"Duplicate parameter '{name}'")

                nbytes = math.prod(shape) * dtype.itemsize
                if byte_length is not None and byte_length != nbytes:
                    raise ConfigurationError(
                        f"{name}: shape {shape} needs {nbytes} bytes, "
                        f"byte_length is {byte_length}"
                    )
                if offset is None:
                    offset = cursor
                if offset < 0 or offset + nbytes > len(payload):
                    raise ConfigurationError(
                        f"{name}: bytes [{offset}, {offset + nbytes}) outside "
                        f"payload of {len(payload)} bytes"
                    )

                arr = np.frombuffer(
                    payload, dtype=dtype, count=math.prod(shape), offset=offset
                )
                arrays[name] = arr.reshape(shape).copy()
                cursor = offset + nbytes
                declared += nbytes
                ranges.append((offset, cursor, name))

            ranges.sort()
            for (_, end, prev), (start, _, cur) in zip(ranges, ranges[1:]):
                if start < end:
                    raise ConfigurationError(f"{cur} overlaps {prev} in the payload")

            if declared != len(payload):
                raise ConfigurationError(
                    f"Payload {group['paths']} has {len(payload)} bytes, "
                    f"manifest declares {declared}"
                )

        tensors = {k: torch.from_numpy(v).to(device) for k, v in arrays.items()}
        store = cls(tensors, registry=registry, source=manifest_path)
        logging.info(
            f"[Weights] Loaded {len(store)} parameters "
            f"({store.num_bytes} bytes) from {manifest_path}"
        )
        return store

    def _check_alive(self):
        if self._disposed:
            raise UsageError("ParameterStore used after dispose()")

    def lookup(self, name) -> torch.Tensor:
        self._check_alive()
        try:
            return self._tensors[name]
        except KeyError:
            raise MissingParameterError(
                f"Parameter '{name}' not found in {self.source}"
            ) from None

    def names(self):
        self._check_alive()
        return sorted(self._tensors)

    def __contains__(self, name):
        return name in self._tensors

    def __len__(self):
        return len(self._tensors)

    @property
    def num_bytes(self):
        return sum(t.element_size() * t.nelement() for t in self._tensors.values())

    @property
    def disposed(self):
        return self._disposed

    def dispose(self):
        self._check_alive()
        for t in self._tensors.values():
            self._registry.release(t)
        self._tensors = {}
        self._disposed = True
        logging.debug(f"[Weights] Disposed parameters from {self.source}")


def save_weights(params, directory, shard_name=SHARD_NAME, manifest_name=MANIFEST_NAME):
    """
    Write ``params`` (name -> numpy array) as a manifest plus one binary shard.

    Returns the manifest path.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    entries, chunks = [], []
    for name, value in params.items():
        arr = np.asarray(value)
        dtype_name = "int32" if np.issubdtype(arr.dtype, np.integer) else "float32"
        arr = np.ascontiguousarray(arr, dtype=DTYPES[dtype_name])
        entries.append({"name": name, "shape": list(arr.shape), "dtype": dtype_name})
        chunks.append(arr.tobytes())

    (directory / shard_name).write_bytes(b"".join(chunks))
    manifest_path = directory / manifest_name
    with open(manifest_path, "w") as f:
        json.dump([{"paths": [shard_name], "weights": entries}], f, indent=2)
    logging.info(f"[Weights] Saved {len(entries)} parameters to {manifest_path}")
    return manifest_path
