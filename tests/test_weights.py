import json

import numpy as np
import pytest
import torch

from genie.data.weights import ParameterStore, save_weights
from genie.errors import ConfigurationError, MissingParameterError, UsageError


def test_load_round_trips_saved_arrays(manifest_path, params, registry):
    store = ParameterStore.load(manifest_path, registry=registry)
    assert len(store) == len(params)
    for name, arr in params.items():
        np.testing.assert_array_equal(store.lookup(name).numpy(), arr)
    assert registry.num_bytes() == sum(a.nbytes for a in params.values())
    store.dispose()
    assert registry.num_bytes() == 0


def test_missing_parameter(manifest_path, registry):
    store = ParameterStore.load(manifest_path, registry=registry)
    with pytest.raises(MissingParameterError):
        store.lookup("decoder/does_not_exist")
    assert issubclass(MissingParameterError, ConfigurationError)
    store.dispose()


def test_use_after_dispose(manifest_path, registry):
    store = ParameterStore.load(manifest_path, registry=registry)
    store.dispose()
    with pytest.raises(UsageError):
        store.lookup("decoder/pitches/bias")
    with pytest.raises(UsageError):
        store.dispose()


def test_payload_shorter_than_manifest(tmp_path, registry):
    manifest = save_weights({"w": np.ones((4, 4), np.float32)}, tmp_path)
    shard = tmp_path / "group1-shard1of1.bin"
    shard.write_bytes(shard.read_bytes()[:-4])
    with pytest.raises(ConfigurationError):
        ParameterStore.load(manifest, registry=registry)
    assert registry.num_bytes() == 0


def test_payload_longer_than_manifest(tmp_path, registry):
    manifest = save_weights({"w": np.ones((4, 4), np.float32)}, tmp_path)
    shard = tmp_path / "group1-shard1of1.bin"
    shard.write_bytes(shard.read_bytes() + b"\0" * 8)
    with pytest.raises(ConfigurationError, match="declares"):
        ParameterStore.load(manifest, registry=registry)


def test_declared_shape_disagrees_with_payload(tmp_path, registry):
    manifest = save_weights({"w": np.ones((4, 4), np.float32)}, tmp_path)
    groups = json.loads(manifest.read_text())
    groups[0]["weights"][0]["shape"] = [4, 5]
    manifest.write_text(json.dumps(groups))
    with pytest.raises(ConfigurationError):
        ParameterStore.load(manifest, registry=registry)


def test_byte_length_disagrees_with_shape(tmp_path, registry):
    manifest = save_weights({"w": np.ones((2,), np.float32)}, tmp_path)
    groups = json.loads(manifest.read_text())
    groups[0]["weights"][0]["byte_length"] = 12
    manifest.write_text(json.dumps(groups))
    with pytest.raises(ConfigurationError, match="byte_length"):
        ParameterStore.load(manifest, registry=registry)


def test_explicit_offsets_and_multiple_shards(tmp_path, registry):
    a = np.arange(6, dtype=np.float32).reshape(2, 3)
    b = np.array([7, 8], dtype=np.int32)
    payload = b.tobytes() + a.tobytes()
    (tmp_path / "shard1.bin").write_bytes(payload[:10])
    (tmp_path / "shard2.bin").write_bytes(payload[10:])
    manifest = tmp_path / "model.json"
    manifest.write_text(
        json.dumps(
            {
                "weightsManifest": [
                    {
                        "paths": ["shard1.bin", "shard2.bin"],
                        "weights": [
                            {"name": "a", "shape": [2, 3], "dtype": "float32", "offset": 8},
                            {"name": "b", "shape": [2], "dtype": "int32", "offset": 0},
                        ],
                    }
                ]
            }
        )
    )
    store = ParameterStore.load(manifest, registry=registry)
    np.testing.assert_array_equal(store.lookup("a").numpy(), a)
    assert store.lookup("b").dtype == torch.int32
    assert store.lookup("b").tolist() == [7, 8]
    store.dispose()


@pytest.mark.parametrize(
    "content",
    ["not json", json.dumps({"foo": 1}), json.dumps([{"weights": []}])],
)
def test_malformed_manifest(tmp_path, registry, content):
    manifest = tmp_path / "weights_manifest.json"
    manifest.write_text(content)
    with pytest.raises(ConfigurationError):
        ParameterStore.load(manifest, registry=registry)


def test_unsupported_dtype(tmp_path, registry):
    manifest = save_weights({"w": np.ones(2, np.float32)}, tmp_path)
    groups = json.loads(manifest.read_text())
    groups[0]["weights"][0]["dtype"] = "float16"
    manifest.write_text(json.dumps(groups))
    with pytest.raises(ConfigurationError, match="dtype"):
        ParameterStore.load(manifest, registry=registry)


def test_missing_files(tmp_path, registry):
    with pytest.raises(ConfigurationError):
        ParameterStore.load(tmp_path / "nope.json", registry=registry)
    manifest = save_weights({"w": np.ones(2, np.float32)}, tmp_path)
    (tmp_path / "group1-shard1of1.bin").unlink()
    with pytest.raises(ConfigurationError):
        ParameterStore.load(manifest, registry=registry)


@pytest.mark.parametrize("field, value", [("offset", "start"), ("byte_length", "eight"), ("offset", None), ("offset", 4.5), ("byte_length", True)])
def test_non_integer_offset_or_byte_length(tmp_path, registry, field, value):
    manifest = save_weights({"w": np.ones(2, np.float32)}, tmp_path)
    groups = json.loads(manifest.read_text())
    groups[0]["weights"][0][field] = value
    manifest.write_text(json.dumps(groups))
    with pytest.raises(ConfigurationError, match="Malformed"):
        ParameterStore.load(manifest, registry=registry)


def test_overlapping_entries(tmp_path, registry):
    manifest = save_weights(
        {"a": np.ones(2, np.float32), "b": np.ones(2, np.float32)}, tmp_path
    )
    groups = json.loads(manifest.read_text())
    groups[0]["weights"][0]["offset"] = 0
    groups[0]["weights"][1]["offset"] = 4
    manifest.write_text(json.dumps(groups))
    with pytest.raises(ConfigurationError, match="overlaps"):
        ParameterStore.load(manifest, registry=registry)
    assert registry.num_bytes() == 0
