import io

import pretty_midi
import pytest

from genie.data.midi import key_to_pitch, performance_to_roll, write_performance_midi
from genie.errors import ConfigurationError, UsageError
from genie.pipeline import Pipeline, parse_buttons
from genie.utils.cfg import load_config
from genie.utils.memory import default_registry


@pytest.fixture
def cfg(tmp_path, manifest_path, reference_trace, cfg_model):
    trace_path = tmp_path / "trace.json"
    reference_trace.save(trace_path)
    return {
        "model": cfg_model,
        "weights": {"manifest": str(manifest_path)},
        "parity": {"trace": str(trace_path), "tolerance": 0.015},
        "inference": {"device": "cpu", "temperature": 0.5, "max_time_delta": 1.0, "seed": 1},
        "pipeline": {
            "check_parity": True,
            "play": True,
            "create_midi": True,
            "plot": True,
            "output_dir": str(tmp_path / "outputs"),
        },
        "midi": {"tempo": 120, "velocity": 80, "note_length": 0.5},
    }


def test_parse_buttons():
    assert parse_buttons("1 2 8x") == [0, 1, 7]
    assert parse_buttons("") == []
    with pytest.raises(UsageError):
        parse_buttons("8", num_buttons=4)


def test_write_midi(tmp_path):
    history = [(1.0, 0, 39), (1.25, 3, 43), (2.5, 7, 87)]
    path = tmp_path / "out" / "perf.mid"
    write_performance_midi(history, path, note_length=0.5)
    pm = pretty_midi.PrettyMIDI(str(path))
    notes = pm.instruments[0].notes
    assert [n.pitch for n in notes] == [key_to_pitch(k) for _, _, k in history]
    assert notes[0].start == pytest.approx(0.0)
    assert notes[0].end == pytest.approx(0.25, abs=1e-2)
    assert notes[2].end == pytest.approx(2.0, abs=1e-2)


def test_performance_to_roll():
    roll = performance_to_roll([(0.0, 1, 5), (0.1, 2, 80)])
    assert roll.shape == (2, 88)
    assert roll[0, 5] == 1.0 and roll[1, 80] == 1.0
    assert roll.sum() == 2.0


def test_pipeline_run_scripted(cfg, tmp_path):
    before = default_registry().num_bytes()
    result = Pipeline(cfg).run(buttons=[0, 1, 2, 3, 4, 5, 6, 7])
    assert result["parity"].total_error <= 0.015
    assert len(result["history"]) == 8
    assert result["midi"].exists()
    assert result["plot"].exists()
    assert default_registry().num_bytes() == before


def test_pipeline_interactive(cfg, capsys):
    cfg["pipeline"].update(check_parity=False, create_midi=False, plot=False)
    stream = io.StringIO("12\n34\nq\n88\n")
    result = Pipeline(cfg).run(interactive=True, stream=stream)
    assert [b for _, b, _ in result["history"]] == [0, 1, 2, 3]
    assert "button 1 -> key" in capsys.readouterr().out


def test_pipeline_without_presses_saves_nothing(cfg):
    cfg["pipeline"]["check_parity"] = False
    result = Pipeline(cfg).run(buttons=[])
    assert result["history"] == []
    assert "midi" not in result


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("model:\n  num_keys: 88\n")
    assert load_config(path)["model"]["num_keys"] == 88
    path.write_text("- just a list\n")
    with pytest.raises(ConfigurationError):
        load_config(path)
