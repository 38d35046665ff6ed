import logging
import os

import numpy as np
import pretty_midi

LOWEST_PITCH = 21  # A0, key 0 of an 88-key piano


def key_to_pitch(key: int) -> int:
    return LOWEST_PITCH + int(key)


def performance_to_notes(history, note_length=0.5, velocity=80):
    """
    Convert performer history [(time, button, key), ...] into pretty_midi notes.

    Times are shifted so the first press starts at 0. A note is held until the
    next press or for ``note_length`` seconds, whichever comes first.
    """
    if not history:
        return []
    t0 = history[0][0]
    notes = []
    for idx, (t, _, key) in enumerate(history):
        start = t - t0
        end = start + note_length
        if idx + 1 < len(history):
            end = min(end, history[idx + 1][0] - t0)
        end = max(end, start + 1e-3)
        notes.append(
            pretty_midi.Note(
                velocity=velocity, pitch=key_to_pitch(key), start=start, end=end
            )
        )
    return notes


def write_performance_midi(history, output_path, tempo=120, velocity=80, note_length=0.5):
    """Write a performance to a single-piano MIDI file."""
    pm = pretty_midi.PrettyMIDI(initial_tempo=tempo)
    piano = pretty_midi.Instrument(program=0, is_drum=False, name="Piano")
    piano.notes.extend(performance_to_notes(history, note_length, velocity))
    pm.instruments.append(piano)

    out_dir = os.path.dirname(output_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    pm.write(str(output_path))
    logging.info(f"[MIDI] Saved {len(piano.notes)} notes to {output_path}")
    return pm


def performance_to_roll(history, num_keys=88):
    """(T, num_keys) one-hot roll with one row per press."""
    roll = np.zeros((len(history), num_keys), dtype=np.float32)
    for t, (_, _, key) in enumerate(history):
        roll[t, key] = 1.0
    return roll
