import logging
import sys
from datetime import datetime
from pathlib import Path

from genie.data.midi import performance_to_roll, write_performance_midi
from genie.data.trace import GoldenTrace
from genie.errors import UsageError
from genie.evaluation.parity import DEFAULT_TOLERANCE, check_parity
from genie.models.decoder import Decoder
from genie.models.performer import Performer
from genie.utils.memory import resolve_device
from scripts.plot_performance import plot_piano_roll

# keyboard row 1..8 -> buttons 0..7
KEY_TO_BUTTON = {str(i + 1): i for i in range(8)}


def parse_buttons(text, num_buttons=8):
    """Map a string like "1234 8765" to button indices; other characters are ignored."""
    buttons = [KEY_TO_BUTTON[ch] for ch in text if ch in KEY_TO_BUTTON]
    for b in buttons:
        if b >= num_buttons:
            raise UsageError(f"Button {b} outside [0, {num_buttons})")
    return buttons


class Pipeline:
    def __init__(self, cfg):
        self.cfg = cfg
        self.model_cfg = self.cfg["model"]
        self.pipeline_cfg = self.cfg["pipeline"]
        self.inference_cfg = self.cfg["inference"]
        self.midi_cfg = self.cfg["midi"]

        self.manifest_path = Path(self.cfg["weights"]["manifest"])
        self.output_dir = Path(self.pipeline_cfg.get("output_dir", "outputs"))
        self.device = resolve_device(self.inference_cfg.get("device", "auto"))
        self.decoder = None
        self.performer = None

    def check_parity(self):
        parity_cfg = self.cfg["parity"]
        trace = GoldenTrace.load(parity_cfg["trace"])
        return check_parity(
            self.manifest_path,
            trace,
            self.model_cfg,
            tolerance=parity_cfg.get("tolerance", DEFAULT_TOLERANCE),
            device=self.device,
            progress=True,
        )

    def _build_performer(self):
        self.decoder = Decoder(self.manifest_path, self.model_cfg, device=self.device)
        self.decoder.init()
        self.performer = Performer(
            self.decoder,
            temperature=self.inference_cfg.get("temperature", 0.25),
            max_time_delta=self.inference_cfg.get("max_time_delta", 1.0),
            seed=self.inference_cfg.get("seed"),
        )

    def _interactive(self, stream):
        logging.info("[Pipeline] Type buttons 1-8 and press enter, 'q' to quit")
        for line in stream:
            if line.strip().lower() == "q":
                break
            for button in parse_buttons(line, self.model_cfg["num_buttons"]):
                key = self.performer.press(button)
                print(f"button {button + 1} -> key {key}", flush=True)

    def play(self, buttons=None, interactive=False, stream=None):
        self._build_performer()
        try:
            if interactive:
                self._interactive(stream or sys.stdin)
            else:
                # scripted input: evenly spaced presses
                step = 60.0 / self.midi_cfg.get("tempo", 120) / 2
                times = [i * step for i in range(len(buttons or []))]
                keys = self.performer.play(buttons or [], times)
                logging.info(f"[Pipeline] Buttons {buttons} -> keys {keys}")
            history = list(self.performer.history)
        finally:
            self.performer.dispose()
            self.decoder.dispose()
        return history

    def _save_outputs(self, history):
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        outputs = {}
        if self.pipeline_cfg.get("create_midi"):
            outputs["midi"] = self.output_dir / f"performance_{stamp}.mid"
            write_performance_midi(
                history,
                outputs["midi"],
                tempo=self.midi_cfg.get("tempo", 120),
                velocity=self.midi_cfg.get("velocity", 80),
                note_length=self.midi_cfg.get("note_length", 0.5),
            )
        if self.pipeline_cfg.get("plot"):
            self.output_dir.mkdir(parents=True, exist_ok=True)
            outputs["plot"] = self.output_dir / f"performance_{stamp}.png"
            plot_piano_roll(
                performance_to_roll(history, self.model_cfg["num_keys"]),
                buttons=[b for _, b, _ in history],
                save_path=outputs["plot"],
            )
            logging.info(f"[Pipeline] Saved piano roll to {outputs['plot']}")
        return outputs

    def run(self, buttons=None, interactive=False, stream=None):
        result = {}
        if self.pipeline_cfg.get("check_parity"):
            result["parity"] = self.check_parity()

        if self.pipeline_cfg.get("play"):
            history = self.play(buttons, interactive=interactive, stream=stream)
            result["history"] = history
            if history:
                result.update(self._save_outputs(history))
            else:
                logging.info("[Pipeline] No buttons pressed, nothing to save")
        return result
