import argparse
import logging
import os
import sys
from datetime import datetime

from genie.errors import GenieError, ParityFailure
from genie.pipeline import Pipeline, parse_buttons
from genie.utils.cfg import load_config


def main():
    parser = argparse.ArgumentParser(
        description="Run the ported Piano Genie decoder: parity check and playback."
    )
    parser.add_argument("--config", type=str, default="config.yaml")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only replay the golden trace, do not play",
    )
    parser.add_argument(
        "--buttons",
        type=str,
        default=None,
        help='Scripted button presses, e.g. "12345678"',
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Read button presses (1-8) from stdin",
    )
    parser.add_argument("--midi", action="store_true", help="Write a MIDI file")
    parser.add_argument("--plot", action="store_true", help="Plot the piano roll")
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    cfg = load_config(args.config)
    if args.check:
        cfg["pipeline"]["check_parity"] = True
        cfg["pipeline"]["play"] = False
    if args.midi:
        cfg["pipeline"]["create_midi"] = True
    if args.plot:
        cfg["pipeline"]["plot"] = True
    if args.temperature is not None:
        cfg["inference"]["temperature"] = args.temperature
    if args.seed is not None:
        cfg["inference"]["seed"] = args.seed

    os.makedirs("logs", exist_ok=True)
    logfile = f"logs/genie_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.FileHandler(logfile), logging.StreamHandler()],
    )

    logger = logging.getLogger(__name__)
    logger.info("Initializing pipeline...")
    buttons = (
        parse_buttons(args.buttons, cfg["model"]["num_buttons"]) if args.buttons else None
    )
    try:
        Pipeline(cfg).run(buttons=buttons, interactive=args.interactive)
    except ParityFailure as e:
        logger.error(f"Parity check failed: {e}")
        sys.exit(2)
    except GenieError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
