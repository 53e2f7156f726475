#!/usr/bin/env python3
"""
Real-time camera control CLI.

Runs the expression and/or gesture loops against a webcam and logs every
change of the published signals.

Usage:
    python -m camera_control.cli.run \
        --camera 0 \
        --classifier models/direction_classifier.onnx \
        --gesture
"""

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import Any, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run camera-driven game control inference",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (YAML or JSON)",
    )

    # Hardware arguments
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera device ID (overrides config)",
    )

    # Model arguments
    parser.add_argument(
        "--expression-model",
        type=str,
        default=None,
        help="Path or URL of the ONNX expression model",
    )
    parser.add_argument(
        "--face-detector",
        type=str,
        default=None,
        help="Path or URL of the MediaPipe face detector",
    )
    parser.add_argument(
        "--feature-extractor",
        type=str,
        default=None,
        help="Path or URL of the ONNX feature extractor",
    )
    parser.add_argument(
        "--classifier",
        type=str,
        default=None,
        help="Path of the trained ONNX direction classifier",
    )

    # Processing arguments
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Tick interval in seconds for both loops",
    )
    parser.add_argument(
        "--anger-threshold",
        type=float,
        default=None,
        help="Anger score at which the game speeds up",
    )
    parser.add_argument(
        "--confidence-threshold",
        type=float,
        default=None,
        help="Gesture confidence needed for tracking [0.5, 0.95]",
    )
    parser.add_argument(
        "--no-expression",
        action="store_true",
        help="Do not run the expression loop",
    )
    parser.add_argument(
        "--gesture",
        action="store_true",
        help="Arm the gesture loop (needs a trained classifier)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (runs until Ctrl+C otherwise)",
    )

    # Output arguments
    parser.add_argument(
        "--log-stats",
        action="store_true",
        help="Log performance statistics periodically",
    )
    parser.add_argument(
        "--stats-interval",
        type=float,
        default=5.0,
        help="Interval in seconds for logging stats",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--create-config",
        type=str,
        default=None,
        metavar="PATH",
        help="Create a default config file and exit",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace):
    """Load the config file (or defaults) and apply command line overrides."""
    from camera_control.config import load_config

    config = load_config(args.config)

    overrides = {
        "camera_id": args.camera,
        "expression_model": args.expression_model,
        "face_detector_model": args.face_detector,
        "feature_extractor_model": args.feature_extractor,
        "gesture_classifier_model": args.classifier,
        "anger_threshold": args.anger_threshold,
        "gesture_confidence_threshold": args.confidence_threshold,
        "expression_interval_s": args.interval,
        "gesture_interval_s": args.interval,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)

    if args.log_stats:
        config.log_performance = True

    config.validate()
    return config


class ControlRunner:
    """Runs the controller until stopped and logs signal changes."""

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.controller = None
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    def _log_change(self, key: str, value: Any) -> None:
        if isinstance(value, float):
            logger.info(f"{key} = {value:.2f}")
        else:
            logger.info(f"{key} = {value}")

    def _log_stats(self) -> None:
        for name, stats in self.controller.get_performance_stats().items():
            logger.info(
                f"{name}: mean={stats['mean_ms']:.1f}ms, "
                f"p95={stats['p95_ms']:.1f}ms, "
                f"ticks={stats['tick_count']}"
            )

    async def run(self) -> int:
        from camera_control.controller import CameraController
        from camera_control import sink as keys

        config = build_config(self.args)
        self.controller = CameraController(config)

        store = self.controller.sink.store
        for key in (keys.SPEED_MULTIPLIER, keys.IS_ANGRY_DETECTED,
                    keys.GESTURE_DIRECTION, keys.GESTURE_CONFIDENCE):
            store.subscribe(key, self._log_change)

        async with self.controller as controller:
            if not controller.set_camera_on(True):
                logger.error(f"Failed to open camera {config.camera_id}")
                return 1

            if not self.args.no_expression:
                await controller.preload()
                controller.set_expression_loop_active(True)
            if self.args.gesture and not controller.set_gesture_loop_active(True):
                logger.error("Gesture loop could not be armed")

            logger.info("Running (Ctrl+C to stop)")
            deadline = (time.monotonic() + self.args.duration
                        if self.args.duration else None)
            last_stats = time.monotonic()

            while not self._stop.is_set():
                now = time.monotonic()
                if deadline is not None and now >= deadline:
                    break
                if self.args.log_stats and now - last_stats >= self.args.stats_interval:
                    self._log_stats()
                    last_stats = now
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=0.5)
                except asyncio.TimeoutError:
                    pass

            if self.args.log_stats:
                self._log_stats()

        return 0


async def _main_async(args: argparse.Namespace) -> int:
    runner = ControlRunner(args)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, runner.stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(runner.stop))

    return await runner.run()


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the control CLI."""
    args = parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    if args.create_config:
        from camera_control.config import create_default_config
        create_default_config(args.create_config)
        print(f"Created default config at: {args.create_config}")
        return 0

    if not args.quiet:
        print("=" * 60)
        print("Camera Game Control - Real-time Inference")
        print("=" * 60)
        print(f"Camera: {args.camera if args.camera is not None else 'from config'}")
        print(f"Expression loop: {'off' if args.no_expression else 'on'}")
        print(f"Gesture loop: {'armed' if args.gesture else 'off'}")
        print("=" * 60)
        print()

    try:
        return asyncio.run(_main_async(args))
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    finally:
        if not args.quiet:
            print()
            print("Inference stopped")


if __name__ == "__main__":
    sys.exit(main())
