"""
CLI subpackage for command-line interface tools.

Available CLI scripts:
- run: Run the camera control loops and log the published signals

Usage:
    python -m camera_control.cli.run --help
"""

__all__ = ["run"]
