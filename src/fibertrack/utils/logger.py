"""
Logging utilities for fibertrack

Console and file logging for the package loggers, and a markdown record of
every tracking run (seeds, streamline counts, outputs, tracker settings).
"""

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

CONSOLE_FORMAT = '%(levelname)s: %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

RUN_RECORD_FILE = "logs/tracking_runs.md"


class FiberTrackLogger:
    """
    Handlers for the package logger

    Messages from every fibertrack module propagate to the "fibertrack"
    logger. The console shows messages at the chosen level; the log file,
    if enabled, keeps everything down to DEBUG.
    """

    def __init__(
        self,
        name: str = "fibertrack",
        log_dir: Optional[str] = "logs",
        level: int = logging.INFO,
        console: bool = True
    ):
        self.logger = logging.getLogger(name)
        self.logger.handlers = []
        self.console_handler = None
        self.log_file = None

        if console:
            self.console_handler = logging.StreamHandler(sys.stdout)
            self.console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
            self.logger.addHandler(self.console_handler)

        if log_dir is not None:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            self.log_file = log_path / f"{name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            self.logger.addHandler(file_handler)

        self.set_level(level)
        if self.log_file is not None:
            self.logger.debug(f"Logging to: {self.log_file}")

    def set_level(self, level: int):
        """Change the level shown on the console"""
        if self.console_handler is not None:
            self.console_handler.setLevel(level)
        # The file handler still needs DEBUG records to reach it
        self.logger.setLevel(logging.DEBUG if self.log_file is not None else level)


_package_logger: Optional[FiberTrackLogger] = None


def get_logger(level: Optional[int] = None, **kwargs) -> logging.Logger:
    """
    Get the package logger, setting up its handlers on first use

    Args:
        level: Console level to apply, if given
        **kwargs: FiberTrackLogger arguments, used on first use only

    Returns:
        The "fibertrack" logger
    """
    global _package_logger
    if _package_logger is None:
        _package_logger = FiberTrackLogger(**kwargs)
    if level is not None:
        _package_logger.set_level(level)
    return _package_logger.logger


@dataclass
class TrackingRunRecord:
    """Summary of one tracking run"""
    model: str
    seeds: str
    n_seeds: int
    n_generated: int
    n_retained: int
    outputs: Dict[str, str] = field(default_factory=dict)
    tracker_config: Dict[str, Any] = field(default_factory=dict)
    started: datetime = field(default_factory=datetime.now)

    @property
    def run_id(self) -> str:
        return f"TRACK-{self.started.strftime('%Y%m%d%H%M%S')}"

    def to_markdown(self) -> str:
        lines = [
            f"### [{self.run_id}] {self.model} model",
            f"**Started**: {self.started.strftime('%Y-%m-%d %H:%M:%S')}",
            f"**Seeds**: {self.n_seeds} from {self.seeds}",
            f"**Streamlines**: {self.n_retained} retained of {self.n_generated} generated",
            "",
            "**Outputs**:",
        ]
        lines += [f"- {kind}: {path}" for kind, path in self.outputs.items()] or ["- none"]
        lines += ["", "**Tracker**:"]
        lines += [f"- {key} = {value}" for key, value in self.tracker_config.items()]
        return "\n" + "\n".join(lines) + "\n\n---\n"


def record_tracking_run(
    record: TrackingRunRecord,
    output_file: Union[str, Path] = RUN_RECORD_FILE
) -> Path:
    """
    Append a tracking run to the markdown run log

    Args:
        record: Run summary
        output_file: Markdown file, created with its directory if needed

    Returns:
        Path of the run log
    """
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'a', encoding='utf-8') as f:
        f.write(record.to_markdown())

    logging.getLogger("fibertrack").info(f"Run {record.run_id} recorded in {output_path}")
    return output_path
