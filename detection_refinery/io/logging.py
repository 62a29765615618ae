"""Run logs of the detection-refinery commands.

Every command run leaves three traces in its output directory: a
timestamped text log of the package's records, a line in ``runs.jsonl``
summarising the run, and YAML documents such as the configuration used.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Tuple, Union

import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Path of this run's log, next to the previous runs' ones.

    Example: results/quantify.log -> results/quantify_20251209_080530.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Write the records of a logger, and of its children, to a run log.

    A file handler left by an earlier run is replaced. Records keep
    propagating to the console handlers of the CLI.

    Parameters
    ----------
    name : str
        Logger name. "detection_refinery" captures every module of the package.
    log_path : PathLike
        Run log path, before the timestamp is added
    level : int
        Lowest level written to the file
    timestamped : bool
        Whether to keep earlier run logs by adding a timestamp to the file
        name. Otherwise ``log_path`` is overwritten.

    Returns
    -------
    Tuple[logging.Logger, Path]
        The logger and the file it writes to
    """
    log_path = Path(log_path)
    if timestamped:
        actual_log_path = get_timestamped_log_path(log_path)
    else:
        actual_log_path = log_path
        actual_log_path.unlink(missing_ok=True)
    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(min(level, logger.level or level))
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
    handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger, actual_log_path


def _prepare_log_destination(log_path: PathLike) -> Path:
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Add a run summary to a JSON lines file, one run per line.

    Values JSON cannot encode, such as paths, are written as strings.
    """
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def log_yaml(log_path: PathLike, record: dict[str, Any]) -> None:
    """Add a YAML document, such as the configuration a run used, to a file.

    Each document ends with a ``---`` line, so several runs can share a file.
    """
    yaml_text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"{yaml_text}\n---\n")
