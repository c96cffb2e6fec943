"""Run logging for doublet-consensus.

A ``run`` leaves two traces:

- a text log opened with ``open_run_log``. It starts with a header naming the
  thresholds and every sample's detectors, then the full configuration as a
  YAML document, then the engine's per-sample lines.
- one JSON line per run in ``runs.jsonl`` of the output directory, built by
  ``build_run_record`` and appended by ``append_run_record``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from .. import __version__

PathLike = Union[str, Path]

RUN_LOGGER_NAME = "doublet_consensus.run"
RUN_RECORD_FILENAME = "runs.jsonl"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def stamp_log_path(log_path: PathLike, when: Optional[datetime] = None) -> Path:
    """Insert a timestamp before the suffix so earlier run logs are kept.

    Example: consensus.log -> consensus_20251209_080530.log
    """
    path = Path(log_path)
    when = when or datetime.now()
    return path.with_name(f"{path.stem}_{when:%Y%m%d_%H%M%S}{path.suffix or '.log'}")


def format_run_header(config) -> str:
    """Thresholds and per-sample detectors of a run, one line each."""
    t = config.thresholds
    lines = [
        f"doublet-consensus {__version__}",
        f"thresholds: candidate >= {t.candidate_threshold}, "
        f"fold change >= {t.fold_change_threshold}, "
        f"final vote >= {t.final_vote_threshold}",
        f"samples: {len(config.samples)} (n_workers={config.n_workers})",
    ]
    for sample_id, sample in config.samples.items():
        lines.append(f"  {sample_id}: detectors {', '.join(sample.detectors)}")
    return "\n".join(lines)


def open_run_log(
    log_path: PathLike,
    config,
    level: int = logging.DEBUG,
    console: bool = False,
    timestamped: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Open the run log and write its header.

    Parameters
    ----------
    log_path : PathLike
        Base path of the log file
    config : ConsensusConfig
        Configuration of the run; its header and YAML dump open the log
    level : int
        Level of the run logger
    console : bool
        Also echo run log lines to stdout
    timestamped : bool
        Stamp the file name (otherwise an existing file is overwritten)

    Returns
    -------
    Tuple[logging.Logger, Path]
        The run logger and the path actually written
    """
    path = stamp_log_path(log_path) if timestamped else Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    run_logger = logging.getLogger(RUN_LOGGER_NAME)
    close_run_log(run_logger)
    run_logger.setLevel(level)
    run_logger.propagate = False

    file_handler = logging.FileHandler(path, mode="a" if timestamped else "w", encoding="utf-8")
    file_handler.setFormatter(_FORMATTER)
    run_logger.addHandler(file_handler)
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(_FORMATTER)
        run_logger.addHandler(console_handler)

    run_logger.info("%s", format_run_header(config))
    config_yaml = yaml.safe_dump(config.to_dict(), sort_keys=False).rstrip("\n")
    run_logger.debug("configuration:\n%s\n---", config_yaml)
    return run_logger, path


def close_run_log(run_logger: logging.Logger) -> None:
    """Detach and close every handler of the run logger."""
    for handler in list(run_logger.handlers):
        run_logger.removeHandler(handler)
        handler.close()


def build_run_record(
    config_path: PathLike,
    config,
    result,
    outputs: Mapping[str, PathLike],
) -> Dict[str, Any]:
    """Summarize one finished run as a JSON-serializable record.

    Parameters
    ----------
    config_path : PathLike
        Configuration file of the run
    config : ConsensusConfig
        Configuration of the run
    result : MultiSampleResult
        Result of the run
    outputs : Mapping[str, PathLike]
        Exported files keyed by output type

    Returns
    -------
    Dict[str, Any]
        Run record
    """
    return {
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "version": __version__,
        "config": str(Path(config_path).resolve()),
        "thresholds": config.thresholds.to_dict(),
        "samples": list(result.samples_processed),
        "label_counts": {
            sample_id: result.results[sample_id].label_counts()
            for sample_id in result.samples_processed
        },
        "n_cells": result.n_total_cells,
        "n_doublets": result.n_total_doublets,
        "execution_time_seconds": round(result.total_execution_time_seconds, 2),
        "outputs": {name: str(path) for name, path in outputs.items()},
    }


def append_run_record(output_dir: PathLike, record: Mapping[str, Any]) -> Path:
    """Append a run record to ``runs.jsonl`` in ``output_dir``."""
    path = Path(output_dir) / RUN_RECORD_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")
    return path
