"""Structured run records for scpipe.

A run writes its summary twice: appended as one JSON line to a run log
(``runs.jsonl``) and as a YAML document to the output directory's
``manifest.yaml``. numpy scalars and arrays in the summary are converted
to plain Python first so both serializers accept them.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Union

import numpy as np
import yaml

PathLike = Union[str, Path]

YAML_DOCUMENT_END = "---"


def to_builtin(value: Any) -> Any:
    """Convert numpy values (recursively) to JSON/YAML-safe builtins."""
    if isinstance(value, dict):
        return {str(k): to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_builtin(v) for v in value]
    if isinstance(value, (np.ndarray, np.generic)):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    return value


def _open_for_append(path: PathLike):
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target.open("a", encoding="utf-8")


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append ``record`` to ``log_path`` as a single JSON line."""
    line = json.dumps(to_builtin(record), default=str)
    with _open_for_append(log_path) as handle:
        handle.write(line + "\n")


def log_yaml(
    log_path: PathLike,
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append ``record`` to ``log_path`` as a YAML document.

    Parameters
    ----------
    log_path : PathLike
        Manifest file; ignored when ``logger`` is given
    record : dict
        Run summary
    logger : logging.Logger, optional
        Emit the document at INFO level instead of writing a file
    """
    document = yaml.safe_dump(to_builtin(record), sort_keys=False)
    if logger is not None:
        logger.info("%s%s", document, YAML_DOCUMENT_END)
        return
    with _open_for_append(log_path) as handle:
        handle.write(document + YAML_DOCUMENT_END + "\n")
