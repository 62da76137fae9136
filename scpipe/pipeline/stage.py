"""Stage representation for in-memory pipeline execution."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


@dataclass
class Stage:
    """A single pipeline stage and its dependencies.

    Attributes
    ----------
    stage_id : str
        Short identifier (e.g., "qc", "pca")
    name : str
        Human-readable stage name (e.g., "Quality Control")
    func : Callable
        Called as ``func(stage_results=..., **kwargs)``; its return value
        is stored under ``stage_id``
    depends_on : List[str]
        Stage IDs that must complete first
    optional : bool
        A failing optional stage is logged and skipped instead of
        stopping the run

    Example
    -------
    >>> stage = Stage(
    ...     stage_id="qc",
    ...     name="Quality Control",
    ...     func=run_qc,
    ...     depends_on=["load"],
    ... )
    """

    stage_id: str
    name: str
    func: Callable[..., Any]
    depends_on: List[str] = field(default_factory=list)
    optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Describe the stage (without its function) for manifests."""
        return {
            "stage_id": self.stage_id,
            "name": self.name,
            "depends_on": list(self.depends_on),
            "optional": self.optional,
        }
