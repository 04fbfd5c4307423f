"""Session configuration for proctop (in memory only, nothing is persisted)."""

from dataclasses import dataclass
from pathlib import Path

from proctop.models import SortDirection, SortKey, ViewState

DEFAULT_INTERVAL = 2.0
MIN_INTERVAL = 0.1


@dataclass
class Config:
    """Settings for one proctop session."""

    interval: float = DEFAULT_INTERVAL  # Seconds between samples
    sort_key: SortKey = SortKey.CPU
    sort_direction: SortDirection | None = None  # None: the key's natural direction
    tree_mode: bool = False
    filter_text: str = ""
    log_file: Path | None = None  # JSON lines; no logging without it
    log_level: str = "info"

    def __post_init__(self) -> None:
        self.interval = max(MIN_INTERVAL, float(self.interval))
        if isinstance(self.sort_key, str):
            self.sort_key = SortKey(self.sort_key)
        if isinstance(self.sort_direction, str):
            self.sort_direction = SortDirection(self.sort_direction)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

    def view_state(self) -> ViewState:
        """Initial view state for the engine."""
        return ViewState(
            sort_key=self.sort_key,
            sort_direction=self.sort_direction or self.sort_key.default_direction,
            filter_text=self.filter_text,
            tree_mode=self.tree_mode,
        )
