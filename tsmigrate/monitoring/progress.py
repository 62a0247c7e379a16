"""
Progress Monitoring
One tqdm bar per metric over completed / total query jobs
"""
import logging
import sys
from typing import Optional

from tqdm import tqdm

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Per-metric progress bar; a disabled reporter keeps the same interface"""

    def __init__(self, disabled: bool = False, smoothing: float = 0.1, miniters: int = 1):
        self.disabled = disabled
        self.smoothing = smoothing
        self.miniters = miniters
        self.pbar: Optional[tqdm] = None

    def start(self, metric: str, total_jobs: int):
        """Open the bar for a metric, closing any previous one"""
        self.finish()
        self.pbar = tqdm(
            total=total_jobs,
            desc=f"🚀 {metric}",
            unit="jobs",
            ncols=120,
            bar_format='{desc}: {percentage:3.0f}%|{bar:25}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}] {postfix}',
            colour='blue',
            smoothing=self.smoothing,
            miniters=self.miniters,
            dynamic_ncols=True,
            leave=True,
            disable=self.disabled,
            file=sys.stdout
        )

    def increment(self, count: int = 1):
        if self.pbar is not None:
            self.pbar.update(count)

    def finish(self):
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None
