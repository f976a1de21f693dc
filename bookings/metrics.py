"""Counters for booking batches."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class BatchStats:
    """Mutable counters tracking one batch run."""

    submitted: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    total_execution_time: float = 0.0

    def record_success(self, execution_time: Optional[float] = None) -> None:
        self.successful += 1
        self.processed += 1
        self._record_execution_time(execution_time)

    def record_failure(self, execution_time: Optional[float] = None) -> None:
        self.failed += 1
        self.processed += 1
        self._record_execution_time(execution_time)

    def _record_execution_time(self, execution_time: Optional[float]) -> None:
        if execution_time is None or execution_time < 0:
            return
        self.total_execution_time += float(execution_time)

    @property
    def avg_execution_time(self) -> float:
        if self.processed == 0:
            return 0.0
        return self.total_execution_time / self.processed

    @property
    def success_rate(self) -> float:
        if self.processed == 0:
            return 0.0
        return (self.successful / self.processed) * 100

    def format_report(self) -> str:
        lines = [
            "📊 Booking Batch Report",
            f"👥 Accounts: {self.submitted}",
            f"✅ Successful: {self.successful}",
            f"❌ Failed: {self.failed}",
            f"📈 Processed: {self.processed}",
            f"🏆 Success Rate: {self.success_rate:.2f}%",
        ]
        if self.total_execution_time:
            lines.append(f"⏱️ Avg Execution Time: {self.avg_execution_time:.2f}s")
        return "\n".join(lines)
