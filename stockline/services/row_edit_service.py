"""
Row transaction manager.

Snapshots a filled row when the user enters it, then either commits (the row
was completed and left forward) or reverts it to the snapshot (the row was
abandoned). One tracker per document-editing session.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from stockline.domain.entities import LineItem

logger = logging.getLogger(__name__)


@dataclass
class RowSnapshot:
    line_id: str
    data: LineItem


def missing_field(line: LineItem) -> Optional[str]:
    """First required cell a row still lacks before it can be committed, or None."""
    if not line.product_code or not line.name:
        return 'product'
    if line.quantity <= 0:
        return 'quantity'
    if line.unit_price <= 0:
        return 'unit_price'
    return None


class RowEditTracker:
    """Idle -> Tracking(line_id, snapshot) -> Idle, via commit or revert."""

    def __init__(self):
        self._snapshot: Optional[RowSnapshot] = None
        self._committed = False

    def __repr__(self):
        return f"<RowEditTracker(tracking={self.tracked_line_id}, committed={self._committed})>"

    @property
    def tracked_line_id(self) -> Optional[str]:
        return self._snapshot.line_id if self._snapshot else None

    @property
    def is_tracking(self) -> bool:
        return self._snapshot is not None

    @property
    def is_committed(self) -> bool:
        return self._committed

    def enter_row(self, line: LineItem, lines: List[LineItem]) -> Optional[str]:
        """
        The user moved into `line`.

        Re-entering the tracked row is a no-op. Otherwise any uncommitted
        tracked row is reverted first, and `line` is snapshotted when it
        already holds a product. Returns the id of a reverted row, if any.
        """
        if self._snapshot is not None and self._snapshot.line_id == line.id:
            return None

        reverted = self.revert(lines)

        if line.product_id:
            self._snapshot = RowSnapshot(line_id=line.id, data=line.snapshot())
            self._committed = False
        return reverted

    def commit(self) -> None:
        """Accept the tracked row's current values."""
        self._committed = True
        self._snapshot = None

    def revert(self, lines: List[LineItem]) -> Optional[str]:
        """Restore an uncommitted tracked row in place; always returns to Idle."""
        reverted = None
        if self._snapshot is not None and not self._committed:
            snapshot = self._snapshot
            for index, current in enumerate(lines):
                if current.id == snapshot.line_id:
                    lines[index] = snapshot.data.snapshot()
                    reverted = snapshot.line_id
                    logger.info(f"[ENTRY] Row {reverted} reverted to its last committed values")
                    break
        self._snapshot = None
        self._committed = False
        return reverted

    def leave_grid(self, lines: List[LineItem], into_overlay: bool = False) -> Optional[str]:
        """Focus left the grid; a transient overlay (suggestion list, dialog) does not count."""
        if into_overlay:
            return None
        return self.revert(lines)

    def discard(self, line_id: str) -> None:
        """Forget the snapshot of a row that is being deleted."""
        if self._snapshot is not None and self._snapshot.line_id == line_id:
            self._snapshot = None
            self._committed = False
