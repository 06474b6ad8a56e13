"""Layout engine: symmetric child placement and the non-overlap row pass.

Both entry points are pure functions over plain data so the server (when
persisting new children) and the client (when re-laying out a rendered tree)
share one implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

POSITION_EPSILON = 0.5
MIN_NODE_SIZE = 80.0
MAX_SAFE_COORDINATE = 25000.0


@dataclass(frozen=True)
class Spacing:
    horizontal: float
    vertical: float


@dataclass(frozen=True)
class SpacingProfile:
    """Spacing used for root → depth 2 (``level1``) and below (``deeper``)."""

    level1: Spacing
    deeper: Spacing

    def for_parent_depth(self, parent_depth: int) -> Spacing:
        return self.level1 if parent_depth <= 1 else self.deeper


PROFILES: dict[str, SpacingProfile] = {
    "desktop": SpacingProfile(level1=Spacing(620, 420), deeper=Spacing(620, 420)),
    "mobile": SpacingProfile(level1=Spacing(360, 380), deeper=Spacing(360, 380)),
}


def get_profile(name: str) -> SpacingProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown layout profile {name!r}; choose from {sorted(PROFILES)}"
        ) from None


def place_children(
    parent_x: float, parent_y: float, count: int, spacing: Spacing
) -> list[tuple[float, float]]:
    """Positions for *count* children centred under their parent.

    ``x = parent_x + (i - (count - 1) / 2) * h`` and ``y = parent_y + v``.
    """
    offset = (count - 1) / 2
    return [
        (parent_x + (i - offset) * spacing.horizontal, parent_y + spacing.vertical)
        for i in range(count)
    ]


def fallback_position(
    depth: int, index: int, count: int, profile: Optional[SpacingProfile] = None
) -> tuple[float, float]:
    """Deterministic position for a node loaded without usable coordinates."""
    profile = profile or PROFILES["desktop"]
    horizontal = profile.level1.horizontal if depth <= 2 else profile.deeper.horizontal
    return (
        (index - (count - 1) / 2) * horizontal,
        (depth - 1) * profile.deeper.vertical,
    )


# ---------------------------------------------------------------------------
# Non-overlap pass
# ---------------------------------------------------------------------------

@dataclass
class LayoutNode:
    """A positioned box; ``width``/``height`` are measured sizes when known."""

    id: str
    depth: int
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass
class LayoutOptions:
    min_horizontal_gap: float = 40.0
    min_vertical_gap: float = 60.0
    fallback_width: float = 420.0
    fallback_height: float = 220.0
    baseline_depth_y: dict[int, float] = field(default_factory=dict)


def _size(node: LayoutNode, options: LayoutOptions) -> tuple[float, float]:
    width = node.width if node.width is not None else options.fallback_width
    height = node.height if node.height is not None else options.fallback_height
    return max(width, MIN_NODE_SIZE), max(height, MIN_NODE_SIZE)


def apply_non_overlapping_layout(
    nodes: list[LayoutNode], options: Optional[LayoutOptions] = None
) -> list[LayoutNode]:
    """Resolve horizontal overlaps row by row (one row per depth).

    Each row is sorted by ``(x, id)``, nodes are pushed right until every gap
    is at least ``min_horizontal_gap``, then the row is shifted so the mean
    node centre equals the mean of the original centres.  Rows stack below
    the previous row's tallest node plus ``min_vertical_gap``.

    Returns the input list itself when nothing would move by more than
    :data:`POSITION_EPSILON`, otherwise a new list (input order) with every
    node snapped to its computed position.
    """
    if len(nodes) < 2:
        return nodes
    options = options or LayoutOptions()

    rows: dict[int, list[LayoutNode]] = {}
    for node in nodes:
        rows.setdefault(max(1, node.depth), []).append(node)

    targets: dict[str, tuple[float, float]] = {}
    previous_bottom: Optional[float] = None

    for depth in sorted(rows):
        row = sorted(rows[depth], key=lambda n: (n.x, n.id))
        sizes = [_size(n, options) for n in row]

        base_y = options.baseline_depth_y.get(depth, min(n.y for n in row))
        row_y = base_y if previous_bottom is None else max(
            base_y, previous_bottom + options.min_vertical_gap
        )

        provisional: list[float] = []
        cursor: Optional[float] = None
        for node, (width, _) in zip(row, sizes):
            x = node.x if cursor is None else max(node.x, cursor + options.min_horizontal_gap)
            provisional.append(x)
            cursor = x + width

        desired_centre = sum(n.x + w / 2 for n, (w, _) in zip(row, sizes)) / len(row)
        actual_centre = sum(x + w / 2 for x, (w, _) in zip(provisional, sizes)) / len(row)
        shift = desired_centre - actual_centre

        for node, x in zip(row, provisional):
            targets[node.id] = (x + shift, row_y)
        previous_bottom = row_y + max(h for _, h in sizes)

    changed = any(
        abs(n.x - targets[n.id][0]) > POSITION_EPSILON
        or abs(n.y - targets[n.id][1]) > POSITION_EPSILON
        for n in nodes
    )
    if not changed:
        return nodes
    return [replace(n, x=targets[n.id][0], y=targets[n.id][1]) for n in nodes]
