"""Deterministic default placement of sections and tables on a venue grid.

The grid is laid out in horizontal bands, top to bottom:

    stage          rows [stage.y, stage.y + stage.height)
    margin         TABLE_STAGE_MARGIN rows
    table band     TABLE_BAND_ROWS rows (grows if the tables need more)
    section band   sections stacked in input order, SECTION_GAP rows apart

Only items without an explicit position are placed. Items the operator
positioned keep their coordinates, including (0, 0).
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from errors import InvalidInput

DEFAULT_GRID_COLS = 24
DEFAULT_GRID_ROWS = 48

TABLE_STAGE_MARGIN = 3
TABLE_BAND_ROWS = 8
TABLE_FOOTPRINT = 2
TABLE_START_X = 2
TABLE_STEP_X = 2
SECTION_GAP = 1
BOTTOM_MARGIN = 2


@dataclass(frozen=True)
class StageSpec:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def bottom(self) -> int:
        return self.y + max(1, self.height)


@dataclass
class SectionSpec:
    name: str
    rows: int
    cols: int
    pos_x: Optional[int] = None
    pos_y: Optional[int] = None
    color: Optional[str] = None
    ticket_type: Optional[str] = None

    @property
    def has_explicit_position(self) -> bool:
        return self.pos_x is not None and self.pos_y is not None

    @property
    def seat_count(self) -> int:
        return self.rows * self.cols


@dataclass
class TableSpec:
    name: str
    seat_count: int
    pos_x: Optional[int] = None
    pos_y: Optional[int] = None
    color: Optional[str] = None
    ticket_type: Optional[str] = None

    @property
    def has_explicit_position(self) -> bool:
        return self.pos_x is not None and self.pos_y is not None


@dataclass
class LayoutResult:
    grid_cols: int
    grid_rows: int
    stage: StageSpec
    sections: List[SectionSpec] = field(default_factory=list)
    tables: List[TableSpec] = field(default_factory=list)


def stage_dimensions_for_capacity(
    total_seats: int,
    grid_cols: int = DEFAULT_GRID_COLS,
    grid_rows: int = DEFAULT_GRID_ROWS,
) -> Tuple[int, int]:
    """Size the stage in proportion to the audience: (width, height)."""
    width = min(grid_cols, max(8, total_seats // 10))
    height = min(int(grid_rows * 0.4), max(4, total_seats // 15))
    return width, height


def section_cells(section: SectionSpec) -> Tuple[int, int, int, int]:
    """Half-open cell rectangle (x0, y0, x1, y1) covered by a placed section."""
    return (section.pos_x, section.pos_y,
            section.pos_x + section.cols, section.pos_y + section.rows)


def table_cells(table: TableSpec) -> Tuple[int, int, int, int]:
    """Half-open cell rectangle covered by a placed table; its position is the center point."""
    half = TABLE_FOOTPRINT // 2
    return (table.pos_x - half, table.pos_y - half,
            table.pos_x - half + TABLE_FOOTPRINT, table.pos_y - half + TABLE_FOOTPRINT)


def _validate(sections: List[SectionSpec], tables: List[TableSpec]):
    for section in sections:
        if section.rows < 1 or section.cols < 1:
            raise InvalidInput(f"section '{section.name}' must have at least one row and one column")
        if (section.pos_x is None) != (section.pos_y is None):
            raise InvalidInput(f"section '{section.name}' must give both posX and posY or neither")
        if section.has_explicit_position and (section.pos_x < 0 or section.pos_y < 0):
            raise InvalidInput(f"section '{section.name}' position must not be negative")
    for table in tables:
        if table.seat_count < 1:
            raise InvalidInput(f"table '{table.name}' must have at least one seat")
        if (table.pos_x is None) != (table.pos_y is None):
            raise InvalidInput(f"table '{table.name}' must give both posX and posY or neither")
        if table.has_explicit_position and (table.pos_x < 0 or table.pos_y < 0):
            raise InvalidInput(f"table '{table.name}' position must not be negative")


def place_layout(
    sections: List[SectionSpec],
    tables: List[TableSpec],
    stage: Optional[StageSpec] = None,
    grid_cols: Optional[int] = None,
    grid_rows: Optional[int] = None,
) -> LayoutResult:
    """Fill in missing coordinates and compute a grid large enough to hold everything.

    Inputs are not mutated; the result carries copies with positions set.
    The requested grid size is a lower bound: it grows to fit content and is
    never used to clip it.
    """
    _validate(sections, tables)
    requested_cols = grid_cols if grid_cols and grid_cols > 0 else DEFAULT_GRID_COLS
    requested_rows = grid_rows if grid_rows and grid_rows > 0 else DEFAULT_GRID_ROWS

    if stage is None or stage.width <= 0 or stage.height <= 0:
        total_seats = sum(s.seat_count for s in sections) + sum(t.seat_count for t in tables)
        width, height = stage_dimensions_for_capacity(total_seats, requested_cols, requested_rows)
        stage = StageSpec(x=stage.x if stage else 0, y=stage.y if stage else 0,
                          width=width, height=height)

    table_band_top = stage.bottom + TABLE_STAGE_MARGIN

    # Tables: left to right across the band, wrapping to the next band row.
    per_row = max(1, (requested_cols - 1 - TABLE_START_X) // TABLE_STEP_X + 1)
    auto_tables = sum(1 for t in tables if not t.has_explicit_position)
    table_rows_needed = -(-auto_tables // per_row) * TABLE_FOOTPRINT
    table_band_rows = max(TABLE_BAND_ROWS, table_rows_needed)

    placed_tables = []
    slot = 0
    for table in tables:
        if table.has_explicit_position:
            placed_tables.append(replace(table))
            continue
        band_row, column = divmod(slot, per_row)
        x = TABLE_START_X + column * TABLE_STEP_X
        y = table_band_top + band_row * TABLE_FOOTPRINT + TABLE_FOOTPRINT // 2
        placed_tables.append(replace(table, pos_x=x, pos_y=y))
        slot += 1

    # Sections: stacked below the table band, one gap row between each.
    section_band_top = table_band_top + table_band_rows
    cursor = section_band_top
    placed_sections = []
    for section in sections:
        if section.has_explicit_position:
            placed_sections.append(replace(section))
            continue
        placed_sections.append(replace(section, pos_x=0, pos_y=cursor))
        cursor += section.rows + SECTION_GAP

    max_right = stage.x + stage.width
    max_bottom = section_band_top
    for section in placed_sections:
        _, _, x1, y1 = section_cells(section)
        max_right = max(max_right, x1)
        max_bottom = max(max_bottom, y1)
    for table in placed_tables:
        _, _, x1, y1 = table_cells(table)
        max_right = max(max_right, x1)
        max_bottom = max(max_bottom, y1)

    return LayoutResult(
        grid_cols=max(requested_cols, max_right),
        grid_rows=max(requested_rows, max_bottom + BOTTOM_MARGIN),
        stage=stage,
        sections=placed_sections,
        tables=placed_tables,
    )
