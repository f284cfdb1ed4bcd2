"""Cell size planning: split a roster into groups of 3-7, preferring 5."""

from typing import List

TARGET_CELL_SIZE = 5
MIN_CELL_SIZE = 3
MAX_CELL_SIZE = 7


def calculate_cell_sizes(total: int) -> List[int]:
    """Return the ordered cell sizes for a roster of ``total`` members.

    Every size lies in [3, 7] and the sizes sum to ``total``. Remainders of 1
    or 2 are folded into the last full cell (making a 6 or a 7) so no cell is
    ever too small to deliberate. Fewer than 3 members cannot form a cell and
    yield an empty plan.
    """
    if total < 0:
        raise ValueError(f"Roster size must be >= 0, got {total}")
    if total < MIN_CELL_SIZE:
        return []
    if total in (3, 4):
        return [total]

    num_cells, remainder = divmod(total, TARGET_CELL_SIZE)

    if remainder == 0:
        return [TARGET_CELL_SIZE] * num_cells

    if remainder in (1, 2):
        return [TARGET_CELL_SIZE] * (num_cells - 1) + [remainder + TARGET_CELL_SIZE]

    return [TARGET_CELL_SIZE] * num_cells + [remainder]
