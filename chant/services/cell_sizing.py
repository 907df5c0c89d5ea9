"""Cell sizing and idea distribution.

Pure partitioning helpers shared by tier-one formation, normal tier
advancement and the final showdown.
"""

TARGET_CELL_SIZE = 5
MIN_CELL_SIZE = 3
MAX_CELL_SIZE = 7


def calculate_cell_sizes(n: int) -> list[int]:
    """
    Partition ``n`` people into cells of 3-7, preferring 5.

    A remainder of 1 or 2 is absorbed into the last full cell instead of
    forming an isolated tiny cell. Pools smaller than one full cell become a
    single cell, even when that cell has fewer than 3 people.

    Examples:
        >>> calculate_cell_sizes(8)
        [5, 3]
        >>> calculate_cell_sizes(11)
        [5, 6]
    """
    if n < 0:
        raise ValueError(f"participant count must be non-negative, got {n}")

    full, rem = divmod(n, TARGET_CELL_SIZE)
    if full == 0:
        return [n]
    if rem == 0:
        return [TARGET_CELL_SIZE] * full
    if rem >= MIN_CELL_SIZE:
        return [TARGET_CELL_SIZE] * full + [rem]
    return [TARGET_CELL_SIZE] * (full - 1) + [TARGET_CELL_SIZE + rem]


def calculate_idea_sizes(total: int, cell_count: int) -> list[int]:
    """
    Spread ``total`` items across ``cell_count`` buckets as evenly as possible.

    The first ``total % cell_count`` buckets get one extra item.
    """
    if total == 0:
        return []
    if cell_count <= 0:
        raise ValueError(f"cell_count must be positive, got {cell_count}")

    base, extra = divmod(total, cell_count)
    return [base + 1 if i < extra else base for i in range(cell_count)]
