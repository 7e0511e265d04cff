"""Deterministic display colors for Docker sources."""

PALETTE = [
    "#4f80ff",
    "#ff6b6b",
    "#51cf66",
    "#ffd43b",
    "#ff922b",
    "#ae3ec9",
    "#20c997",
    "#fa5252",
    "#339af0",
    "#51cf66",
    "#ffd43b",
    "#ff922b",
    "#845ef7",
    "#f06595",
    "#22b8cf",
    "#ffa94d",
]


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def generate_color_for_string(value: str) -> str:
    """
    Pick a palette color for a string.

    The same string always maps to the same color.

    Args:
        value: String to hash (usually a source name)

    Returns:
        Hex color code
    """
    hash_value = 0
    for char in value:
        hash_value = _to_int32(ord(char) + _to_int32((hash_value << 5) - hash_value))
    return PALETTE[abs(hash_value) % len(PALETTE)]
