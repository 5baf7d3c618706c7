"""Natural (human-friendly) sorting for identifiers with embedded numbers.

Genotype and colony identifiers are usually codes like "G2" and "G10"; sorting
them as plain strings puts "G10" before "G2". Pure text (no digits) sorts after
identifiers that contain numbers.
"""

import re


def natural_sort_key(text: object) -> tuple:
    """Build a key for natural sorting of identifiers with embedded numbers.

    Identifiers containing digits sort before pure text. Within each group,
    numeric parts are ordered numerically and text lexicographically.

    Examples:
        - "G10" is ordered after "G2".
        - "RS-1-3" is ordered before "RS-1-12".

    Args:
        text: Identifier; non-strings are converted with str().

    Returns:
        Tuple (has_digit, parts) used by ``sorted``.
    """
    text = str(text)
    has_digit = bool(re.search(r"\d", text))

    def convert(part: str) -> tuple:
        if part.isdigit():
            return (0, int(part))
        return (1, part.lower())

    parts = [convert(c) for c in re.split(r"([0-9]+)", text) if c]
    return (0 if has_digit else 1, parts)
