"""Free-text sanitization for values embedded in filter predicates."""

import re

_STRIP_PATTERN = re.compile(r"""[<>'"`;]|--|/\*|\*/""")


def sanitize_input(value):
    """
    Remove characters that could break out of a quoted predicate.

    Strips angle brackets, quote characters, semicolons and comment
    delimiters, then trims. Non-string values pass through unchanged.
    """
    if not isinstance(value, str):
        return value
    previous = None
    cleaned = value
    # "-/**/-" collapses into a fresh "--" after one pass
    while cleaned != previous:
        previous = cleaned
        cleaned = _STRIP_PATTERN.sub("", cleaned)
    return cleaned.strip()
