"""Title and category derived from a note's first line.

``# Groceries\\Buy milk`` files the note under "Groceries" with the title
"Buy milk". The rule is deliberately simple and must stay exactly as is:
every ``#`` is stripped, the rest trimmed and split on a backslash, and only
the first two pieces are looked at.
"""
from typing import Optional, Tuple

CATEGORY_SEPARATOR = "\\"


def first_line(content: str) -> str:
    return content.split("\n", 1)[0]


def parse_heading(content: str, untitled: str = "Untitled") -> Tuple[Optional[str], str]:
    """Classify the first line of ``content``.

    Returns:
        ``(category_title, title)``. ``category_title`` is None unless the
        heading names a category.

    Examples:
        >>> parse_heading("# Groceries\\\\Buy milk\\n\\n- eggs")
        ('Groceries', 'Buy milk')
        >>> parse_heading("## Plain title")
        (None, 'Plain title')
        >>> parse_heading("\\nbody")
        (None, 'Untitled')
    """
    line = first_line(content)
    if not line:
        return None, untitled
    pieces = line.replace("#", "").strip().split(CATEGORY_SEPARATOR)[:2]
    if len(pieces) == 2:
        return pieces[0].strip(), pieces[1]
    return None, pieces[0]
