"""
Naming convention shared by tables, columns and result lookups.
"""
import re

__all__ = ['to_column_name']

_UPPER = re.compile(r'(?<=.)([A-Z])')


def to_column_name(identifier: str) -> str:
    """Convert an identifier to its lowercase, underscore delimited column name.

    Surrounding whitespace is removed and an underscore is inserted before
    every uppercase letter except the first character.

    >>> to_column_name('FirstName')
    'first_name'
    >>> to_column_name(' VisualStudio ')
    'visual_studio'
    >>> to_column_name('visualStudio')
    'visual_studio'
    >>> to_column_name(to_column_name('DateCreated'))
    'date_created'
    """
    return _UPPER.sub(r'_\1', identifier.strip()).lower()
