"""Structural equality used to decide whether a state write is a real change."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any


def deep_equal(a: Any, b: Any) -> bool:
    if a is b:
        return True

    # bool is an int subclass; True must not equal 1 here.
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return True

    if isinstance(a, Mapping) or isinstance(b, Mapping):
        if not (isinstance(a, Mapping) and isinstance(b, Mapping)):
            return False
        if set(a.keys()) != set(b.keys()):
            return False
        return all(deep_equal(a[key], b[key]) for key in a)

    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if not (isinstance(a, (list, tuple)) and isinstance(b, (list, tuple))):
            return False
        if len(a) != len(b):
            return False
        # Membership in both directions; element order is not significant.
        return all(_contains(b, item) for item in a) and all(_contains(a, item) for item in b)

    if isinstance(a, re.Pattern) or isinstance(b, re.Pattern):
        if not (isinstance(a, re.Pattern) and isinstance(b, re.Pattern)):
            return False
        return a.pattern == b.pattern and a.flags == b.flags

    if type(a) is not type(b) and not (isinstance(a, (int, float)) and isinstance(b, (int, float))):
        # str-valued enums compare equal to their plain string value
        if isinstance(a, str) and isinstance(b, str):
            return str.__eq__(a, b)
        return False

    try:
        return bool(a == b)
    except Exception:
        return False


def _contains(items: list[Any] | tuple[Any, ...], needle: Any) -> bool:
    return any(deep_equal(item, needle) for item in items)
