"""Heuristic detection of regular expressions prone to catastrophic backtracking.

A pattern is rejected when:
- a quantified expression contains another quantified expression
  (star height > 1, e.g. `(a+)+`, `(\\w*\\s?)*`)
- it uses more than REPETITION_LIMIT quantifiers
- it uses back-references, which the backtracking engine cannot bound

The scan is purely lexical and runs before compilation, so an invalid
pattern may pass here and fail later in `re.compile`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

REPETITION_LIMIT = 25

_BRACE_QUANTIFIER_RE = re.compile(r"\{\d*(?:,\d*)?\}")


@dataclass
class _Frame:
    height: int = 0


def _skip_class(pattern: str, i: int) -> int:
    """Return the index just past the character class starting at pattern[i]."""
    n = len(pattern)
    i += 1
    if i < n and pattern[i] == "^":
        i += 1
    if i < n and pattern[i] == "]":
        i += 1
    while i < n:
        ch = pattern[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "]":
            return i + 1
        i += 1
    return n


def star_height(pattern: str) -> int:
    """Maximum nesting depth of unbounded/brace quantifiers in pattern."""
    return _scan(pattern)[0]


def _scan(pattern: str) -> tuple[int, int, bool]:
    stack: List[_Frame] = [_Frame()]
    last_height = None
    repetitions = 0
    backreference = False
    max_height = 0

    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]

        if ch == "\\":
            nxt = pattern[i + 1] if i + 1 < n else ""
            if nxt.isdigit() and nxt != "0":
                backreference = True
            elif nxt == "g" or nxt == "k":
                backreference = True
            last_height = 0
            i += 2
            continue

        if ch == "[":
            i = _skip_class(pattern, i)
            last_height = 0
            continue

        if ch == "(":
            if pattern.startswith("(?P=", i):
                backreference = True
            stack.append(_Frame())
            last_height = None
            i += 1
            # Skip group prefixes such as ?:, ?P<name>, ?=, ?<! so their
            # characters are not mistaken for quantifiers.
            if i < n and pattern[i] == "?":
                i += 1
                if i < n and pattern[i] == "P" and i + 1 < n and pattern[i + 1] == "<":
                    close = pattern.find(">", i)
                    i = close + 1 if close != -1 else n
                elif i < n and pattern[i] == "<" and i + 1 < n and pattern[i + 1] not in "=!":
                    close = pattern.find(">", i)
                    i = close + 1 if close != -1 else n
                elif i < n and pattern[i] == "<":
                    i += 2
                elif i < n:
                    i += 1
            continue

        if ch == ")":
            if len(stack) > 1:
                frame = stack.pop()
                parent = stack[-1]
                parent.height = max(parent.height, frame.height)
                last_height = frame.height
            else:
                last_height = 0
            i += 1
            continue

        if ch in "*+?" or (ch == "{" and _BRACE_QUANTIFIER_RE.match(pattern, i)):
            if ch == "{":
                end = _BRACE_QUANTIFIER_RE.match(pattern, i).end()
            else:
                end = i + 1

            if last_height is not None:
                if ch == "?":
                    height = last_height
                else:
                    repetitions += 1
                    height = last_height + 1
                stack[-1].height = max(stack[-1].height, height)
                max_height = max(max_height, height)
                last_height = None

            # Lazy and possessive modifiers
            if end < n and pattern[end] in "?+":
                end += 1
            i = end
            continue

        if ch in "|^$":
            last_height = None
            i += 1
            continue

        last_height = 0
        i += 1

    return max_height, repetitions, backreference


def is_safe_pattern(pattern: str, repetition_limit: int = REPETITION_LIMIT) -> bool:
    height, repetitions, backreference = _scan(pattern)
    if backreference:
        return False
    if height > 1:
        return False
    return repetitions <= repetition_limit


__all__ = ["is_safe_pattern", "star_height", "REPETITION_LIMIT"]
