"""Store contract and key helpers shared by the Redis and memory backends."""

from __future__ import annotations

import re
from typing import List, Optional, Protocol


class SessionStore(Protocol):
    """Key-value operations the token layer relies on.

    ``key_prefix`` is a namespace the store prepends to every single-key
    command. ``keys`` matches raw (already namespaced) keys and returns them
    unmodified, so callers must include and strip the namespace themselves.
    All expiry values are milliseconds.
    """

    key_prefix: str

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, *, px: int) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def pexpire(self, key: str, ttl_ms: int) -> bool: ...

    async def pttl(self, key: str) -> Optional[int]: ...

    async def keys(self, pattern: str) -> List[str]: ...


# ============================================================================
# GLOB PATTERNS - Redis KEYS/SCAN compatible
# ============================================================================

_GLOB_SPECIALS = {"*": "[*]", "?": "[?]", "[": "[[]", "\\": "[\\\\]"}


def escape_glob(value: str) -> str:
    """Escape glob metacharacters so ``value`` only matches itself.

    Bracket classes are used instead of backslashes because both Redis and
    :func:`glob_to_regex` read ``[*]`` as a literal asterisk. A backslash
    becomes ``[\\\\]``, which both read as one literal backslash.
    """
    return "".join(_GLOB_SPECIALS.get(ch, ch) for ch in value)


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a Redis glob pattern into an anchored regular expression."""
    out: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "\\" and i + 1 < n:
            i += 1
            out.append(re.escape(pattern[i]))
        elif ch == "[":
            end = pattern.find("]", i + 2 if i + 1 < n and pattern[i + 1] == "^" else i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1 : end]
                negate = body.startswith("^")
                if negate:
                    body = body[1:]
                parts = []
                j = 0
                while j < len(body):
                    if j + 2 < len(body) and body[j + 1] == "-":
                        parts.append(f"{re.escape(body[j])}-{re.escape(body[j + 2])}")
                        j += 3
                    else:
                        parts.append(re.escape(body[j]))
                        j += 1
                if parts:
                    out.append(f"[{'^' if negate else ''}{''.join(parts)}]")
                else:
                    # empty class never matches
                    out.append("(?!)")
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.DOTALL)


__all__ = ["SessionStore", "escape_glob", "glob_to_regex"]
