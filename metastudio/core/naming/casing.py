from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List, Union

from metastudio.core.errors import ValidationError


class Casing(str, Enum):
    SNAKE = "snake_case"
    CAMEL = "camelCase"
    PASCAL = "PascalCase"
    KEBAB = "kebab-case"
    CONSTANT = "CONSTANT_CASE"


_VALID: Dict[Casing, "re.Pattern[str]"] = {
    Casing.SNAKE: re.compile(r"^[a-z][a-z0-9]*(_[a-z0-9]+)*$"),
    Casing.KEBAB: re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$"),
    Casing.CONSTANT: re.compile(r"^[A-Z][A-Z0-9]*(_[A-Z0-9]+)*$"),
    Casing.CAMEL: re.compile(r"^[a-z][a-zA-Z0-9]*$"),
    Casing.PASCAL: re.compile(r"^[A-Z][a-zA-Z0-9]*$"),
}

# Every capital starts a word, so tokenize undoes render: userID -> user, i, d.
# Lower-case letters and digits stay with the word they follow.
_HUMP_RE = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]")

_ALIASES: Dict[str, Casing] = {}
for _c in Casing:
    _ALIASES[_c.value.lower()] = _c
    _ALIASES[_c.name.lower()] = _c
_ALIASES.update({"upper_snake": Casing.CONSTANT, "screaming_snake": Casing.CONSTANT, "dash": Casing.KEBAB})


def parse_casing(raw: Union[str, Casing]) -> Casing:
    if isinstance(raw, Casing):
        return raw
    key = (raw or "").strip().lower()
    casing = _ALIASES.get(key) or _ALIASES.get(key.replace("-case", "").replace("_case", ""))
    if casing is None:
        raise ValidationError(
            f"Unknown casing style '{raw}'",
            details={"field": "casing", "value": raw, "allowed": [c.value for c in Casing]},
        )
    return casing


def is_valid(identifier: str, casing: Union[str, Casing]) -> bool:
    return bool(_VALID[parse_casing(casing)].match(identifier or ""))


def tokenize(identifier: str, casing: Union[str, Casing]) -> List[str]:
    """Split an identifier written in ``casing`` into lower-case words.

    Digits belong to the preceding word: ``user_id_v2`` and ``userIdV2`` both
    give ``["user", "id", "v2"]``, and ``user_id_2`` gives ``["user", "id2"]``.
    """
    c = parse_casing(casing)
    if not _VALID[c].match(identifier or ""):
        raise ValidationError(
            f"'{identifier}' is not a valid {c.value} identifier",
            details={"field": "identifier", "identifier": identifier, "casing": c.value},
        )

    if c in (Casing.SNAKE, Casing.CONSTANT):
        raw = identifier.split("_")
    elif c == Casing.KEBAB:
        raw = identifier.split("-")
    else:
        raw = _HUMP_RE.findall(identifier)

    words: List[str] = []
    for part in raw:
        part = part.lower()
        if words and part[:1].isdigit():
            words[-1] += part
        else:
            words.append(part)
    return words


def render(words: List[str], casing: Union[str, Casing]) -> str:
    c = parse_casing(casing)
    if c == Casing.SNAKE:
        return "_".join(words)
    if c == Casing.KEBAB:
        return "-".join(words)
    if c == Casing.CONSTANT:
        return "_".join(w.upper() for w in words)
    # Acronyms are plain words: only the first letter is capitalised (httpUrl).
    # An all-caps run such as HTTP therefore reads back one letter per word.
    humped = "".join(w.capitalize() for w in words)
    if c == Casing.CAMEL:
        return humped[:1].lower() + humped[1:]
    return humped


def convert(identifier: str, from_casing: Union[str, Casing], to_casing: Union[str, Casing]) -> str:
    target = parse_casing(to_casing)
    return render(tokenize(identifier, from_casing), target)


def normalize(identifier: str, casing: Union[str, Casing]) -> str:
    """Canonical spelling of ``identifier`` within its own casing (``user_id_2`` -> ``user_id2``)."""
    return convert(identifier, casing, casing)
