import difflib
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


@dataclass(frozen=True)
class NameMatch:
    """Outcome of matching a spoken name against a name -> id mapping."""

    name: Optional[str] = None
    value: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.name is not None


def match_name(query: str, options: Mapping[str, str], cutoff: float = 0.5,
               max_suggestions: int = 3) -> NameMatch:
    """Match ``query`` against the keys of ``options``.

    Exact case-insensitive match wins, then the first key containing the
    query. Otherwise close matches are offered as suggestions.
    """
    needle = (query or "").strip().lower()
    if not needle or not options:
        return NameMatch()

    for name, value in options.items():
        if name.lower() == needle:
            return NameMatch(name=name, value=value)

    for name, value in options.items():
        if needle in name.lower():
            return NameMatch(name=name, value=value)

    lowered = {name.lower(): name for name in options}
    close = difflib.get_close_matches(needle, list(lowered), n=max_suggestions, cutoff=cutoff)
    return NameMatch(suggestions=[lowered[c] for c in close])
