from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Tuple, Union

from playbridge.domain.errors import UnsupportedActionError, ValidationError


logger = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r"^[+-]?\d+(\.\d+)?$")


@dataclass(frozen=True)
class TextArg:
    """Free text; blank counts as missing."""

    name: str
    required: bool = False


@dataclass(frozen=True)
class ChoiceArg:
    """Enum-of-string argument.

    ``default`` applies when the value is missing, ``fallback`` when it is
    present but not one of ``choices`` (defaults to ``default``).
    """

    name: str
    choices: Tuple[str, ...]
    default: Optional[str] = None
    fallback: Optional[str] = None

    def resolve_invalid(self) -> Optional[str]:
        return self.fallback if self.fallback is not None else self.default


@dataclass(frozen=True)
class NumberArg:
    """Integer argument; decimals are truncated toward zero."""

    name: str
    default: Optional[int] = None


ArgSpec = Union[TextArg, ChoiceArg, NumberArg]


@dataclass(frozen=True)
class ActionSpec:
    verb: str
    description: str
    arguments: Tuple[ArgSpec, ...] = ()


@dataclass(frozen=True)
class ParsedArguments:
    """Validated argument values for one action.

    ``invalid`` names the fields whose raw value was present but malformed
    and was replaced by its documented default.
    """

    values: Mapping[str, Union[str, int, None]] = field(default_factory=dict)
    invalid: FrozenSet[str] = frozenset()
    provided: FrozenSet[str] = frozenset()

    def get(self, name: str, default=None):
        value = self.values.get(name)
        return default if value is None else value

    def text(self, name: str) -> Optional[str]:
        value = self.values.get(name)
        return value if isinstance(value, str) else None

    def number(self, name: str) -> Optional[int]:
        value = self.values.get(name)
        return value if isinstance(value, int) else None

    def is_invalid(self, name: str) -> bool:
        return name in self.invalid

    def was_provided(self, name: str) -> bool:
        return name in self.provided


PLAY_TYPES = ("track", "album", "artist", "playlist", "show", "episode", "genre")
VOLUME_MODES = ("set", "increase", "decrease")
SEEK_TARGETS = ("forward", "backward", "to_time", "to_percent", "middle")
REPEAT_MODES = ("track", "context", "off")
SHUFFLE_MODES = ("on", "off")

DEFAULT_VOLUME_STEP = 10


ACTION_CATALOG: Dict[str, ActionSpec] = {spec.verb: spec for spec in (
    ActionSpec("toggle_playback", "Pause when playing, resume when paused."),
    ActionSpec("spotify_connect", "Explain how to connect a Spotify player."),
    ActionSpec("play_music", "Search for a name and play the best match.", (
        TextArg("name", required=True),
        ChoiceArg("type", PLAY_TYPES, default=None, fallback="track"),
    )),
    ActionSpec("queue_track", "Search for a track and add it to the queue.", (
        TextArg("name", required=True),
    )),
    ActionSpec("play_random_music", "Play a random track from the user's top tracks."),
    ActionSpec("play_special_playlist", "Play a configured algorithmic playlist.", (
        TextArg("name", required=True),
    )),
    ActionSpec("volume", "Set, increase or decrease the volume.", (
        ChoiceArg("type", VOLUME_MODES, default=None),
        NumberArg("value", default=DEFAULT_VOLUME_STEP),
    )),
    ActionSpec("seek_playback", "Move the playback position.", (
        ChoiceArg("target", SEEK_TARGETS, default=None),
        NumberArg("value", default=None),
    )),
    ActionSpec("skip_next", "Skip to the next track."),
    ActionSpec("skip_previous", "Skip to the previous track."),
    ActionSpec("repeat_mode", "Set the repeat mode.", (
        ChoiceArg("mode", REPEAT_MODES, default="track"),
    )),
    ActionSpec("shuffle_mode", "Turn shuffle on or off.", (
        ChoiceArg("mode", SHUFFLE_MODES, default="off"),
    )),
    ActionSpec("add_to_favorites", "Save the current track to the library."),
    ActionSpec("get_playlists", "List the user's playlists."),
    ActionSpec("add_to_playlist", "Add the current track to a playlist.", (
        TextArg("playlist", required=True),
    )),
    ActionSpec("list_devices", "List available playback devices."),
    ActionSpec("transfer_to_device", "Move playback to another device.", (
        TextArg("device", required=True),
    )),
)}


def _parse_number(raw: str) -> int:
    text = raw.strip()
    if not _NUMBER_PATTERN.match(text):
        raise ValueError(f"not a number: {raw!r}")
    return int(float(text))


def parse_arguments(verb: str, raw: Optional[Mapping[str, object]]) -> ParsedArguments:
    """Validate raw string arguments against the catalog entry for ``verb``.

    Missing or malformed values become the documented default; nothing but an
    unknown verb is raised.

    Raises:
        UnsupportedActionError: if verb is not in the catalog
    """
    spec = ACTION_CATALOG.get(verb)
    if spec is None:
        raise UnsupportedActionError(f"Action '{verb}' is not supported.")

    raw = raw or {}
    values: Dict[str, Union[str, int, None]] = {}
    invalid = set()
    provided = set()

    for arg in spec.arguments:
        value = raw.get(arg.name)
        text = None if value is None else str(value).strip()
        if text:
            provided.add(arg.name)

        if isinstance(arg, TextArg):
            values[arg.name] = text or None

        elif isinstance(arg, ChoiceArg):
            if not text:
                values[arg.name] = arg.default
            elif text.lower() in arg.choices:
                values[arg.name] = text.lower()
            else:
                invalid.add(arg.name)
                values[arg.name] = arg.resolve_invalid()
                error = ValidationError(arg.name, text, f"'{text}' is not one of {', '.join(arg.choices)}")
                logger.warning(f"{verb}: {error}; using {values[arg.name]!r}")

        elif isinstance(arg, NumberArg):
            if not text:
                values[arg.name] = arg.default
                continue
            try:
                values[arg.name] = _parse_number(text)
            except ValueError:
                invalid.add(arg.name)
                values[arg.name] = arg.default
                error = ValidationError(arg.name, text)
                logger.warning(f"{verb}: {error}; using {arg.default!r}")

    return ParsedArguments(values=values, invalid=frozenset(invalid), provided=frozenset(provided))
