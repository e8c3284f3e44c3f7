from enum import Enum
from typing import Dict, Iterator, Tuple, Union

from .errors import UnknownKey

U8_MAX = 255


class TrackedKey(str, Enum):
    TRACKER = "tracker"
    BPM = "bpm"
    BATTERY = "battery"

    def __str__(self) -> str:
        return self.value


# The tracker flag is derived from the registry and is read-only to clients
SETTABLE_KEYS = frozenset({TrackedKey.BPM, TrackedKey.BATTERY})


def resolve_key(key: Union[str, TrackedKey]) -> TrackedKey:
    try:
        return TrackedKey(key)
    except ValueError:
        raise UnknownKey(str(key)) from None


class ValueStore:
    """Current value of every tracked key, all starting at 0."""

    def __init__(self):
        self._values: Dict[TrackedKey, int] = {key: 0 for key in TrackedKey}

    def get(self, key: Union[str, TrackedKey]) -> int:
        return self._values[resolve_key(key)]

    def set(self, key: Union[str, TrackedKey], value: int) -> int:
        """Store `value` and return the previous one."""
        key = resolve_key(key)
        if not 0 <= value <= U8_MAX:
            raise ValueError(f"value {value} for {key} out of range 0..{U8_MAX}")
        prev = self._values[key]
        self._values[key] = value
        return prev

    def items(self) -> Iterator[Tuple[TrackedKey, int]]:
        # Enum definition order: tracker, bpm, battery
        return iter(list(self._values.items()))

    def as_dict(self) -> Dict[str, int]:
        return {key.value: val for key, val in self._values.items()}
