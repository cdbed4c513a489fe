import math
import random
from typing import Dict, Iterator, Mapping, Optional, Tuple

# Parameter name -> default, in the order the editor shows them.
PARAMETERS = (
    ("saturation", 1.0),
    ("warmth", 0.0),
    ("sharpen", 0.0),
    ("blur", 1.0),
    ("brightness", 1.0),
    ("contrast", 1.0),
    ("grey", 0.5),
    ("vignette", 2.0),
)

DEFAULTS = dict(PARAMETERS)

# Ranges used by randomize()
RANDOM_RANGES = {
    "saturation": (0.0, 2.0),
    "warmth": (-0.08, 0.08),
    "sharpen": (-2.0, 2.0),
    "blur": (0.01, 4.0),
    "brightness": (0.0, 2.0),
    "contrast": (0.0, 2.0),
    "grey": (0.0, 1.0),
    "vignette": (0.2, 2.0),
}


class FilterTransform:
    """
    Fixed set of named numeric filter parameters.

    Iterating yields (name, value) pairs in PARAMETERS order. Unknown names are
    rejected so a typo can never end up as a remote attribute.
    """

    __slots__ = ("_values",)

    def __init__(self, **values: float):
        self._values: Dict[str, float] = dict(DEFAULTS)
        for name, value in values.items():
            self[name] = value

    def __iter__(self) -> Iterator[Tuple[str, float]]:
        for name, _ in PARAMETERS:
            yield name, self._values[name]

    def __getitem__(self, name: str) -> float:
        return self._values[name]

    def __setitem__(self, name: str, value: float):
        if name not in DEFAULTS:
            raise KeyError(f"Unknown filter parameter: {name}")
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"{name} must be a finite number, got {value}")
        self._values[name] = value

    def __getattr__(self, name: str) -> float:
        if name == "_values":
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(name) from None

    def __eq__(self, other) -> bool:
        if not isinstance(other, FilterTransform):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        params = ", ".join(f"{name}={value:g}" for name, value in self)
        return f"FilterTransform({params})"

    def copy(self) -> "FilterTransform":
        return FilterTransform(**self._values)

    def to_dict(self) -> Dict[str, float]:
        return dict(self)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, float]]) -> "FilterTransform":
        """Build from a stored mapping, ignoring names we no longer know."""
        transform = cls()
        for name, value in (data or {}).items():
            if name in DEFAULTS:
                transform[name] = value
        return transform

    def to_attributes(self) -> Dict[str, str]:
        """Serialize for Drive appProperties (string -> string)."""
        return {name: str(value) for name, value in self}

    @classmethod
    def from_attributes(cls, attrs: Optional[Mapping[str, str]],
                        fallback: "FilterTransform" = None) -> "FilterTransform":
        """
        Parse Drive appProperties. Each parameter keeps the fallback value
        (current transform, else defaults) when missing, unparsable or not
        finite.
        """
        transform = fallback.copy() if fallback is not None else cls()
        attrs = attrs or {}
        for name, _ in PARAMETERS:
            raw = attrs.get(name)
            if raw is None:
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError):
                continue
            if math.isfinite(value):
                transform[name] = value
        return transform

    def randomize(self, rng: random.Random = None):
        rng = rng or random
        for name, (low, high) in RANDOM_RANGES.items():
            self[name] = rng.uniform(low, high)

    @property
    def is_default(self) -> bool:
        return self._values == DEFAULTS
