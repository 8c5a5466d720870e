"""
Store version handling.

Different CouchDB releases expose slightly different view APIs. Rather than
sprinkling version checks through the query code, everything that depends on
the server version is answered by a CapabilityProfile resolved once when the
connection is opened.

Example:
    profile = CapabilityProfile.from_version("0.8.1")
    profile.reduce_counting   # False
    profile.limit_param       # 'count'
"""

import re
from dataclasses import dataclass
from functools import total_ordering
from typing import Tuple, Union

DEFAULT_STORE_VERSION = "0.9.0"

_VERSION_PATTERN = re.compile(r'(\d+)\.(\d+)(?:\.(\d+))?')


@total_ordering
@dataclass(frozen=True)
class StoreVersion:
    """A major.minor.patch store version."""
    major: int = 0
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, version: Union[str, 'StoreVersion', float, None]) -> 'StoreVersion':
        """
        Parse a version in "major.minor[.patch]" form.

        Anything that doesn't look like a version resolves to 0.0.0.
        """
        if isinstance(version, StoreVersion):
            return version
        match = _VERSION_PATTERN.search(str(version or ''))
        if not match:
            return cls()
        major, minor, patch = match.groups()
        return cls(int(major), int(minor), int(patch or 0))

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def release(self) -> Tuple[int, int]:
        """Release line (major, minor); patch levels share capabilities."""
        return (self.major, self.minor)

    def __eq__(self, other) -> bool:
        if isinstance(other, (str, float)):
            other = StoreVersion.parse(other)
        if not isinstance(other, StoreVersion):
            return NotImplemented
        return self.as_tuple() == other.as_tuple()

    def __lt__(self, other) -> bool:
        if isinstance(other, (str, float)):
            other = StoreVersion.parse(other)
        if not isinstance(other, StoreVersion):
            return NotImplemented
        return self.as_tuple() < other.as_tuple()

    def __hash__(self) -> int:
        return hash(self.as_tuple())

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class CapabilityProfile:
    """
    Version-gated behaviour of the connected store.

    Attributes:
        version: Resolved server version
    """
    version: StoreVersion

    @classmethod
    def from_version(cls, version: Union[str, StoreVersion, None] = None) -> 'CapabilityProfile':
        return cls(StoreVersion.parse(version or DEFAULT_STORE_VERSION))

    @property
    def reduce_counting(self) -> bool:
        """Can a find view double as a count view by toggling reduce?"""
        return self.version.release > (0, 8)

    @property
    def multi_key(self) -> bool:
        """Can a single view request match several exact keys?"""
        return self.version.release > (0, 8)

    @property
    def limit_param(self) -> str:
        # Renamed from count to limit in 0.9
        return "count" if self.version.release < (0, 9) else "limit"

    @property
    def offset_param(self) -> str:
        return "skip"

    @property
    def stale_param(self) -> Tuple[str, str]:
        """Parameter (name, value) that suppresses index updates on read."""
        if self.version.release < (0, 10):
            return ("update", "false")
        return ("stale", "ok")

    def view_path(self, design_name: str, view_name: str) -> str:
        if self.version.release < (0, 9):
            return f"_view/{design_name}/{view_name}"
        return f"_design/{design_name}/_view/{view_name}"

    @property
    def ad_hoc_path(self) -> str:
        return "_slow_view" if self.version.release < (0, 9) else "_temp_view"

    def supports(self, feature: str) -> bool:
        """Look up a boolean capability by name."""
        return bool(getattr(self, feature, False))

    def summary(self) -> dict:
        return {
            "version": str(self.version),
            "reduce_counting": self.reduce_counting,
            "multi_key": self.multi_key,
            "limit_param": self.limit_param,
            "stale_param": "=".join(self.stale_param),
            "ad_hoc_path": self.ad_hoc_path,
        }
