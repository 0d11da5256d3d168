"""
Store path handling.

Paths arrive on the wire as "/"-separated strings whose segments are
percent-encoded (a public key or digest may itself contain "/", "+" or "=").
They are decoded exactly once into a StorePath and every comparison works on
the decoded segment list. The canonical key stored in the document store
re-encodes each segment, so "users/ab%2Fcd" is one two-segment path.
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple
from urllib.parse import quote, unquote

from .errors import ValidationError

SEPARATOR = "/"
DIGEST_MARKER = "#"


def encode_segment(segment: str) -> str:
    return quote(segment, safe="")


@dataclass(frozen=True)
class StorePath:
    """An ordered, already-decoded sequence of path segments."""

    segments: Tuple[str, ...]

    @classmethod
    def parse(cls, raw: str) -> "StorePath":
        """
        Decode a wire path.

        Empty segments (leading, trailing or doubled separators) are dropped.

        Raises:
            ValidationError: If the path is not a string or has no segments
        """
        if not isinstance(raw, str):
            raise ValidationError("must be a string", field="path")
        segments = tuple(unquote(part) for part in raw.split(SEPARATOR) if part)
        if not segments:
            raise ValidationError("must contain at least one segment", field="path")
        return cls(segments)

    @classmethod
    def of(cls, *segments: str) -> "StorePath":
        return cls(tuple(segments))

    def key(self, trailing_slash: bool = False) -> str:
        """Canonical storage key for this path."""
        text = SEPARATOR.join(encode_segment(s) for s in self.segments)
        return text + SEPARATOR if trailing_slash else text

    def __str__(self) -> str:
        return self.key()

    def __len__(self) -> int:
        return len(self.segments)

    def parent(self) -> Optional["StorePath"]:
        if len(self.segments) <= 1:
            return None
        return StorePath(self.segments[:-1])

    def child(self, segment: str) -> "StorePath":
        return StorePath(self.segments + (segment,))

    def ancestors(self) -> Iterator["StorePath"]:
        """Yield this path, then each shorter prefix down to the root segment."""
        path: Optional[StorePath] = self
        while path is not None:
            yield path
            path = path.parent()

    def startswith(self, other: "StorePath") -> bool:
        return self.segments[:len(other.segments)] == other.segments

    def in_namespace(self, root: str) -> bool:
        return self.startswith(StorePath.of(root))

    def digest_marker_index(self) -> Optional[int]:
        """Index of the first segment carrying the digest marker, if any."""
        for index, segment in enumerate(self.segments):
            if segment.startswith(DIGEST_MARKER):
                return index
        return None

    def is_content_addressed(self) -> bool:
        return self.digest_marker_index() is not None


def key_is_content_addressed(key: str) -> bool:
    """True if a stored canonical key lies under a digest-marker segment."""
    return any(unquote(part).startswith(DIGEST_MARKER) for part in key.split(SEPARATOR) if part)
