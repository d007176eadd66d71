"""Parsing and validation of SPIFFE IDs and trust domains."""

from __future__ import annotations

import string
from dataclasses import dataclass

_SCHEME_PREFIX = "spiffe://"
_TRUST_DOMAIN_CHARS = frozenset(string.ascii_lowercase + string.digits + ".-_")
_PATH_CHARS = frozenset(string.ascii_letters + string.digits + ".-_")


class SpiffeIDError(ValueError):
    """Raised when a SPIFFE ID or trust domain is malformed."""


def _validate_trust_domain(name: str) -> None:
    if not name:
        raise SpiffeIDError("trust domain is missing")
    if any(char not in _TRUST_DOMAIN_CHARS for char in name):
        raise SpiffeIDError(
            "trust domain characters are limited to lowercase letters, numbers, dots, dashes, and underscores"
        )


def _validate_path(path: str) -> None:
    if not path:
        return
    if not path.startswith("/"):
        raise SpiffeIDError("path must have a leading slash")
    segments = path[1:].split("/")
    last = len(segments) - 1
    for position, segment in enumerate(segments):
        if not segment:
            if position == last:
                raise SpiffeIDError("path cannot have a trailing slash")
            raise SpiffeIDError("path cannot contain empty segments")
        if segment in (".", ".."):
            raise SpiffeIDError("path cannot contain dot segments")
        if any(char not in _PATH_CHARS for char in segment):
            raise SpiffeIDError(
                "path segment characters are limited to letters, numbers, dots, dashes, and underscores"
            )


@dataclass(frozen=True, order=True)
class TrustDomain:
    """A SPIFFE trust domain name."""

    name: str

    def __post_init__(self) -> None:
        _validate_trust_domain(self.name)

    def __str__(self) -> str:
        return self.name

    @property
    def id_string(self) -> str:
        """The SPIFFE ID of the trust domain itself."""
        return _SCHEME_PREFIX + self.name


@dataclass(frozen=True)
class SpiffeID:
    """A SPIFFE ID: a trust domain and an optional path."""

    trust_domain: TrustDomain
    path: str = ""

    def __post_init__(self) -> None:
        _validate_path(self.path)

    def __str__(self) -> str:
        return f"{_SCHEME_PREFIX}{self.trust_domain.name}{self.path}"


def id_from_string(value: str) -> SpiffeID:
    """Parse a SPIFFE ID of the form spiffe://<trust domain>[/<path>]."""
    if not value:
        raise SpiffeIDError("cannot be empty")
    if not value.startswith(_SCHEME_PREFIX):
        raise SpiffeIDError("scheme is missing or invalid")
    name, slash, rest = value[len(_SCHEME_PREFIX):].partition("/")
    if not name:
        raise SpiffeIDError("trust domain is missing")
    return SpiffeID(TrustDomain(name), slash + rest)


def trust_domain_from_string(value: str) -> TrustDomain:
    """Parse a trust domain name, or take the trust domain of a SPIFFE ID."""
    if ":/" in value:
        return id_from_string(value).trust_domain
    return TrustDomain(value)