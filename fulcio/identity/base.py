"""Identity principals, issuers and a pool that routes tokens to issuers."""

from __future__ import annotations

import base64
import binascii
import json
import re
from abc import ABC, abstractmethod

_RAW_URL_BASE64 = re.compile(r"[A-Za-z0-9_-]*")


class Principal(ABC):
    """An authenticated identity taken from an OIDC ID token."""

    @abstractmethod
    def name(self) -> str:
        """The email or subject that the proof of possession must be signed over."""


class Issuer(ABC):
    """Something that can authenticate ID tokens from certain issuer URLs."""

    @abstractmethod
    def match(self, url: str) -> bool:
        """Whether this issuer handles tokens from the given issuer URL."""

    @abstractmethod
    def authenticate(self, token: str) -> Principal:
        """Verify the raw ID token and return its principal; raise on failure."""


class IssuerPool(list[Issuer]):
    """An ordered list of issuers; the first that matches a token handles it."""

    def authenticate(self, token: str) -> Principal:
        url = extract_issuer_url(token)
        for issuer in self:
            if issuer.match(url):
                return issuer.authenticate(token)
        raise ValueError(f"failed to match issuer URL {url} from token with any configured providers")


def extract_issuer_url(token: str) -> str:
    """Read the unverified 'iss' claim from a raw JWT."""
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError(f"oidc: malformed jwt, expected 3 parts got {len(parts)}")

    payload = parts[1]
    if not _RAW_URL_BASE64.fullmatch(payload) or len(payload) % 4 == 1:
        raise ValueError("oidc: malformed jwt payload: illegal base64 data")
    try:
        raw = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"oidc: malformed jwt payload: {exc}") from exc

    try:
        claims = json.loads(raw)
    except ValueError as exc:
        raise ValueError(f"oidc: failed to unmarshal claims: {exc}") from exc
    if not isinstance(claims, dict):
        raise ValueError("oidc: failed to unmarshal claims: payload is not a JSON object")
    issuer = claims.get("iss")
    if issuer is None:
        return ""
    if not isinstance(issuer, str):
        raise ValueError("oidc: failed to unmarshal claims: iss is not a string")
    return issuer