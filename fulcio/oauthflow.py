"""OIDC ID tokens, claim extraction and provider discovery."""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import jwt
import requests

DEFAULT_TIMEOUT = 10.0

_DISCOVERY_PATH = "/.well-known/openid-configuration"
_SUPPORTED_ALGORITHMS = frozenset(
    {
        "RS256", "RS384", "RS512",
        "ES256", "ES384", "ES512",
        "PS256", "PS384", "PS512",
        "EdDSA",
    }
)


def _decode_json(data: bytes | str) -> Any:
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        if not exc.doc[exc.pos:].strip():
            raise ValueError("unexpected end of JSON input") from exc
        raise ValueError(f"invalid JSON: {exc.msg} at offset {exc.pos}") from exc
    except UnicodeDecodeError as exc:
        raise ValueError("invalid JSON: input is not UTF-8") from exc


@dataclass
class IDToken:
    """A verified OIDC ID token and its raw claims payload."""

    issuer: str = ""
    subject: str = ""
    audience: list[str] = field(default_factory=list)
    expiry: datetime | None = None
    issued_at: datetime | None = None
    raw_claims: bytes | None = None

    def claims(self) -> Any:
        """Decode the token's JSON claims."""
        if self.raw_claims is None:
            raise ValueError("oidc: claims not set")
        return _decode_json(self.raw_claims)


def _claims_object(token: IDToken) -> dict[str, Any]:
    claims = token.claims()
    if not isinstance(claims, dict):
        raise ValueError("oidc: claims are not a JSON object")
    return claims


def email_from_id_token(token: IDToken) -> tuple[str, bool]:
    """Return the token's email address and whether the issuer verified it."""
    claims = _claims_object(token)
    email = claims.get("email")
    verified = claims.get("email_verified")
    if email is None:
        email = ""
    if verified is None:
        verified = False
    if not isinstance(email, str):
        raise ValueError("cannot decode claim 'email' as a string")
    if not isinstance(verified, bool):
        raise ValueError("cannot decode claim 'email_verified' as a boolean")
    if not email:
        raise ValueError("token missing email claim")
    return email, verified


def _go_format(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    if isinstance(value, list):
        return "[" + " ".join(_go_format(item) for item in value) + "]"
    if isinstance(value, dict):
        items = (f"{key}:{_go_format(value[key])}" for key in sorted(value))
        return "map[" + " ".join(items) + "]"
    return str(value)


def issuer_from_id_token(token: IDToken, claim_json_path: str) -> str:
    """Return the token's issuer, or the claim at the JSON path when one is given."""
    if not claim_json_path:
        return token.issuer
    result = json_path_get(claim_json_path, token.claims())
    return _go_format(result)


_SEGMENT = re.compile(
    r"""\.(?P<name>[^.\[\]]+)"""
    r"""|\[\s*(?:(?P<index>-?\d+)|'(?P<single>[^']*)'|"(?P<double>[^"]*)")\s*\]"""
)


def _select_key(current: Any, key: str) -> Any:
    if not isinstance(current, dict):
        raise ValueError(f"unsupported value type {type(current).__name__} for key {key}, expected object")
    if key not in current:
        raise ValueError(f"unknown key {key}")
    return current[key]


def _select_index(current: Any, index: int) -> Any:
    if not isinstance(current, list):
        raise ValueError(f"unsupported value type {type(current).__name__} for index {index}, expected array")
    position = index if index >= 0 else len(current) + index
    if not 0 <= position < len(current):
        raise ValueError(f"index {index} out of bounds")
    return current[position]


def json_path_get(path: str, value: Any) -> Any:
    """Evaluate a simple JSONPath ($, .key, ['key'], [n]) against decoded JSON."""
    if not path.startswith("$"):
        raise ValueError(f"parsing error: {path}: path must start with $")
    current = value
    pos = 1
    while pos < len(path):
        match = _SEGMENT.match(path, pos)
        if match is None:
            raise ValueError(f"parsing error: {path}: unexpected {path[pos]!r} at offset {pos}")
        pos = match.end()
        if match["index"] is not None:
            current = _select_index(current, int(match["index"]))
            continue
        key = next(part for part in (match["name"], match["single"], match["double"]) if part is not None)
        if match["name"] is not None and key == "*":
            raise ValueError(f"parsing error: {path}: wildcards are not supported")
        current = _select_key(current, key)
    return current


def _fetch_json(url: str, timeout: float) -> Any:
    response = requests.get(url, timeout=timeout)
    if response.status_code != 200:
        raise ValueError(f"{response.status_code} {response.reason}: {response.text}")
    try:
        return response.json()
    except ValueError as exc:
        raise ValueError(f"oidc: failed to decode response from {url}: {exc}") from exc


@dataclass(frozen=True)
class Provider:
    """An OIDC provider described by its discovery document."""

    issuer: str
    jwks_uri: str
    algorithms: tuple[str, ...] = ("RS256",)
    timeout: float = DEFAULT_TIMEOUT

    def verifier(self, client_id: str) -> IDTokenVerifier:
        """Return a verifier for tokens issued to the given client ID."""
        return IDTokenVerifier(self, client_id)


def new_provider(issuer_url: str, timeout: float = DEFAULT_TIMEOUT) -> Provider:
    """Discover a provider. Network failures raise requests exceptions; bad documents raise ValueError."""
    document = _fetch_json(issuer_url.rstrip("/") + _DISCOVERY_PATH, timeout)
    if not isinstance(document, dict):
        raise ValueError("oidc: provider discovery object is not a JSON object")
    issuer = document.get("issuer")
    if issuer != issuer_url:
        raise ValueError(
            "oidc: issuer did not match the issuer returned by provider, "
            f"expected {issuer_url!r} got {issuer!r}"
        )
    jwks_uri = document.get("jwks_uri")
    if not isinstance(jwks_uri, str) or not jwks_uri:
        raise ValueError("oidc: provider discovery object has no jwks_uri")
    advertised = document.get("id_token_signing_alg_values_supported") or []
    algorithms = tuple(alg for alg in advertised if alg in _SUPPORTED_ALGORITHMS) or ("RS256",)
    return Provider(issuer=issuer, jwks_uri=jwks_uri, algorithms=algorithms, timeout=timeout)


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, timezone.utc)
    return None


@dataclass
class IDTokenVerifier:
    """Verifies signed ID tokens against a provider's published keys."""

    provider: Provider
    client_id: str
    _keys: list[jwt.PyJWK] | None = field(default=None, init=False, repr=False)

    def _load_keys(self) -> list[jwt.PyJWK]:
        data = _fetch_json(self.provider.jwks_uri, self.provider.timeout)
        try:
            self._keys = list(jwt.PyJWKSet.from_dict(data).keys)
        except jwt.PyJWTError as exc:
            raise ValueError(f"oidc: invalid key set: {exc}") from exc
        return self._keys

    def _signing_key(self, kid: str | None) -> Any:
        for refreshed in (False, True):
            keys = self._keys if (self._keys is not None and not refreshed) else self._load_keys()
            if kid is None and len(keys) == 1:
                return keys[0].key
            for candidate in keys:
                if kid is not None and candidate.key_id == kid:
                    return candidate.key
        raise ValueError("oidc: failed to verify signature: no matching key found")

    def verify(self, raw_token: str) -> IDToken:
        """Check the token's signature, issuer, audience and expiry, and return it parsed."""
        try:
            header = jwt.get_unverified_header(raw_token)
        except jwt.PyJWTError as exc:
            raise ValueError(f"oidc: malformed jwt: {exc}") from exc
        algorithm = header.get("alg")
        if algorithm not in self.provider.algorithms:
            raise ValueError(
                "oidc: id token signed with unsupported algorithm, "
                f"expected {list(self.provider.algorithms)} got {algorithm!r}"
            )
        key = self._signing_key(header.get("kid"))
        try:
            claims = jwt.decode(
                raw_token,
                key=key,
                algorithms=[algorithm],
                audience=self.client_id,
                issuer=self.provider.issuer,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.PyJWTError as exc:
            raise ValueError(f"oidc: {exc}") from exc

        payload = raw_token.split(".")[1]
        raw_claims = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
        audience = claims.get("aud")
        return IDToken(
            issuer=claims["iss"],
            subject=claims.get("sub", ""),
            audience=[audience] if isinstance(audience, str) else list(audience),
            expiry=_timestamp(claims.get("exp")),
            issued_at=_timestamp(claims.get("iat")),
            raw_claims=raw_claims,
        )