"""Principals identified by a URI subject under a configured domain."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from fulcio.config import FulcioConfig, from_context
from fulcio.identity.base import Principal
from fulcio.oauthflow import IDToken


@dataclass(frozen=True)
class URIPrincipal(Principal):
    """An identity named by a URI in the token's subject."""

    issuer: str
    uri: str

    def name(self) -> str:
        return self.uri


def _hostname(netloc: str) -> str:
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host[1:]
    name, colon, port = host.rpartition(":")
    if colon and (port == "" or port.isdigit()):
        return name
    return host


def _scheme_and_host(raw: str) -> tuple[str, str]:
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in raw):
        raise ValueError(f"parse {raw!r}: invalid control character in URL")
    if raw.startswith(":"):
        raise ValueError(f"parse {raw!r}: missing protocol scheme")
    parts = urlsplit(raw)
    return parts.scheme, _hostname(parts.netloc)


def principal_from_id_token(token: IDToken, config: FulcioConfig | None = None) -> URIPrincipal:
    """Build a URI principal; the subject's scheme and hostname must match the configured domain.

    The issuer configuration comes from ``config``, or from the current
    configuration when none is given.
    """
    uri_with_subject = token.subject

    cfg = config if config is not None else from_context()
    issuer_config = cfg.get_issuer(token.issuer) if cfg is not None else None
    if issuer_config is None:
        raise ValueError("invalid configuration for OIDC ID Token issuer")

    subject_scheme, subject_host = _scheme_and_host(uri_with_subject)
    domain_scheme, domain_host = _scheme_and_host(issuer_config.subject_domain)
    if subject_scheme != domain_scheme:
        raise ValueError(
            f"subject URI scheme ({subject_scheme}) must match expected domain URI scheme ({domain_scheme})"
        )
    if subject_host != domain_host:
        raise ValueError(f"subject hostname ({subject_host}) must match expected domain ({domain_host})")

    return URIPrincipal(issuer=token.issuer, uri=uri_with_subject)