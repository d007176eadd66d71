"""Server configuration: the OIDC issuers that are trusted and how to reach them."""

from __future__ import annotations

import json
import os
import re
import tempfile
from collections import OrderedDict
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import requests
from cryptography import x509
from requests.certs import where as _default_ca_bundle

from fulcio import oauthflow
from fulcio.log import logger
from fulcio.spiffeid import SpiffeIDError, trust_domain_from_string

DEFAULT_OIDC_DISCOVERY_TIMEOUT = 10.0

# Subject and issuer hostnames need at least a top-level and a second-level domain.
MINIMUM_HOSTNAME_LENGTH = 2

K8S_CA_PATH = "/var/run/fulcio/ca.crt"

_KUBERNETES_ISSUER = "https://kubernetes.default.svc"
_VERIFIER_CACHE_SIZE = 100
_META_WILDCARD = "[-_a-zA-Z0-9]+"


class ConfigError(ValueError):
    """Raised when a configuration cannot be read, parsed or validated."""


class IssuerType(str, Enum):
    """How the subject of a certificate is taken from an issuer's tokens."""

    EMAIL = "email"
    GITHUB_WORKFLOW = "github-workflow"
    KUBERNETES = "kubernetes"
    SPIFFE = "spiffe"
    URI = "uri"
    USERNAME = "username"

    def __str__(self) -> str:
        return self.value


_CHALLENGE_CLAIMS = {
    IssuerType.EMAIL: "email",
    IssuerType.GITHUB_WORKFLOW: "sub",
    IssuerType.KUBERNETES: "sub",
    IssuerType.SPIFFE: "sub",
    IssuerType.URI: "sub",
    IssuerType.USERNAME: "sub",
}


@dataclass(frozen=True)
class OIDCIssuer:
    """The configuration of one trusted OIDC issuer."""

    issuer_url: str = ""
    client_id: str = ""
    type: str = ""
    issuer_claim: str = ""
    subject_domain: str = ""
    spiffe_trust_domain: str = ""


@dataclass(frozen=True)
class IssuerInfo:
    """A public description of a configured issuer."""

    audience: str = ""
    challenge_claim: str = ""
    spiffe_trust_domain: str = ""
    issuer_url: str | None = None
    wildcard_issuer_url: str | None = None


def meta_regex(issuer: str) -> re.Pattern[str]:
    """Compile a meta issuer template, where '*' matches one hostname label or path part."""
    return re.compile(re.escape(issuer).replace(re.escape("*"), _META_WILDCARD))


@dataclass
class FulcioConfig:
    """The trusted issuers, with fixed issuers and wildcard meta issuers."""

    oidc_issuers: dict[str, OIDCIssuer] = field(default_factory=dict)
    meta_issuers: dict[str, OIDCIssuer] = field(default_factory=dict)
    _verifiers: dict[str, oauthflow.IDTokenVerifier] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _cache: OrderedDict[str, oauthflow.IDTokenVerifier] = field(
        default_factory=OrderedDict, init=False, repr=False, compare=False
    )

    def get_issuer(self, issuer_url: str) -> OIDCIssuer | None:
        """Return the configuration for a token's issuer URL, or None if none applies."""
        issuer = self.oidc_issuers.get(issuer_url)
        if issuer is not None:
            return issuer
        for template, meta in self.meta_issuers.items():
            if meta_regex(template).search(issuer_url):
                return OIDCIssuer(
                    issuer_url=issuer_url,
                    client_id=meta.client_id,
                    type=meta.type,
                    issuer_claim=meta.issuer_claim,
                    subject_domain=meta.subject_domain,
                )
        return None

    def get_verifier(self, issuer_url: str) -> oauthflow.IDTokenVerifier | None:
        """Return a token verifier for the issuer URL, or None if it is unknown or unreachable."""
        verifier = self._verifiers.get(issuer_url)
        if verifier is not None:
            return verifier

        verifier = self._cache.get(issuer_url)
        if verifier is not None:
            self._cache.move_to_end(issuer_url)
            return verifier

        issuer = self.get_issuer(issuer_url)
        if issuer is None:
            return None
        try:
            provider = oauthflow.new_provider(issuer_url, DEFAULT_OIDC_DISCOVERY_TIMEOUT)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Failed to create provider for issuer URL %r: %s", issuer_url, exc)
            return None
        verifier = provider.verifier(issuer.client_id)
        self._cache[issuer_url] = verifier
        if len(self._cache) > _VERIFIER_CACHE_SIZE:
            self._cache.popitem(last=False)
        return verifier

    def to_issuers(self) -> list[IssuerInfo]:
        """Describe the fixed issuers, then the meta issuers."""
        fixed = [
            IssuerInfo(
                audience=issuer.client_id,
                challenge_claim=issuer_to_challenge_claim(issuer.type),
                spiffe_trust_domain=issuer.spiffe_trust_domain,
                issuer_url=issuer.issuer_url,
            )
            for issuer in self.oidc_issuers.values()
        ]
        wildcards = [
            IssuerInfo(
                audience=issuer.client_id,
                challenge_claim=issuer_to_challenge_claim(issuer.type),
                spiffe_trust_domain=issuer.spiffe_trust_domain,
                wildcard_issuer_url=template,
            )
            for template, issuer in self.meta_issuers.items()
        ]
        return fixed + wildcards

    def prepare(self) -> None:
        """Discover every fixed issuer and reset the cache of meta issuer verifiers."""
        verifiers: dict[str, oauthflow.IDTokenVerifier] = {}
        for issuer in self.oidc_issuers.values():
            try:
                provider = oauthflow.new_provider(issuer.issuer_url, DEFAULT_OIDC_DISCOVERY_TIMEOUT)
            except (requests.RequestException, ValueError) as exc:
                raise ConfigError(f"provider {issuer.issuer_url}: {exc}") from exc
            verifiers[issuer.issuer_url] = provider.verifier(issuer.client_id)
        self._verifiers = verifiers
        self._cache = OrderedDict()


_ISSUER_FIELDS = {
    "issuerurl": "issuer_url",
    "clientid": "client_id",
    "type": "type",
    "issuerclaim": "issuer_claim",
    "subjectdomain": "subject_domain",
    "spiffetrustdomain": "spiffe_trust_domain",
}

_CONFIG_FIELDS = {
    "oidcissuers": "oidc_issuers",
    "metaissuers": "meta_issuers",
}


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _decode_issuer(raw: Any, where: str) -> OIDCIssuer:
    if raw is None:
        return OIDCIssuer()
    if not isinstance(raw, dict):
        raise ConfigError(f"unmarshal: cannot unmarshal {_json_kind(raw)} into {where}")
    values: dict[str, str] = {}
    for key, value in raw.items():
        attribute = _ISSUER_FIELDS.get(key.lower())
        if attribute is None or value is None:
            continue
        if not isinstance(value, str):
            raise ConfigError(f"unmarshal: cannot unmarshal {_json_kind(value)} into {where}.{key} of type string")
        values[attribute] = value
    return OIDCIssuer(**values)


def _decode_issuers(raw: Any, name: str) -> dict[str, OIDCIssuer]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"unmarshal: cannot unmarshal {_json_kind(raw)} into {name}")
    return {key: _decode_issuer(value, name) for key, value in raw.items()}


def parse_config(data: bytes | str) -> FulcioConfig:
    """Decode a JSON configuration document."""
    try:
        document = json.loads(data)
    except ValueError as exc:
        raise ConfigError(f"unmarshal: {exc}") from exc
    if document is None:
        return FulcioConfig()
    if not isinstance(document, dict):
        raise ConfigError(f"unmarshal: cannot unmarshal {_json_kind(document)} into FulcioConfig")
    sections: dict[str, dict[str, OIDCIssuer]] = {}
    for key, value in document.items():
        attribute = _CONFIG_FIELDS.get(key.lower())
        if attribute is not None:
            sections[attribute] = _decode_issuers(value, key)
    return FulcioConfig(**sections)


@dataclass(frozen=True)
class _URL:
    scheme: str
    hostname: str


def _hostname(netloc: str) -> str:
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host[1:]
    name, colon, port = host.rpartition(":")
    if colon and (port == "" or port.isdigit()):
        return name
    return host


def _parse_url(raw: str) -> _URL:
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in raw):
        raise ValueError(f"parse {raw!r}: invalid control character in URL")
    if raw.startswith(":"):
        raise ValueError(f"parse {raw!r}: missing protocol scheme")
    parts = urlsplit(raw)
    return _URL(scheme=parts.scheme, hostname=_hostname(parts.netloc))


def _parse_for_config(raw: str) -> _URL:
    try:
        return _parse_url(raw)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _validate_issuer(issuer: OIDCIssuer) -> None:
    if issuer.issuer_claim and issuer.type != IssuerType.EMAIL:
        raise ConfigError("only email issuers can use issuer claim mapping")

    if issuer.type == IssuerType.SPIFFE:
        if not issuer.spiffe_trust_domain:
            raise ConfigError("spiffe issuer must have SPIFFETrustDomain set")
        try:
            trust_domain_from_string(issuer.spiffe_trust_domain)
        except SpiffeIDError as exc:
            raise ConfigError("spiffe trust domain is invalid") from exc

    if issuer.type == IssuerType.URI:
        if not issuer.subject_domain:
            raise ConfigError("uri issuer must have SubjectDomain set")
        domain = _parse_for_config(issuer.subject_domain)
        if not domain.scheme:
            raise ConfigError("SubjectDomain for uri must contain scheme")
        issuer_url = _parse_for_config(issuer.issuer_url)
        if not issuer_url.scheme:
            raise ConfigError("issuer for uri must contain scheme")
        _check_uri_subject(domain, issuer_url)

    if issuer.type == IssuerType.USERNAME:
        if not issuer.subject_domain:
            raise ConfigError("username issuer must have SubjectDomain set")
        domain = _parse_for_config(issuer.subject_domain)
        if domain.scheme:
            raise ConfigError("SubjectDomain for username should not contain scheme")
        issuer_url = _parse_for_config(issuer.issuer_url)
        if not issuer_url.scheme:
            raise ConfigError("issuer for username must contain scheme")
        validate_allowed_domain(issuer.subject_domain, issuer_url.hostname)

    if not issuer_to_challenge_claim(issuer.type):
        raise ConfigError("issuer missing challenge claim")


def validate_config(conf: FulcioConfig | None) -> None:
    """Raise ConfigError if the configuration is not acceptable."""
    if conf is None:
        raise ConfigError("nil config")

    for issuer in conf.oidc_issuers.values():
        _validate_issuer(issuer)

    for meta in conf.meta_issuers.values():
        if meta.type == IssuerType.SPIFFE:
            # One trust domain per issuer: a wildcard would map many issuers to it.
            raise ConfigError("SPIFFE meta issuers not supported")
        if not issuer_to_challenge_claim(meta.type):
            raise ConfigError("issuer missing challenge claim")


DEFAULT_CONFIG = FulcioConfig(
    oidc_issuers={
        "https://oauth2.sigstore.dev/auth": OIDCIssuer(
            issuer_url="https://oauth2.sigstore.dev/auth",
            client_id="sigstore",
            issuer_claim="$.federated_claims.connector_id",
            type=IssuerType.EMAIL,
        ),
        "https://accounts.google.com": OIDCIssuer(
            issuer_url="https://accounts.google.com",
            client_id="sigstore",
            type=IssuerType.EMAIL,
        ),
        "https://token.actions.githubusercontent.com": OIDCIssuer(
            issuer_url="https://token.actions.githubusercontent.com",
            client_id="sigstore",
            type=IssuerType.GITHUB_WORKFLOW,
        ),
    },
)

_current_config: ContextVar[FulcioConfig | None] = ContextVar("fulcio_config", default=None)


@contextmanager
def use_config(cfg: FulcioConfig) -> Iterator[FulcioConfig]:
    """Make cfg the current configuration for the duration of the block."""
    token = _current_config.set(cfg)
    try:
        yield cfg
    finally:
        _current_config.reset(token)


def from_context() -> FulcioConfig | None:
    """Return the current configuration, or None when none is in use."""
    return _current_config.get()


_original_ca_bundle = os.environ.get("REQUESTS_CA_BUNDLE")
_cluster_bundle_path: str | None = None


def _discard_cluster_bundle() -> None:
    global _cluster_bundle_path
    if _cluster_bundle_path is not None:
        try:
            os.unlink(_cluster_bundle_path)
        except OSError:
            pass
        _cluster_bundle_path = None


def _trust_cluster_ca() -> None:
    """Add the cluster's CA to the certificates trusted for outgoing requests."""
    global _cluster_bundle_path
    try:
        cluster_pem = Path(K8S_CA_PATH).read_bytes()
    except OSError as exc:
        raise ConfigError(f"read file: {exc}") from exc
    try:
        x509.load_pem_x509_certificates(cluster_pem)
    except ValueError as exc:
        raise ConfigError("unable to append certs") from exc

    system_pem = Path(_default_ca_bundle()).read_bytes()
    with tempfile.NamedTemporaryFile("wb", prefix="fulcio-ca-", suffix=".pem", delete=False) as bundle:
        bundle.write(system_pem.rstrip(b"\n") + b"\n" + cluster_pem)
    _discard_cluster_bundle()
    _cluster_bundle_path = bundle.name
    os.environ["REQUESTS_CA_BUNDLE"] = bundle.name


def _restore_ca_bundle() -> None:
    _discard_cluster_bundle()
    if _original_ca_bundle is None:
        os.environ.pop("REQUESTS_CA_BUNDLE", None)
    else:
        os.environ["REQUESTS_CA_BUNDLE"] = _original_ca_bundle


def read(data: bytes | str) -> FulcioConfig:
    """Parse, validate and prepare a configuration document."""
    try:
        cfg = parse_config(data)
    except ConfigError as exc:
        raise ConfigError(f"parse: {exc}") from exc

    try:
        validate_config(cfg)
    except ConfigError as exc:
        raise ConfigError(f"validate: {exc}") from exc

    if cfg.get_issuer(_KUBERNETES_ISSUER) is not None:
        _trust_cluster_ca()
    else:
        _restore_ca_bundle()

    cfg.prepare()
    return cfg


def load(config_path: str | os.PathLike[str]) -> FulcioConfig:
    """Load the configuration file, or the defaults when the file does not exist."""
    path = Path(config_path)
    if not path.exists():
        logger.info("No config at %s, using defaults: %s", path, DEFAULT_CONFIG)
        cfg = FulcioConfig(
            oidc_issuers=dict(DEFAULT_CONFIG.oidc_issuers),
            meta_issuers=dict(DEFAULT_CONFIG.meta_issuers),
        )
        cfg.prepare()
        return cfg
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"read file: {exc}") from exc
    return read(data)


def _check_uri_subject(subject: _URL, issuer: _URL) -> None:
    if subject.scheme != issuer.scheme:
        raise ConfigError(
            f"subject ({subject.scheme}) and issuer ({issuer.scheme}) URI schemes do not match"
        )
    validate_allowed_domain(subject.hostname, issuer.hostname)


def is_uri_subject_allowed(subject: str, issuer: str) -> None:
    """Raise ConfigError unless the two URLs share a scheme and their top two domain labels."""
    _check_uri_subject(_parse_for_config(subject), _parse_for_config(issuer))


def validate_allowed_domain(subject_hostname: str, issuer_hostname: str) -> None:
    """Raise ConfigError unless the hostnames match or share top- and second-level domains."""
    if subject_hostname == issuer_hostname:
        return
    subject_labels = subject_hostname.split(".")
    issuer_labels = issuer_hostname.split(".")
    if len(subject_labels) < MINIMUM_HOSTNAME_LENGTH:
        raise ConfigError(f"URI hostname too short: {subject_hostname}")
    if len(issuer_labels) < MINIMUM_HOSTNAME_LENGTH:
        raise ConfigError(f"URI hostname too short: {issuer_hostname}")
    if subject_labels[-2:] == issuer_labels[-2:]:
        return
    raise ConfigError(
        "hostname top-level and second-level domains do not match: "
        f"{subject_hostname}, {issuer_hostname}"
    )


def issuer_to_challenge_claim(issuer_type: str) -> str:
    """The token claim that the proof of possession is signed over, or "" if the type is unknown."""
    return _CHALLENGE_CLAIMS.get(issuer_type, "")