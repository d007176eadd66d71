"""Principals for Kubernetes service account tokens."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fulcio.identity.base import Principal
from fulcio.oauthflow import IDToken

_KUBERNETES_CLAIM = "kubernetes.io"


@dataclass(frozen=True)
class KubernetesPrincipal(Principal):
    """A Kubernetes service account, named by the token's subject."""

    subject: str
    issuer: str
    uri: str

    def name(self) -> str:
        return self.subject


def _object(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"cannot decode claim '{where}' as an object")
    return value


def _string(container: dict[str, Any], key: str, where: str) -> str:
    value = container.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"cannot decode claim '{where}.{key}' as a string")
    return value


def _service_account_uri(token: IDToken) -> str:
    claims = _object(token.claims(), "claims")
    kubernetes = _object(claims.get(_KUBERNETES_CLAIM), _KUBERNETES_CLAIM)
    namespace = _string(kubernetes, "namespace", _KUBERNETES_CLAIM)
    for section in ("pod", "serviceaccount"):
        where = f"{_KUBERNETES_CLAIM}.{section}"
        part = _object(kubernetes.get(section), where)
        _string(part, "name", where)
        _string(part, "uid", where)
    account = _object(kubernetes.get("serviceaccount"), f"{_KUBERNETES_CLAIM}.serviceaccount")
    account_name = _string(account, "name", f"{_KUBERNETES_CLAIM}.serviceaccount")
    return f"https://kubernetes.io/namespaces/{namespace}/serviceaccounts/{account_name}"


def principal_from_id_token(token: IDToken) -> KubernetesPrincipal:
    """Build a principal whose URI names the token's namespace and service account."""
    return KubernetesPrincipal(
        subject=token.subject,
        issuer=token.issuer,
        uri=_service_account_uri(token),
    )