import json

import pytest

from fulcio.identity.kubernetes import KubernetesPrincipal, principal_from_id_token
from fulcio.oauthflow import IDToken

_CLAIMS = {
    "aud": ["sigstore"],
    "iss": "https://iss.example.com",
    "kubernetes.io": {
        "namespace": "foo",
        "pod": {"name": "bar", "uid": "2ff0bae1-6b8a-445b-ae03-1f8d2a08d031"},
        "serviceaccount": {"name": "baz", "uid": "5cb6264f-e283-4365-9a1f-d5a15090527e"},
    },
    "sub": "system:serviceaccount:foo:baz",
}


def _token(claims: dict) -> IDToken:
    return IDToken(
        issuer=claims["iss"],
        subject=claims["sub"],
        raw_claims=json.dumps(claims).encode(),
    )


def test_valid_token():
    got = principal_from_id_token(_token(_CLAIMS))
    assert got == KubernetesPrincipal(
        issuer="https://iss.example.com",
        subject="system:serviceaccount:foo:baz",
        uri="https://kubernetes.io/namespaces/foo/serviceaccounts/baz",
    )


def test_name_is_subject():
    got = principal_from_id_token(_token(_CLAIMS))
    assert got.name() == "system:serviceaccount:foo:baz"


def test_missing_kubernetes_claims_leave_empty_parts():
    claims = {"iss": "https://iss.example.com", "sub": "system:serviceaccount:foo:baz"}
    got = principal_from_id_token(_token(claims))
    assert got.uri == "https://kubernetes.io/namespaces//serviceaccounts/"


def test_wrongly_typed_namespace_rejected():
    claims = dict(_CLAIMS, **{"kubernetes.io": {"namespace": 7}})
    with pytest.raises(ValueError, match="namespace"):
        principal_from_id_token(_token(claims))


def test_malformed_claims_rejected():
    token = IDToken(issuer="https://iss.example.com", subject="s", raw_claims=b"{")
    with pytest.raises(ValueError, match="unexpected end of JSON input"):
        principal_from_id_token(token)