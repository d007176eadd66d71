import base64
import json

import pytest

from fulcio.identity.base import Issuer, IssuerPool, Principal, extract_issuer_url


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _token(payload) -> str:
    header = _b64(json.dumps({"alg": "none"}).encode())
    return f"{header}.{_b64(json.dumps(payload).encode())}.signature"


class _NamedPrincipal(Principal):
    def __init__(self, label):
        self.label = label

    def name(self):
        return self.label


class _PrefixIssuer(Issuer):
    def __init__(self, prefix, label):
        self.prefix = prefix
        self.label = label
        self.seen = []

    def match(self, url):
        return url.startswith(self.prefix)

    def authenticate(self, token):
        self.seen.append(token)
        return _NamedPrincipal(self.label)


def test_extract_issuer_url():
    token = _token({"iss": "https://issuer.example.com", "sub": "someone"})
    assert extract_issuer_url(token) == "https://issuer.example.com"


def test_extract_issuer_url_missing_claim_is_empty():
    assert extract_issuer_url(_token({"sub": "someone"})) == ""


def test_extract_issuer_url_wrong_part_count():
    with pytest.raises(ValueError, match="expected 3 parts got 2"):
        extract_issuer_url("a.b")


def test_extract_issuer_url_bad_base64():
    with pytest.raises(ValueError, match="malformed jwt payload"):
        extract_issuer_url("a.!!!!.c")


def test_extract_issuer_url_padding_rejected():
    payload = base64.urlsafe_b64encode(b'{"iss":"x"}').decode()
    assert payload.endswith("=")
    with pytest.raises(ValueError, match="malformed jwt payload"):
        extract_issuer_url(f"a.{payload}.c")


def test_extract_issuer_url_bad_json():
    with pytest.raises(ValueError, match="failed to unmarshal claims"):
        extract_issuer_url(f"a.{_b64(b'not json')}.c")


def test_extract_issuer_url_non_string_issuer():
    with pytest.raises(ValueError, match="failed to unmarshal claims"):
        extract_issuer_url(_token({"iss": 7}))


def test_pool_uses_first_matching_issuer():
    first = _PrefixIssuer("https://issuer.example.com", "first")
    second = _PrefixIssuer("https://", "second")
    pool = IssuerPool([first, second])
    token = _token({"iss": "https://issuer.example.com"})
    principal = pool.authenticate(token)
    assert principal.name() == "first"
    assert first.seen == [token]
    assert second.seen == []


def test_pool_falls_through_to_later_issuer():
    first = _PrefixIssuer("https://other.example.com", "first")
    second = _PrefixIssuer("https://issuer.example.com", "second")
    pool = IssuerPool([first, second])
    assert pool.authenticate(_token({"iss": "https://issuer.example.com"})).name() == "second"


def test_pool_without_match_raises():
    pool = IssuerPool([_PrefixIssuer("https://other.example.com", "x")])
    with pytest.raises(ValueError, match="https://issuer.example.com"):
        pool.authenticate(_token({"iss": "https://issuer.example.com"}))


def test_pool_rejects_malformed_token_before_matching():
    issuer = _PrefixIssuer("", "any")
    pool = IssuerPool([issuer])
    with pytest.raises(ValueError, match="malformed jwt"):
        pool.authenticate("not-a-jwt")
    assert issuer.seen == []


def test_principal_is_abstract():
    with pytest.raises(TypeError):
        Principal()