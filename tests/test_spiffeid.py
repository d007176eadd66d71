import pytest

from fulcio.spiffeid import (
    SpiffeID,
    SpiffeIDError,
    TrustDomain,
    id_from_string,
    trust_domain_from_string,
)


def test_trust_domain_from_name():
    assert trust_domain_from_string("example.com").name == "example.com"


def test_trust_domain_from_id():
    td = trust_domain_from_string("spiffe://example.com/workload")
    assert td == TrustDomain("example.com")


@pytest.mark.parametrize("value", ["invalid#domain", "", "Example.com", "spiffe:///path"])
def test_invalid_trust_domains(value):
    with pytest.raises(SpiffeIDError):
        trust_domain_from_string(value)


@pytest.mark.parametrize(
    "value",
    ["spiffe://example.com", "spiffe://example.com/workload/a", "spiffe://td-1.example_x/a.b/c-d"],
)
def test_id_round_trip(value):
    assert str(id_from_string(value)) == value


def test_id_components():
    parsed = id_from_string("spiffe://example.com/workload/a")
    assert parsed.trust_domain.name == "example.com"
    assert parsed.path == "/workload/a"
    assert parsed == SpiffeID(TrustDomain("example.com"), "/workload/a")


def test_trust_domain_id_string():
    td = trust_domain_from_string("example.com")
    assert id_from_string(td.id_string).trust_domain == td


@pytest.mark.parametrize(
    "value, message",
    [
        ("", "cannot be empty"),
        ("http://example.com/x", "scheme"),
        ("spiffe:///x", "trust domain is missing"),
        ("spiffe://example.com/", "trailing slash"),
        ("spiffe://example.com/a//b", "empty segments"),
        ("spiffe://example.com/./a", "dot segments"),
        ("spiffe://example.com/a/..", "dot segments"),
        ("spiffe://Example.com/a", "trust domain characters"),
        ("spiffe://example.com/a$b", "path segment characters"),
    ],
)
def test_invalid_ids(value, message):
    with pytest.raises(SpiffeIDError, match=message):
        id_from_string(value)


def test_path_requires_leading_slash():
    with pytest.raises(SpiffeIDError, match="leading slash"):
        SpiffeID(TrustDomain("example.com"), "workload")


def test_trust_domains_compare_by_name():
    assert trust_domain_from_string("a.example.com") < trust_domain_from_string("b.example.com")
    assert trust_domain_from_string("example.com") != trust_domain_from_string("example.org")