# fulcio

Building blocks for a certificate authority that issues code-signing
certificates to holders of OpenID Connect ID tokens: the issuer
configuration, ID token handling, SPIFFE ID parsing and identity principals.

## What is included

- **`fulcio.config`** – the JSON issuer configuration.
  - `parse_config(data)` decodes a document with `OIDCIssuers` and
    `MetaIssuers` sections (keys are matched case-insensitively) into a
    `FulcioConfig` of `OIDCIssuer` entries.
  - `validate_config(conf)` raises `ConfigError` for unacceptable settings:
    issuer claims on non-email issuers, SPIFFE issuers without a valid trust
    domain, URI and username issuers whose subject domain does not fit the
    issuer URL, SPIFFE meta issuers, and unknown issuer types.
  - `read(data)` parses, validates and then prepares the configuration,
    which discovers every fixed issuer over the network. `load(path)` reads a
    file, or falls back to `DEFAULT_CONFIG` when the file does not exist.
    When the configuration covers `https://kubernetes.default.svc`, `read`
    adds the cluster CA at `K8S_CA_PATH` to the certificates trusted by
    outgoing requests.
  - `FulcioConfig.get_issuer(url)` returns the issuer for a token's issuer
    URL, matching meta issuer templates where `*` stands for one hostname
    label or path part (`meta_regex`); it returns `None` when nothing
    applies. `FulcioConfig.get_verifier(url)` returns a token verifier,
    keeping up to 100 meta issuer verifiers in a least-recently-used cache.
    `FulcioConfig.to_issuers()` lists `IssuerInfo` descriptions.
  - `use_config(cfg)` is a context manager that makes a configuration
    current; `from_context()` returns it.
  - `validate_allowed_domain`, `is_uri_subject_allowed` and
    `issuer_to_challenge_claim` are available on their own. `IssuerType`
    lists the supported issuer types.
- **`fulcio.oauthflow`** – `IDToken` with its decoded `claims()`,
  `email_from_id_token`, `issuer_from_id_token` (optionally through a JSONPath
  such as `$.federated_claims.connector_id`, evaluated by `json_path_get`),
  provider discovery with `new_provider`, and `IDTokenVerifier.verify`, which
  checks a raw token's signature, issuer, audience and expiry.
- **`fulcio.spiffeid`** – `id_from_string`, `trust_domain_from_string`,
  `SpiffeID`, `TrustDomain` and `SpiffeIDError`.
- **`fulcio.identity.base`** – the abstract `Principal` and `Issuer`,
  `IssuerPool`, which hands a raw token to the first issuer that matches its
  issuer URL, and `extract_issuer_url`, which reads the unverified `iss` claim.
- **`fulcio.identity.kubernetes`** – `principal_from_id_token(token)` builds a
  `KubernetesPrincipal` whose `uri` names the token's namespace and service
  account.
- **`fulcio.identity.uri`** – `principal_from_id_token(token, config=None)`
  builds a `URIPrincipal` after checking that the subject's scheme and
  hostname match the issuer's configured subject domain.
- **`fulcio.log`** – `configure_logger("prod")` writes JSON lines to stderr,
  any other value coloured text to stdout (the `"dev"` setup is applied on
  import); `context_logger(metadata)` tags messages with the request ID when
  the metadata carries exactly one `x-request-id`; `create_cli_logger()`
  writes plain messages to stderr.

## Installation

```
pip install .
```

## Example

```python
import base64
import json

from fulcio import config
from fulcio.identity.base import extract_issuer_url
from fulcio.oauthflow import IDToken
from fulcio.identity import uri

cfg = config.parse_config(b"""
{
  "OIDCIssuers": {
    "https://issuer.example.com": {
      "IssuerURL": "https://issuer.example.com",
      "ClientID": "sigstore",
      "Type": "uri",
      "SubjectDomain": "https://users.example.com"
    }
  },
  "MetaIssuers": {
    "https://container.googleapis.com/v1/projects/*/locations/*/clusters/*": {
      "ClientID": "sigstore",
      "Type": "kubernetes"
    }
  }
}
""")
config.validate_config(cfg)

meta = cfg.get_issuer(
    "https://container.googleapis.com/v1/projects/demo/locations/us-west1-b/clusters/demo"
)
print(meta.type, meta.client_id)          # kubernetes sigstore

payload = base64.urlsafe_b64encode(
    json.dumps({"iss": "https://issuer.example.com"}).encode()
).rstrip(b"=").decode()
print(extract_issuer_url(f"header.{payload}.signature"))

token = IDToken(issuer="https://issuer.example.com",
                subject="https://users.example.com/alice")
print(uri.principal_from_id_token(token, cfg).name())
```

`parse_config` and `validate_config` work offline; `read`, `load`,
`FulcioConfig.prepare` and `FulcioConfig.get_verifier` contact the issuers'
discovery endpoints.

## What this package does not do

- It issues no certificates and runs no server; principals only carry the
  identity taken from a token and do not write anything into certificates.
- It has principals for URI and Kubernetes issuers only. Configurations may
  name email, GitHub workflow, SPIFFE and username issuers, but the package
  has no principals for their tokens.
- It does not parse public keys or verify the signed proof of possession.
- It has no certificate transparency log support.

## Running the tests

```
pip install ".[test]"
pytest
```