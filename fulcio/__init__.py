"""OIDC issuer configuration, ID token handling and identity principals for a code-signing CA."""

__version__ = "0.1.0"