"""Clients for the Benzy supplier APIs."""

from .client import SupplierClient, clean_token
from .credentials import CredentialCache, Credentials

__all__ = [
    "CredentialCache",
    "Credentials",
    "SupplierClient",
    "clean_token",
]
