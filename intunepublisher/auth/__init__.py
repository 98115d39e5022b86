"""Credential handling for the Microsoft Graph connection."""

from .credential_manager import CredentialManager

__all__ = ["CredentialManager"]
