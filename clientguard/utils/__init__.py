# clientguard/utils/__init__.py
"""Utility functions and decorators"""
from .security import PasswordHasher, CredentialRecord, verify_credential, verify_legacy_password

__all__ = ['PasswordHasher', 'CredentialRecord', 'verify_credential', 'verify_legacy_password']
