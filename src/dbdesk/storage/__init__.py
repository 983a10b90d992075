"""Saved connection profiles and password encryption."""

from .connections_store import ConnectionsStore
from .crypto import PasswordCipher, load_or_create_key

__all__ = ["ConnectionsStore", "PasswordCipher", "load_or_create_key"]
