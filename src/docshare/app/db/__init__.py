"""Supabase persistence for document share state."""

from .document_repo import SupabaseDocumentShareRepository
from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from .supabase_client import SupabaseClient

__all__ = [
    "SupabaseAuthError",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseDocumentShareRepository",
    "SupabaseError",
    "SupabaseNotFoundError",
]
