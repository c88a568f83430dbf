"""Supabase client error hierarchy.

Kept free of httpx types so repositories never leak response objects (or
the service-role key) through exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass


# Not frozen: contextlib assigns __traceback__ while the error propagates.
@dataclass(eq=False)
class SupabaseError(Exception):
    """A failed PostgREST request."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None

    def __str__(self) -> str:
        text = f"SupabaseError(status={self.status_code}) {self.message}"
        if self.code:
            text += f" code={self.code}"
        return text


class SupabaseAuthError(SupabaseError):
    """401/403: bad service key or row-level security refusal."""


class SupabaseNotFoundError(SupabaseError):
    """404: missing table, view or RPC function."""


class SupabaseConflictError(SupabaseError):
    """409: unique violation (e.g. duplicate document id)."""
