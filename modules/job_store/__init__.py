"""
Job Store module.

CRUD and list-by-owner for job records and their scenes.
"""

from shared.config import settings

from modules.job_store.base import JobStore, apply_partial
from modules.job_store.memory import InMemoryJobStore
from modules.job_store.supabase_store import SupabaseJobStore


def create_job_store(backend: str = None) -> JobStore:
    """Build the job store selected by JOB_STORE_BACKEND."""
    backend = backend or settings.job_store_backend
    if backend == "memory":
        return InMemoryJobStore()
    return SupabaseJobStore()


__all__ = ["JobStore", "InMemoryJobStore", "SupabaseJobStore", "apply_partial", "create_job_store"]
