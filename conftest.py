"""
Root pytest configuration.

Seeds the environment before any test module imports shared.config, so the
settings singleton loads without a .env file and with in-process backends.
"""

import os
import tempfile

_scratch = tempfile.mkdtemp(prefix="reelsmith-tests-")

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test_service_key_1234567890123456789012345678901234567890")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("OPENAI_API_KEY", "sk-test123456789012345678901234567890")
os.environ.setdefault("REPLICATE_API_TOKEN", "r8_test123456789012345678901234567890")
os.environ.setdefault("JOB_STORE_BACKEND", "memory")
os.environ.setdefault("PROGRESS_CHANNEL_BACKEND", "memory")
os.environ.setdefault("ARTIFACT_STORAGE_BACKEND", "local")
os.environ.setdefault("LOG_DIR", os.path.join(_scratch, "logs"))
os.environ.setdefault("MEDIA_DIR", os.path.join(_scratch, "media"))
