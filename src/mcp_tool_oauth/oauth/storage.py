"""Key-value storage backend configuration.

The same AsyncKeyValue backend holds in-process credentials and, when it is
shared (Redis), the pending OAuth flows of every server instance.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from ..logging_config import get_logger

if TYPE_CHECKING:
    from key_value.aio.protocols import AsyncKeyValue

logger = get_logger("oauth.storage")

STORAGE_ENCRYPTION_SALT = "mcp-tool-oauth-storage"


def get_storage_type() -> str:
    """Return the configured storage type ('memory' or 'redis')."""
    return os.getenv("OAUTH_STORAGE_TYPE", "memory").lower()


def create_storage() -> "AsyncKeyValue":
    """Create storage backend based on environment configuration.

    Storage type is determined by OAUTH_STORAGE_TYPE environment variable:
    - 'memory' (default): In-memory storage, lost on restart
    - 'redis': Redis-based storage shared between server instances

    If STORAGE_ENCRYPTION_KEY is set, storage will be wrapped with
    Fernet encryption so stored tokens are encrypted at rest.

    Environment variables:
        OAUTH_STORAGE_TYPE: Storage type ('memory' or 'redis')
        REDIS_URL: Redis connection URL (default: redis://localhost:6379)
        STORAGE_ENCRYPTION_KEY: Fernet key or key material (optional)

    Returns:
        AsyncKeyValue: Configured storage backend

    Raises:
        ValueError: If unknown storage type is specified
    """
    storage_type = get_storage_type()
    encryption_key = os.getenv("STORAGE_ENCRYPTION_KEY")

    logger.info(
        "Creating storage backend: type=%s, encrypted=%s",
        storage_type,
        bool(encryption_key),
    )

    if storage_type == "memory":
        from key_value.aio.stores.memory import MemoryStore

        storage: AsyncKeyValue = MemoryStore()

    elif storage_type == "redis":
        from key_value.aio.stores.redis import RedisStore

        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")
        storage = RedisStore(url=redis_url)
        logger.debug("Created Redis storage backend: url=%s", redis_url)

    else:
        raise ValueError(f"Unknown storage type: {storage_type}")

    if encryption_key:
        from cryptography.fernet import Fernet
        from key_value.aio.wrappers.encryption import FernetEncryptionWrapper

        # A valid Fernet key is used directly, anything else is key material
        try:
            fernet = Fernet(encryption_key.encode())
        except ValueError:
            storage = FernetEncryptionWrapper(
                key_value=storage,
                source_material=encryption_key,
                salt=STORAGE_ENCRYPTION_SALT,
            )
        else:
            storage = FernetEncryptionWrapper(key_value=storage, fernet=fernet)
        logger.debug("Applied Fernet encryption wrapper to storage")

    return storage
