"""Viking Skill - a local, versioned cache of remote skill bundles."""

__version__ = "0.1.0"

from vikingskill.errors import (
    VikingSkillError,
    TransportError,
    ValidationError,
    FilesystemError,
    NotFoundError,
)
from vikingskill.signer import (
    Signer,
    sign_request,
)
from vikingskill.catalog import (
    CatalogClient,
    CatalogResult,
    SkillDescriptor,
    SkillDetail,
)
from vikingskill.cache import (
    CachedVersion,
    VersionCache,
    PRIMARY_DOCUMENT,
)
from vikingskill.registry import (
    EntryState,
    LoadResult,
    RegistryEntry,
    SkillRegistry,
    SyncReport,
)
from vikingskill.config import (
    ConfigError,
    VikingConfig,
    load_config,
    validate_config,
)

__all__ = [
    "__version__",
    # Errors
    "VikingSkillError",
    "TransportError",
    "ValidationError",
    "FilesystemError",
    "NotFoundError",
    # Signing
    "Signer",
    "sign_request",
    # Catalog
    "CatalogClient",
    "CatalogResult",
    "SkillDescriptor",
    "SkillDetail",
    # Cache
    "CachedVersion",
    "VersionCache",
    "PRIMARY_DOCUMENT",
    # Registry
    "EntryState",
    "LoadResult",
    "RegistryEntry",
    "SkillRegistry",
    "SyncReport",
    # Config
    "ConfigError",
    "VikingConfig",
    "load_config",
    "validate_config",
]
