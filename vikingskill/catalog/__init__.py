"""Remote skill catalog: signed client and response schemas."""

from vikingskill.catalog.client import (
    CatalogClient,
    CatalogResult,
    get_skill_detail,
    list_skills,
    LIST_PAGE_SIZE,
    LIST_PATH,
    RETRIEVE_PATH,
    DEFAULT_RETRIEVE_LEVEL,
)
from vikingskill.catalog.models import (
    FileInfo,
    PermissionConfig,
    SkillBasicInfo,
    SkillDescriptor,
    SkillDetail,
    SkillListResponse,
)

__all__ = [
    "CatalogClient",
    "CatalogResult",
    "get_skill_detail",
    "list_skills",
    "LIST_PAGE_SIZE",
    "LIST_PATH",
    "RETRIEVE_PATH",
    "DEFAULT_RETRIEVE_LEVEL",
    "FileInfo",
    "PermissionConfig",
    "SkillBasicInfo",
    "SkillDescriptor",
    "SkillDetail",
    "SkillListResponse",
]
