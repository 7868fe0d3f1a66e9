"""Strict schemas for skill catalog responses.

Every field listed here must be present with the right type or the whole
response is rejected. Unknown extra fields are ignored.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

Number = Union[int, float]


class _CatalogModel(BaseModel):
    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")


class PermissionConfig(_CatalogModel):
    scope: str
    allowed_customs: Any = None


class SkillDescriptor(_CatalogModel):
    """A skill entry from the remote catalog."""

    skill_id: str
    display_title: str
    create_time: Number
    latest_version: str
    source: str
    permission_config: PermissionConfig
    update_time: Number
    total_retrievals: Number


class SkillListResponse(_CatalogModel):
    count: Number
    total_num: Number
    result_list: list[SkillDescriptor]


class SkillBasicInfo(_CatalogModel):
    skill_id: str
    version: str
    name: str
    description: str
    create_time: Number
    total_retrievals: Optional[Number]
    level1_retrievals: Any = None
    level2_retrievals: Any = None
    level3_retrievals: Any = None


class FileInfo(_CatalogModel):
    root_path: str
    skill_files: Optional[list[str]]
    download_url: str


class SkillDetail(_CatalogModel):
    """Detail record for one skill version, including its bundle URL."""

    skill_basic: SkillBasicInfo
    skill_content: str
    file_info: FileInfo
