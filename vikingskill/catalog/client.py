"""Client for the remote skill catalog.

Both catalog operations are signed POST requests with JSON bodies. The
``fetch_*`` methods return a :class:`CatalogResult` carrying either a value
or the error that prevented it. The ``list_skills`` / ``get_skill_detail``
forms degrade to an empty list / ``None`` so a catalog outage never reaches
the host process.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

import httpx
import pydantic

from vikingskill.catalog.models import SkillDescriptor, SkillDetail, SkillListResponse
from vikingskill.errors import TransportError, ValidationError, VikingSkillError
from vikingskill.signer import DEFAULT_REGION, DEFAULT_SERVICE, Signer

logger = logging.getLogger(__name__)

LIST_PATH = "/api/v1/skills/list"
RETRIEVE_PATH = "/api/v1/skills/version/retrieve"

LIST_PAGE_SIZE = 1000
PERMISSION_SCOPE = "public"
DEFAULT_RETRIEVE_LEVEL = 3
DEFAULT_TIMEOUT = 30.0

T = TypeVar("T")


@dataclass
class CatalogResult(Generic[T]):
    """Outcome of a catalog call: a value, or the error that stopped it."""

    value: Optional[T] = None
    error: Optional[VikingSkillError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CatalogClient:
    """Signed client for the list and retrieve catalog operations."""

    def __init__(
        self,
        api_url: str,
        ak: str,
        sk: str,
        region: str = DEFAULT_REGION,
        service: str = DEFAULT_SERVICE,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.signer = Signer(ak, sk, region, service)
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._http.close()

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        """Send a signed POST and return the decoded JSON body.

        Raises:
            TransportError: On network failure, non-2xx status or a body that
                is not JSON
        """
        body = json.dumps(payload)
        # Headers are signed per request; the timestamp makes old ones expire
        headers = self.signer.sign("POST", path, body)
        url = f"{self.api_url}{path}"

        try:
            response = self._http.post(url, content=body.encode("utf-8"), headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"POST {path} failed: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"POST {path} returned {response.status_code}: {response.text[:500]}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"POST {path} returned invalid JSON: {e}") from e

    def fetch_skills(self) -> CatalogResult[list[SkillDescriptor]]:
        """Fetch one page of publicly scoped skills."""
        payload = {
            "offset": 0,
            "limit": LIST_PAGE_SIZE,
            "permission_scope": PERMISSION_SCOPE,
        }
        logger.info("Fetching remote skill list from %s%s", self.api_url, LIST_PATH)

        try:
            data = self._post(LIST_PATH, payload)
            try:
                parsed = SkillListResponse.model_validate(data)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid skill list response: {e}") from e
        except (TransportError, ValidationError) as e:
            return CatalogResult(error=e)

        logger.info("Loaded %d remote skills", len(parsed.result_list))
        return CatalogResult(value=list(parsed.result_list))

    def fetch_skill_detail(
        self,
        skill_id: str,
        retrieve_level: int = DEFAULT_RETRIEVE_LEVEL,
    ) -> CatalogResult[SkillDetail]:
        """Fetch the latest version detail of one skill."""
        payload = {
            "skill_id": skill_id,
            "version": "latest",
            "retrieve_level": retrieve_level,
        }
        logger.info("Fetching skill detail: skill_id=%s level=%d", skill_id, retrieve_level)

        try:
            data = self._post(RETRIEVE_PATH, payload)
            try:
                detail = SkillDetail.model_validate(data)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid skill detail response: {e}") from e
        except (TransportError, ValidationError) as e:
            return CatalogResult(error=e)

        return CatalogResult(value=detail)

    def list_skills(self) -> list[SkillDescriptor]:
        """List remote skills, or an empty list if the catalog call fails."""
        result = self.fetch_skills()
        if not result.ok:
            logger.error("Failed to load remote skills: %s", result.error)
            return []
        return result.value or []

    def get_skill_detail(
        self,
        skill_id: str,
        retrieve_level: int = DEFAULT_RETRIEVE_LEVEL,
    ) -> Optional[SkillDetail]:
        """Get skill detail, or None if the catalog call fails."""
        result = self.fetch_skill_detail(skill_id, retrieve_level)
        if not result.ok:
            logger.error("Failed to load skill detail: skill_id=%s error=%s", skill_id, result.error)
            return None
        return result.value


# Convenience functions


def list_skills(api_url: str, ak: str, sk: str) -> list[SkillDescriptor]:
    """List remote skills with a one-off client."""
    client = CatalogClient(api_url, ak, sk)
    try:
        return client.list_skills()
    finally:
        client.close()


def get_skill_detail(
    api_url: str,
    ak: str,
    sk: str,
    skill_id: str,
    retrieve_level: int = DEFAULT_RETRIEVE_LEVEL,
) -> Optional[SkillDetail]:
    """Get one skill's detail with a one-off client."""
    client = CatalogClient(api_url, ak, sk)
    try:
        return client.get_skill_detail(skill_id, retrieve_level)
    finally:
        client.close()
