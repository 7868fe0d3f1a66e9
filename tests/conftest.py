"""Shared fixtures: an in-memory catalog and bundle host behind httpx.MockTransport."""

import io
import json
import zipfile

import httpx
import pytest

from vikingskill.cache import VersionCache
from vikingskill.catalog.client import LIST_PATH, RETRIEVE_PATH, CatalogClient
from vikingskill.config import VikingConfig
from vikingskill.registry import SkillRegistry

API_URL = "https://catalog.test"
CDN_HOST = "cdn.test"


def make_bundle(files: dict) -> bytes:
    """Build a zip archive from a {name: text_or_bytes} mapping."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


def patch_zip_headers(data: bytes, compress_type: int = None, flag_bits: int = 0) -> bytes:
    """Rewrite the flag and method fields of every local and central header."""
    buf = bytearray(data)
    for signature, flags_at in ((b"PK\x03\x04", 6), (b"PK\x01\x02", 8)):
        start = buf.find(signature)
        while start != -1:
            offset = start + flags_at
            flags = int.from_bytes(buf[offset:offset + 2], "little") | flag_bits
            buf[offset:offset + 2] = flags.to_bytes(2, "little")
            if compress_type is not None:
                buf[offset + 2:offset + 4] = compress_type.to_bytes(2, "little")
            start = buf.find(signature, start + 4)
    return bytes(buf)


def descriptor(skill_id: str, version: str = "1", title: str = "", **overrides) -> dict:
    """A catalog list entry that satisfies the strict schema."""
    data = {
        "skill_id": skill_id,
        "display_title": title or skill_id.replace("-", " ").title(),
        "create_time": 1700000000000,
        "latest_version": version,
        "source": "viking",
        "permission_config": {"scope": "public", "allowed_customs": None},
        "update_time": 1700000500000,
        "total_retrievals": 0,
    }
    data.update(overrides)
    return data


def detail(skill_id: str, version: str, download_url: str) -> dict:
    """A retrieve response that satisfies the strict schema."""
    return {
        "skill_basic": {
            "skill_id": skill_id,
            "version": version,
            "name": skill_id,
            "description": f"{skill_id} skill",
            "create_time": 1700000000000,
            "total_retrievals": None,
            "level1_retrievals": None,
            "level2_retrievals": None,
            "level3_retrievals": None,
        },
        "skill_content": f"# {skill_id}",
        "file_info": {
            "root_path": f"/{skill_id}",
            "skill_files": ["SKILL.md"],
            "download_url": download_url,
        },
    }


class FakeCatalog:
    """Serves list, retrieve and bundle downloads, recording every request."""

    def __init__(self):
        self.skills: list[dict] = []
        self.bundles: dict[tuple[str, str], bytes] = {}
        self.requests: list[httpx.Request] = []
        self.fail_list = False
        self.list_override = None
        self.fail_detail: set[str] = set()
        self.fail_download: set[str] = set()
        self.download_urls: dict[str, str] = {}

    def add(self, skill_id: str, version: str = "1", files: dict = None, title: str = "") -> None:
        """Publish a skill version, replacing any previous listing of it."""
        files = files if files is not None else {"SKILL.md": f"# {skill_id} v{version}\n"}
        self.skills = [s for s in self.skills if s["skill_id"] != skill_id]
        self.skills.append(descriptor(skill_id, version, title))
        self.bundles[(skill_id, version)] = make_bundle(files)

    def remove(self, skill_id: str) -> None:
        self.skills = [s for s in self.skills if s["skill_id"] != skill_id]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == CDN_HOST:
            skill_id, filename = path.strip("/").split("/")
            version = filename[: -len(".zip")]
            if skill_id in self.fail_download or (skill_id, version) not in self.bundles:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, content=self.bundles[(skill_id, version)])

        if path == LIST_PATH:
            if self.fail_list:
                return httpx.Response(500, text="internal error")
            if self.list_override is not None:
                return httpx.Response(200, json=self.list_override)
            return httpx.Response(200, json={
                "count": len(self.skills),
                "total_num": len(self.skills),
                "result_list": self.skills,
            })

        if path == RETRIEVE_PATH:
            body = json.loads(request.content)
            skill_id = body["skill_id"]
            skill = next((s for s in self.skills if s["skill_id"] == skill_id), None)
            if skill is None or skill_id in self.fail_detail:
                return httpx.Response(404, text="skill not found")
            version = skill["latest_version"]
            url = self.download_urls.get(skill_id, f"https://{CDN_HOST}/{skill_id}/{version}.zip")
            return httpx.Response(200, json=detail(skill_id, version, url))

        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def downloads(self) -> list[str]:
        return [r.url.path for r in self.requests if r.url.host == CDN_HOST]


@pytest.fixture
def fake_catalog():
    return FakeCatalog()


@pytest.fixture
def config(tmp_path):
    return VikingConfig(
        api_url=API_URL,
        ak="AKTEST",
        sk="SKTEST",
        cache_dir=str(tmp_path / "cache"),
        max_workers=2,
    )


@pytest.fixture
def http_client(fake_catalog):
    client = fake_catalog.client()
    yield client
    client.close()


@pytest.fixture
def catalog_client(config, http_client):
    return CatalogClient(config.api_url, config.ak, config.sk, http_client=http_client)


@pytest.fixture
def version_cache(config, http_client):
    cache = VersionCache(config.cache_path, http_client=http_client)
    cache.ensure_root()
    return cache


@pytest.fixture
def make_registry(config, http_client):
    """Build registries that talk to the fake catalog."""

    def _make(cfg: VikingConfig = None) -> SkillRegistry:
        cfg = cfg or config
        cache = VersionCache(cfg.cache_path, http_client=http_client)
        reg = SkillRegistry(
            cfg,
            catalog=CatalogClient(cfg.api_url, cfg.ak, cfg.sk, http_client=http_client),
            cache=cache,
        )
        assert reg.cache is cache
        return reg

    return _make


@pytest.fixture
def registry(make_registry):
    reg = make_registry()
    yield reg
    reg.close()
