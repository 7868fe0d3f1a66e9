"""HMAC-SHA256 request signing for the skill catalog.

Requests are signed with a canonical-request scheme:

1. Build a canonical request from the method, path, query, a minimal header
   set and the SHA-256 of the body.
2. Hash it into a string-to-sign scoped by date, region and service.
3. Sign with a key derived from the secret key through the same scope.

The timestamp is part of the signature, so headers expire. Regenerate them
for every request instead of reusing old ones.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

ALGORITHM = "HMAC-SHA256"
DEFAULT_REGION = "cn-beijing"
DEFAULT_SERVICE = "air"

# Header names excluded from the signed header set
UNSIGNABLE_HEADERS = frozenset({"authorization", "content-length", "user-agent", "expect"})


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _canonical_query(query: Optional[dict[str, str]]) -> str:
    if not query:
        return ""
    parts = []
    for key in sorted(query):
        parts.append(f"{quote(key, safe='-_.~')}={quote(str(query[key]), safe='-_.~')}")
    return "&".join(parts)


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the signing key chained through date, region and service."""
    k_date = _hmac(secret_key.encode("utf-8"), date)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, "request")


@dataclass
class Signer:
    """Builds authenticated headers from an access key / secret key pair.

    Attributes:
        access_key: Access key id, sent in clear in the credential
        secret_key: Secret key, only used to derive the signing key
        region: Region identifier for the credential scope
        service: Service name for the credential scope
    """

    access_key: str
    secret_key: str
    region: str = DEFAULT_REGION
    service: str = DEFAULT_SERVICE

    def canonical_request(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        body_hash: str,
        query: Optional[dict[str, str]] = None,
    ) -> tuple[str, str]:
        """Build the canonical request.

        Returns:
            Tuple of (canonical_request, signed_headers)
        """
        signable = {
            name.lower(): " ".join(str(value).split())
            for name, value in headers.items()
            if name.lower() not in UNSIGNABLE_HEADERS
        }
        names = sorted(signable)
        canonical_headers = "".join(f"{name}:{signable[name]}\n" for name in names)
        signed_headers = ";".join(names)

        canonical = "\n".join([
            method.upper(),
            path or "/",
            _canonical_query(query),
            canonical_headers,
            signed_headers,
            body_hash,
        ])
        return canonical, signed_headers

    def sign(
        self,
        method: str,
        path: str,
        body: str | bytes = b"",
        query: Optional[dict[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, str]:
        """Produce request headers carrying the signature.

        Args:
            method: HTTP method
            path: Request path, e.g. "/api/v1/skills/list"
            body: Request body exactly as it will be sent
            query: Optional query parameters
            now: Signing time (defaults to the current UTC time)

        Returns:
            Header mapping including Authorization, X-Date and X-Content-Sha256
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        x_date = now.strftime("%Y%m%dT%H%M%SZ")
        short_date = x_date[:8]
        body_hash = _sha256_hex(body)

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Date": x_date,
            "X-Content-Sha256": body_hash,
        }

        canonical, signed_headers = self.canonical_request(
            method, path, headers, body_hash, query
        )
        scope = f"{short_date}/{self.region}/{self.service}/request"
        string_to_sign = "\n".join([
            ALGORITHM,
            x_date,
            scope,
            _sha256_hex(canonical.encode("utf-8")),
        ])

        key = derive_signing_key(self.secret_key, short_date, self.region, self.service)
        signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        headers["Authorization"] = (
            f"{ALGORITHM} Credential={self.access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return headers


def sign_request(
    access_key: str,
    secret_key: str,
    method: str,
    path: str,
    body: str | bytes = b"",
    region: str = DEFAULT_REGION,
    service: str = DEFAULT_SERVICE,
    now: Optional[datetime] = None,
) -> dict[str, str]:
    """Sign a single request. Functional form of Signer.sign."""
    return Signer(access_key, secret_key, region, service).sign(method, path, body, now=now)
