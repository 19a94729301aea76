# copyflow/auth.py
"""
API key credential store.

Tokens look like ``cf_<32 hex>``; only their SHA-256 digest is stored, plus an
8-character prefix for display. A token is shown to the caller exactly once,
when it is created.
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from copyflow.db import Database, utcnow
from copyflow.errors import NotFoundError, ValidationError
from copyflow.models import ApiKey, Tenant
from copyflow.monitoring import get_logger

log = get_logger("auth")

TOKEN_PREFIX = "cf_"
WILDCARD_SCOPE = "*"
BEARER = "bearer"

SCOPE_GENERATE = "content:generate"
SCOPE_BULK = "bulk:process"


@dataclass(frozen=True)
class Credential:
    id: str
    tenant_id: str
    plan: str
    permissions: Tuple[str, ...] = field(default_factory=tuple)
    usage_count: int = 0


def generate_token() -> str:
    return TOKEN_PREFIX + uuid.uuid4().hex


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != BEARER:
        return None
    token = token.strip()
    return token or None


def has_permission(credential: Credential, scope: str) -> bool:
    return scope in credential.permissions or WILDCARD_SCOPE in credential.permissions


def _key_to_dict(k: ApiKey) -> Dict:
    return {
        "id": k.id,
        "name": k.name,
        "key": k.key_prefix + "...",
        "permissions": list(k.permissions or []),
        "usageCount": k.usage_count,
        "lastUsed": k.last_used.isoformat() if k.last_used else None,
        "isActive": k.is_active,
        "createdAt": k.created_at.isoformat() if k.created_at else None,
    }


class CredentialStore:
    def __init__(self, db: Database):
        self.db = db

    # -- tenants ---------------------------------------------------------
    def create_tenant(self, name: str, plan: str = "free",
                      owner_email: Optional[str] = None) -> Tenant:
        with self.db.session() as s:
            tenant = Tenant(name=name, plan=plan, owner_email=owner_email)
            s.add(tenant)
            s.flush()
            return tenant

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        with self.db.session() as s:
            return s.get(Tenant, tenant_id)

    # -- keys ------------------------------------------------------------
    def create_key(self, tenant_id: str, name: str,
                   permissions: List[str]) -> Tuple[ApiKey, str]:
        """Issue a new key. Returns (row, plaintext token); the token is not stored."""
        scopes = [p.strip() for p in permissions if p and p.strip()]
        if not scopes:
            raise ValidationError("At least one permission is required")
        token = generate_token()
        with self.db.session() as s:
            if s.get(Tenant, tenant_id) is None:
                raise NotFoundError("Tenant not found")
            key = ApiKey(
                tenant_id=tenant_id,
                name=name,
                key_hash=hash_token(token),
                key_prefix=token[:8],
                permissions=scopes,
            )
            s.add(key)
            s.flush()
        log.info("API key created", extra={"tenant_id": tenant_id, "api_key_id": key.id})
        return key, token

    def resolve(self, token: Optional[str]) -> Optional[Credential]:
        """
        Look up an active credential by token. Returns None when the token is
        missing, unknown or inactive. Usage accounting is best-effort.
        """
        if not token:
            return None
        with self.db.session() as s:
            row = s.execute(
                select(ApiKey, Tenant.plan)
                .join(Tenant, Tenant.id == ApiKey.tenant_id)
                .where(ApiKey.key_hash == hash_token(token), ApiKey.is_active.is_(True))
            ).first()
        if row is None:
            return None
        key, plan = row

        usage_count = key.usage_count
        try:
            with self.db.session() as s:
                s.execute(
                    update(ApiKey)
                    .where(ApiKey.id == key.id)
                    .values(usage_count=ApiKey.usage_count + 1, last_used=utcnow())
                )
            usage_count += 1
        except SQLAlchemyError:
            log.warning("Failed to record API key usage", extra={"api_key_id": key.id}, exc_info=True)

        return Credential(
            id=key.id,
            tenant_id=key.tenant_id,
            plan=plan,
            permissions=tuple(key.permissions or ()),
            usage_count=usage_count,
        )

    def list_keys(self, tenant_id: str) -> List[Dict]:
        with self.db.session() as s:
            keys = s.scalars(
                select(ApiKey).where(ApiKey.tenant_id == tenant_id)
                .order_by(ApiKey.created_at.desc())
            ).all()
            return [_key_to_dict(k) for k in keys]

    def _owned_key(self, s, key_id: str, tenant_id: str) -> ApiKey:
        key = s.get(ApiKey, key_id)
        if key is None or key.tenant_id != tenant_id:
            raise NotFoundError("API key not found")
        return key

    def deactivate(self, key_id: str, tenant_id: str) -> None:
        with self.db.session() as s:
            self._owned_key(s, key_id, tenant_id).is_active = False
        log.info("API key deactivated", extra={"api_key_id": key_id})

    def delete(self, key_id: str, tenant_id: str) -> None:
        with self.db.session() as s:
            s.delete(self._owned_key(s, key_id, tenant_id))
        log.info("API key deleted", extra={"api_key_id": key_id})
