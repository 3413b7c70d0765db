"""
Dynamic client registry (RFC 7591). In-memory, append-only for the process lifetime.
Client secrets are bcrypt-hashed; the plaintext is returned once at registration.
"""
import logging
import time
import uuid
from urllib.parse import urlparse

import bcrypt
from pydantic import BaseModel, ConfigDict, field_validator

from mcp_server.token_store import generate_secure_token

logger = logging.getLogger(__name__)

# Set by the registry, never taken from the request body
_ISSUED_FIELDS = {"client_id", "client_secret", "client_id_issued_at", "client_secret_expires_at"}


class ClientMetadata(BaseModel):
    """Client metadata accepted at /register. Unknown fields are kept and echoed back."""

    model_config = ConfigDict(extra="allow")

    redirect_uris: list[str]
    token_endpoint_auth_method: str = "client_secret_post"
    grant_types: list[str] = ["authorization_code", "refresh_token"]
    response_types: list[str] = ["code"]
    client_name: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    scope: str | None = None

    @field_validator("redirect_uris")
    @classmethod
    def _check_redirect_uris(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one redirect_uri is required")
        for uri in value:
            parsed = urlparse(uri)
            if not parsed.scheme or not (parsed.netloc or parsed.path):
                raise ValueError(f"invalid redirect_uri: {uri}")
            if parsed.fragment:
                raise ValueError(f"redirect_uri must not contain a fragment: {uri}")
        return value

    @field_validator("token_endpoint_auth_method")
    @classmethod
    def _check_auth_method(cls, value: str) -> str:
        if value not in ("none", "client_secret_post", "client_secret_basic"):
            raise ValueError(f"unsupported token_endpoint_auth_method: {value}")
        return value


class ClientInformation(ClientMetadata):
    client_id: str
    client_id_issued_at: int
    client_secret: str | None = None
    client_secret_expires_at: int | None = None

    @property
    def is_public(self) -> bool:
        return self.token_endpoint_auth_method == "none"


def hash_secret(secret: str) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


class ClientRegistry:
    def __init__(self):
        self._clients: dict[str, ClientInformation] = {}
        self._secret_hashes: dict[str, str] = {}

    def register_client(self, metadata: ClientMetadata) -> ClientInformation:
        """Store the client and return its information, including the plaintext secret if one was issued."""
        client_id = str(uuid.uuid4())
        client_secret = None
        if metadata.token_endpoint_auth_method != "none":
            client_secret = generate_secure_token()
            self._secret_hashes[client_id] = hash_secret(client_secret)

        stored = ClientInformation(
            **metadata.model_dump(exclude=_ISSUED_FIELDS),
            client_id=client_id,
            client_id_issued_at=int(time.time()),
            client_secret_expires_at=0 if client_secret else None,
        )
        self._clients[client_id] = stored
        logger.info(
            "Registered client %s (%s) redirect_uris=%s",
            client_id, stored.client_name or "unnamed", stored.redirect_uris,
        )
        return stored.model_copy(update={"client_secret": client_secret})

    def get_client(self, client_id: str) -> ClientInformation | None:
        client = self._clients.get(client_id)
        if client is None:
            logger.info("Client %s NOT FOUND", client_id)
        return client

    def verify_client_secret(self, client_id: str, client_secret: str) -> bool:
        """bcrypt check against the stored hash. Blocking; call from a worker thread."""
        hashed = self._secret_hashes.get(client_id)
        if hashed is None:
            return False
        return verify_secret(client_secret, hashed)
