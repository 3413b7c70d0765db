"""
Local file cache for upstream Quire tokens (access_token, refresh_token, expires_at).
Written after a successful refresh so other local tools see the rotated tokens.
File mode 0600, directory 0700.
"""
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class StoredTokens:
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None

    def to_json(self) -> dict:
        data = {"accessToken": self.access_token}
        if self.refresh_token:
            data["refreshToken"] = self.refresh_token
        if self.expires_at is not None:
            data["expiresAt"] = self.expires_at.isoformat()
        return data


def tokens_from_expires_in(access_token: str, refresh_token: str | None, expires_in: int | None) -> StoredTokens:
    expires_at = None
    if expires_in is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return StoredTokens(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)


class TokenCacheFile:
    def __init__(self, path: Path):
        self.path = Path(path)

    def save_tokens(self, tokens: StoredTokens) -> None:
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        # Create with 0600 up front so the secret is never world-readable
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(tokens.to_json(), f, indent=2)
        os.chmod(self.path, 0o600)
        logger.debug("Saved Quire tokens to %s", self.path)

