"""
Kite Connect credentials for the live quote feed.

secrets/kite.env         KITE_API_KEY=...
secrets/kite_tokens.env  KITE_ACCESS_TOKEN=...  (KITE_TOKEN_API_KEY=... optional)

KITE_API_KEY / KITE_ACCESS_TOKEN environment variables fill in whatever the
files leave out. The paper engine only reads quotes; it never logs in.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from kiteconnect import KiteConnect, exceptions as kite_exceptions

BASE_DIR = Path(__file__).resolve().parents[1]
SECRETS_DIR = BASE_DIR / "secrets"
API_FILE_NAME = "kite.env"
TOKEN_FILE_NAME = "kite_tokens.env"

logger = logging.getLogger(__name__)


class KiteCredentialsError(RuntimeError):
    """Raised when the API key or access token is missing or mismatched."""


def parse_env_file(path: Path) -> Dict[str, str]:
    """KEY=VALUE lines; blanks, comments and surrounding quotes are ignored."""
    if not path.is_file():
        return {}
    values: Dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep or key.startswith("#"):
            continue
        values[key.strip()] = value.strip().strip("'\"")
    return values


@dataclass(frozen=True)
class KiteCredentials:
    api_key: str
    access_token: str

    @classmethod
    def load(
        cls,
        secrets_dir: Optional[Path | str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "KiteCredentials":
        base = Path(secrets_dir) if secrets_dir else SECRETS_DIR
        env = os.environ if environ is None else environ
        api_file = parse_env_file(base / API_FILE_NAME)
        token_file = parse_env_file(base / TOKEN_FILE_NAME)

        api_key = api_file.get("KITE_API_KEY") or env.get("KITE_API_KEY")
        access_token = token_file.get("KITE_ACCESS_TOKEN") or env.get("KITE_ACCESS_TOKEN")
        if not api_key:
            raise KiteCredentialsError(
                f"Kite API key not found in {base / API_FILE_NAME} or $KITE_API_KEY"
            )
        if not access_token:
            raise KiteCredentialsError(
                f"Kite access token not found in {base / TOKEN_FILE_NAME} or $KITE_ACCESS_TOKEN"
            )

        minted_for = token_file.get("KITE_TOKEN_API_KEY")
        if minted_for and minted_for != api_key:
            raise KiteCredentialsError(
                f"Access token was issued for API key {minted_for}, not {api_key}; refresh the token"
            )
        return cls(api_key=api_key, access_token=access_token)


def make_kite_client(secrets_dir: Optional[Path | str] = None, timeout: int = 7) -> KiteConnect:
    creds = KiteCredentials.load(secrets_dir)
    kite = KiteConnect(api_key=creds.api_key, timeout=timeout)
    kite.set_access_token(creds.access_token)
    return kite


def token_is_valid(kite: KiteConnect) -> bool:
    """Cheap profile() probe; any failure counts as invalid."""
    try:
        profile = kite.profile()
    except kite_exceptions.TokenException:
        return False
    except Exception as exc:  # noqa: BLE001
        logger.debug("Kite profile probe failed: %s", exc)
        return False
    logger.info("Kite token OK for user %s", (profile or {}).get("user_id", "?"))
    return True
