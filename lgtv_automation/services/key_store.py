"""File-backed store for webOS pairing keys, keyed by TV IP address."""

import json
import os
from pathlib import Path

from lgtv_automation.exceptions import KeyStoreException
from lgtv_automation.logging_config import get_logger, log_with_context

logger = get_logger(__name__)


class JsonFileKeyStore:
    """Persist pairing keys as one JSON object readable only by the owner.

    A missing or unreadable file behaves like an empty store.
    """

    def __init__(self, path: Path):
        self.path = path

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            log_with_context(
                logger,
                "warning",
                "Pairing key file unreadable, treating as empty",
                file_path=str(self.path),
                error=str(e),
                event_type="key_store_unreadable",
            )
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, keys: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(keys, indent=2), encoding="utf-8")
            os.chmod(self.path, 0o600)
        except OSError as e:
            raise KeyStoreException(
                f"Failed to write pairing keys: {e}",
                details={"file_path": str(self.path)},
            ) from e

    def save_key(self, address: str, key: str) -> None:
        """Store a pairing key, replacing any previous key for the address."""
        keys = self._read()
        keys[address] = key
        self._write(keys)
        log_with_context(logger, "debug", "Saved pairing key", tv_ip=address, event_type="key_saved")

    def load_key(self, address: str) -> str | None:
        return self._read().get(address)

    def delete_key(self, address: str) -> None:
        keys = self._read()
        if keys.pop(address, None) is not None:
            self._write(keys)
            log_with_context(logger, "debug", "Deleted pairing key", tv_ip=address, event_type="key_deleted")
