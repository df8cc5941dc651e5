"""
Configuration loader.

Reads the optional JSON config document, validates it against the bundled
JSON Schema and applies environment overrides. Failures are treated as
warnings so the runtime can continue booting with best-effort defaults.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

from shared.config.system import ChatDirectorConfig, load_system_config
from shared.logging.logger import get_logger

log = get_logger("core.config_loader")

ROOT = Path(__file__).resolve().parents[1]


class ConfigLoader:
    """
    Loads and validates the runtime configuration.

    Files:
      - shared/config/system.json (optional; defaults apply when missing)

    Validation:
      - schemas/system.schema.json, warnings only

    Environment overrides (applied last):
      - HOST, PORT
      - YOUTUBE_LIVE_ID
      - CHAT_MAX_REGULAR_MESSAGES
      - CHAT_MOCK_ENABLED
    """

    CONFIG_PATH = ROOT / "shared" / "config" / "system.json"
    SCHEMA_PATH = ROOT / "schemas" / "system.schema.json"

    def __init__(
        self,
        config_path: Optional[Path] = None,
        schema_path: Optional[Path] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self._config_path = Path(config_path) if config_path else self.CONFIG_PATH
        self._schema_path = Path(schema_path) if schema_path else self.SCHEMA_PATH
        self._environ = environ if environ is not None else os.environ

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_json(self, path: Path, name: str) -> Dict[str, Any]:
        if not path.exists():
            log.info(f"{name} not found at {path}; using defaults")
            return {}

        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log.warning(f"Failed to load {name} ({e}); using defaults")
            return {}

        if not isinstance(data, dict):
            log.warning(f"{name} root is not an object; ignoring")
            return {}
        return data

    def validate(self, payload: Dict[str, Any]) -> list[str]:
        """Return schema validation messages for payload (empty when valid)."""

        if not self._schema_path.exists():
            log.debug(f"Schema not found at {self._schema_path}; skipping")
            return []

        schema = self._load_json(self._schema_path, "system schema")
        if not schema:
            return []

        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))

        messages = []
        for err in errors:
            loc = "/".join(str(p) for p in err.path) or "<root>"
            messages.append(f"{loc}: {err.message}")
        return messages

    def _apply_env(self, config: ChatDirectorConfig) -> ChatDirectorConfig:
        env = self._environ

        host = env.get("HOST")
        if host:
            config.api.host = host.strip()

        port = env.get("PORT")
        if port:
            try:
                config.api.port = int(port)
            except ValueError:
                log.warning(f"Ignoring invalid PORT value: {port!r}")

        live_id = env.get("YOUTUBE_LIVE_ID")
        if live_id and live_id.strip():
            config.ingestion.live_id = live_id.strip()

        max_regular = env.get("CHAT_MAX_REGULAR_MESSAGES")
        if max_regular:
            try:
                value = int(max_regular)
                if value < 1:
                    raise ValueError(max_regular)
                config.buffer.max_regular_messages = value
            except ValueError:
                log.warning(
                    f"Ignoring invalid CHAT_MAX_REGULAR_MESSAGES value: {max_regular!r}"
                )

        mock = env.get("CHAT_MOCK_ENABLED")
        if mock:
            config.ingestion.mock_enabled = mock.strip().lower() not in {
                "0",
                "false",
                "no",
                "off",
            }

        return config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self) -> ChatDirectorConfig:
        data = self._load_json(self._config_path, "system.json")

        if data:
            for message in self.validate(data):
                log.warning(f"system.json validation warning at {message}")

        config = load_system_config(data)
        return self._apply_env(config)


def load_config(**kwargs: Any) -> ChatDirectorConfig:
    return ConfigLoader(**kwargs).load()


__all__ = ["ConfigLoader", "load_config"]
