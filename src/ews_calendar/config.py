"""YAML configuration loading for EWS mailboxes."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .protocol import DEFAULT_SERVER_VERSION
from .timecodec import load_timezone

logger = logging.getLogger("ews-calendar")

CONFIG_PATH = os.environ.get("EWS_CALENDAR_CONFIG", "/config/ews_calendar.yaml")

VALID_MODES = {"direct", "impersonation"}

_METADATA_KEYS = ("name", "label", "mode", "ews_url", "email", "timezone", "server_version")


@dataclass
class MailboxAccount:
    """A single mailbox configuration."""

    name: str
    label: str
    mode: str  # direct, impersonation
    ews_url: str
    email: str = ""  # target mailbox; required for impersonation
    timezone: str | None = None
    server_version: str = DEFAULT_SERVER_VERSION
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def impersonated(self) -> bool:
        return self.mode == "impersonation"


def load_config() -> dict[str, MailboxAccount]:
    """Load and validate the mailbox configuration file.

    Returns dict of name -> MailboxAccount.
    """
    path = CONFIG_PATH
    if not os.path.isfile(path):
        logger.warning("Config file not found: %s", path)
        return {}

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not raw or "mailboxes" not in raw:
        logger.warning("No 'mailboxes' key in config file")
        return {}

    accounts: dict[str, MailboxAccount] = {}
    seen_names: set[str] = set()

    for entry in raw["mailboxes"]:
        name = str(entry.get("name", "")).strip()
        if not name:
            raise ValueError("Mailbox missing 'name' field")
        if name in seen_names:
            raise ValueError(f"Duplicate mailbox name: '{name}'")
        seen_names.add(name)

        mode = str(entry.get("mode", "direct")).strip().lower()
        if mode not in VALID_MODES:
            raise ValueError(f"Mailbox '{name}': unknown mode '{mode}'. Must be one of: {VALID_MODES}")

        ews_url = entry.get("ews_url", "")
        if not ews_url:
            raise ValueError(f"Mailbox '{name}': 'ews_url' is required")

        timezone = entry.get("timezone")
        if timezone:
            # Raises InvalidTimezoneError (a ValueError) for unknown zones
            load_timezone(timezone)

        # Everything except metadata fields is mode-specific
        config = {k: v for k, v in entry.items() if k not in _METADATA_KEYS}
        email = entry.get("email", "")

        if mode == "direct":
            if "username_env" not in config or "password_env" not in config:
                raise ValueError(f"Mailbox '{name}' (direct): 'username_env' and 'password_env' are required")
            # Warn if env vars not set
            for env_key in ("username_env", "password_env"):
                env_var = config[env_key]
                if not os.environ.get(env_var):
                    logger.warning("Mailbox '%s': env var '%s' not set", name, env_var)

        elif mode == "impersonation":
            for key in ("aws_region", "organization_id", "role_id"):
                if not config.get(key):
                    raise ValueError(f"Mailbox '{name}' (impersonation): '{key}' is required")
            if not email:
                raise ValueError(f"Mailbox '{name}' (impersonation): 'email' is required")

        accounts[name] = MailboxAccount(
            name=name,
            label=entry.get("label", name),
            mode=mode,
            ews_url=ews_url,
            email=email,
            timezone=timezone,
            server_version=entry.get("server_version", DEFAULT_SERVER_VERSION),
            config=config,
        )

    return accounts
