"""Load mailbox accounts from environment variables."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from loguru import logger

from onebox.domain.entities.account import DEFAULT_FOLDER, AccountConfig

DEFAULT_IMAP_HOST = "imap.gmail.com"
DEFAULT_IMAP_PORT = 993


def _parse_port(raw: Optional[str], label: str) -> Optional[int]:
    if not raw:
        return DEFAULT_IMAP_PORT
    try:
        port = int(raw)
    except ValueError:
        logger.warning(f"Account {label} has invalid IMAP port {raw!r}, skipping")
        return None
    if not 0 < port < 65536:
        logger.warning(f"Account {label} has out-of-range IMAP port {port}, skipping")
        return None
    return port


def _named_accounts(env: Mapping[str, str], names: str) -> list[AccountConfig]:
    accounts = []
    for name in names.split(","):
        name = name.strip().upper()
        if not name:
            continue
        email = env.get(f"MAIL_{name}_EMAIL")
        password = env.get(f"MAIL_{name}_PASSWORD")
        if not email or not password:
            logger.warning(f"Account {name} missing email or password, skipping")
            continue

        port = _parse_port(env.get(f"MAIL_{name}_IMAP_PORT"), name)
        if port is None:
            continue

        accounts.append(AccountConfig(
            id=name.lower(),
            email=email,
            credential=password,
            host=env.get(f"MAIL_{name}_IMAP_HOST") or DEFAULT_IMAP_HOST,
            port=port,
            folder=env.get(f"MAIL_{name}_FOLDER") or DEFAULT_FOLDER,
        ))
        logger.info(f"Configured account: {name.lower()} ({email})")
    return accounts


def _numbered_accounts(env: Mapping[str, str]) -> list[AccountConfig]:
    accounts = []
    n = 1
    while env.get(f"EMAIL_{n}_ADDRESS"):
        email = env[f"EMAIL_{n}_ADDRESS"]
        password = env.get(f"EMAIL_{n}_PASSWORD")
        label = f"account-{n}"
        port = _parse_port(env.get(f"EMAIL_{n}_IMAP_PORT"), label)

        if not password:
            logger.warning(f"Account {label} ({email}) missing password, skipping")
        elif port is not None:
            accounts.append(AccountConfig(
                id=label,
                email=email,
                credential=password,
                host=env.get(f"EMAIL_{n}_IMAP_HOST") or DEFAULT_IMAP_HOST,
                port=port,
            ))
            logger.info(f"Configured account: {label} ({email})")
        n += 1
    return accounts


def load_accounts_from_env(env: Optional[Mapping[str, str]] = None) -> list[AccountConfig]:
    """
    Load account configurations from environment variables.

    Supports two formats:

    1. Named accounts:
       MAIL_ACCOUNTS=work,personal
       MAIL_WORK_EMAIL=me@example.com
       MAIL_WORK_PASSWORD=xxx
       MAIL_WORK_IMAP_HOST=imap.example.com   # Optional, default imap.gmail.com
       MAIL_WORK_IMAP_PORT=993                # Optional
       MAIL_WORK_FOLDER=INBOX                 # Optional

    2. Numbered accounts (read until the first gap):
       EMAIL_1_ADDRESS=me@gmail.com
       EMAIL_1_PASSWORD=xxx
       EMAIL_1_IMAP_HOST=imap.gmail.com       # Optional
       EMAIL_1_IMAP_PORT=993                  # Optional

    Accounts with missing required fields are skipped, never fatal.
    """
    env = os.environ if env is None else env

    names = env.get("MAIL_ACCOUNTS", "").strip()
    if names:
        return _named_accounts(env, names)
    return _numbered_accounts(env)
