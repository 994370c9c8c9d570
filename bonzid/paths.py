from __future__ import annotations

import os
from pathlib import Path


def default_bonzid_dir() -> Path:
    override = os.environ.get("BONZID_HOME")
    if override:
        return Path(override)
    return Path.home() / ".bonzid"


def default_config_path() -> Path:
    return default_bonzid_dir() / "bonzid.toml"


def default_identity_path() -> Path:
    return default_bonzid_dir() / "hub_identity"


def default_ban_file_path() -> Path:
    return default_bonzid_dir() / "bans.toml"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except Exception:
        pass
