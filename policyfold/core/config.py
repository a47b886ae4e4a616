from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# B2C rejects uploads above ~1 MB; half of it leaves room for the tokens a
# deployment pipeline substitutes back in.
POLICY_UPLOAD_LIMIT_BYTES = 1024000
POLICY_FILL_PADDING = 0.5
DEFAULT_MAX_POLICY_BYTES = int(POLICY_UPLOAD_LIMIT_BYTES * POLICY_FILL_PADDING)

_TRUE = {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    """Read an integer environment variable.

    Security notes:
    - Env vars are treated as trusted configuration; malformed values fall
      back to the default.

    """

    raw = os.environ.get(name, "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUE


@dataclass(frozen=True, slots=True)
class ConversionOptions:
    """Switches for one conversion run.

    max_policy_bytes is the compact UTF-8 size a single policy may reach;
    zero or a negative value turns splitting off.
    """

    remove_unreferenced_objects: bool = False
    tokenize_tenant_id: bool = False
    max_policy_bytes: int = DEFAULT_MAX_POLICY_BYTES
    tenant_domain: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ConversionOptions":
        return cls(
            remove_unreferenced_objects=_env_bool("POLICYFOLD_REMOVE_UNREFERENCED", False),
            tokenize_tenant_id=_env_bool("POLICYFOLD_TOKENIZE_TENANT", False),
            max_policy_bytes=env_int("POLICYFOLD_MAX_POLICY_BYTES", DEFAULT_MAX_POLICY_BYTES),
            tenant_domain=(os.environ.get("POLICYFOLD_TENANT_DOMAIN") or None),
        )
