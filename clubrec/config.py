from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


FFN_BASE_URL = "https://ffn.extranat.fr/webffn/nat_recherche.php"
USER_AGENT = "suivi-natation/1.0"
HTTP_TIMEOUT_S = 15

POOL_LENGTHS = (25, 50)

# Age brackets: 8 means "8 and under", 17 means "17 and over".
AGE_MIN = 8
AGE_MAX = 17

INSERT_CHUNK_SIZE = 100
POLITE_DELAY_S = 1.5

PERFORMANCE_SOURCE = "ffn"
IMPORT_TYPE = "performances"


@dataclass(frozen=True)
class ImportQuotas:
    """Monthly full-import quotas per role. -1 means unlimited; admin is never limited."""

    coach: int = 3
    default: int = 1

    def for_role(self, role: str) -> int:
        if role == "coach":
            return self.coach
        return self.default


def quotas_from_env(environ: dict[str, str] | None = None) -> ImportQuotas:
    env = os.environ if environ is None else environ
    base = ImportQuotas()
    return ImportQuotas(
        coach=_int_env(env, "CLUBREC_QUOTA_COACH", base.coach),
        default=_int_env(env, "CLUBREC_QUOTA_DEFAULT", base.default),
    )


def _int_env(env: dict[str, str], key: str, fallback: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return fallback
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def default_data_dir() -> Path:
    return Path("data")


def default_db_path() -> Path:
    override = os.environ.get("CLUBREC_DB")
    if override:
        return Path(override)
    return default_data_dir() / "clubrec.sqlite3"


def default_tokens_path() -> Path:
    return default_data_dir() / "tokens.json"
