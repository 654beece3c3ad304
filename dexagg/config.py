import os

from dataclasses import dataclass, field

from dotenv import dotenv_values
from loguru import logger

# environment wins over the dotenv file so deploys can override local values
CONFIG = {**dotenv_values(".env.dexagg"), **os.environ}


def _number(key: str, default: float) -> float:
    raw = CONFIG.get(key)
    if raw is None or raw == "":
        return default

    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric {}={!r}, using {}", key, raw, default)
        return default


@dataclass(slots=True)
class AsterCredentials:
    apiKey: str
    apiSecret: str


@dataclass(slots=True)
class ExtendedCredentials:
    apiKey: str


@dataclass(slots=True)
class LighterCredentials:
    # read-only token; without it Lighter hides some account fields
    readToken: str


@dataclass(slots=True)
class Settings:
    # seconds
    cacheTTL: float = 30 * 60
    requestTimeout: float = 15

    credentials: dict[str, object] = field(default_factory=dict)

    @classmethod
    def load(cls) -> "Settings":
        return cls(
            cacheTTL=_number("DEXAGG_CACHE_TTL", 30 * 60),
            requestTimeout=_number("DEXAGG_REQUEST_TIMEOUT", 15),
            credentials=credentialsFromConfig(),
        )


def credentialsFromConfig(config: dict | None = None) -> dict[str, object]:
    """Build {source id: credentials} for every venue configured in the env.

    Venues with missing keys are simply left out; their adapters raise
    AuthError if someone asks them for positions anyway."""
    config = CONFIG if config is None else config
    creds: dict[str, object] = {}

    if config.get("DEXAGG_ASTER_API_KEY") and config.get("DEXAGG_ASTER_API_SECRET"):
        creds["aster"] = AsterCredentials(
            config["DEXAGG_ASTER_API_KEY"], config["DEXAGG_ASTER_API_SECRET"]
        )

    if config.get("DEXAGG_EXTENDED_API_KEY"):
        creds["extended"] = ExtendedCredentials(config["DEXAGG_EXTENDED_API_KEY"])

    if config.get("DEXAGG_LIGHTER_READ_TOKEN"):
        creds["lighter"] = LighterCredentials(config["DEXAGG_LIGHTER_READ_TOKEN"])

    return creds
