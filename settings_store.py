import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


SETTINGS_CACHE_SECONDS = 10

logger = logging.getLogger("ingest_api")


def _lower_keys(data):
    # settings files are matched on key names without regard to case
    if isinstance(data, dict):
        return {str(k).lower(): v for k, v in data.items()}
    return data


"""Models"""

class Connection(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sender: str = ""
    receiver: str = ""
    base_output_path: str = Field("", alias="baseoutputpath")

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data):
        return _lower_keys(data)

    @field_validator("sender", "receiver", "base_output_path", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    connections: List[Connection] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data):
        return _lower_keys(data)

    @field_validator("connections", mode="before")
    @classmethod
    def _drop_missing(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return [item for item in v if item is not None]
        return v


class SettingsError(Exception):
    """Raised when the settings file exists but cannot be turned into Settings."""


"""Reading"""

class ReadStatus(Enum):
    LOADED = "loaded"
    NOT_FOUND = "not_found"
    PARSE_ERROR = "parse_error"


@dataclass(frozen=True)
class SettingsReadResult:
    status: ReadStatus
    settings: Optional[Settings] = None
    error: Optional[Exception] = None


def read_settings(path: str) -> SettingsReadResult:
    """
    Read the settings document once.

    A missing file is reported as NOT_FOUND. An empty file or a JSON ``null``
    document has no usable structure and loads as empty Settings. Anything
    that is not valid JSON or does not fit the Settings shape comes back as
    PARSE_ERROR carrying the underlying exception.
    """
    if not os.path.isfile(path):
        return SettingsReadResult(ReadStatus.NOT_FOUND)

    with open(path, 'r', encoding='utf-8-sig') as f:
        text = f.read()

    if not text.strip():
        return SettingsReadResult(ReadStatus.LOADED, settings=Settings())

    try:
        data = json.loads(text)
        if data is None:
            settings = Settings()
        elif isinstance(data, dict):
            settings = Settings.model_validate(data)
        else:
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        return SettingsReadResult(ReadStatus.PARSE_ERROR, error=e)

    return SettingsReadResult(ReadStatus.LOADED, settings=settings)


def find_connection(settings: Settings, sender: str, receiver: str) -> Optional[Connection]:
    sender_key = sender.casefold()
    receiver_key = receiver.casefold()
    for connection in settings.connections:
        if connection.sender.casefold() == sender_key and connection.receiver.casefold() == receiver_key:
            return connection
    return None


"""Cache"""

@dataclass(frozen=True)
class _CacheEntry:
    settings: Settings
    loaded_at: float


class ConfigStore:
    """
    Process-local cache of the settings file.

    A loaded value is served for ``ttl`` seconds without touching the disk.
    Refreshes are serialized by a lock and re-check freshness once inside it,
    so concurrent callers hitting an expired entry cause a single reload.
    The cached entry is replaced as a whole, never modified.
    """

    def __init__(
        self,
        path: str,
        ttl: float = SETTINGS_CACHE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        reader: Callable[[str], SettingsReadResult] = read_settings,
    ):
        self.path = path
        self.ttl = ttl
        self._clock = clock
        self._reader = reader
        self._lock = threading.Lock()
        self._entry: Optional[_CacheEntry] = None

    def _is_fresh(self, entry: Optional[_CacheEntry]) -> bool:
        return entry is not None and self._clock() - entry.loaded_at < self.ttl

    def get(self) -> Settings:
        entry = self._entry
        if self._is_fresh(entry):
            return entry.settings

        with self._lock:
            entry = self._entry
            if self._is_fresh(entry):
                return entry.settings

            settings = self._load()
            self._entry = _CacheEntry(settings=settings, loaded_at=self._clock())
            return settings

    def _load(self) -> Settings:
        result = self._reader(self.path)

        if result.status is ReadStatus.NOT_FOUND:
            logger.info(f"Settings file not found, using empty settings: {self.path}")
            return Settings()

        if result.status is ReadStatus.PARSE_ERROR:
            logger.error(f"Settings file could not be parsed: {self.path}: {result.error}")
            raise SettingsError(f"Invalid settings file {self.path}: {result.error}") from result.error

        logger.debug(f"Loaded {len(result.settings.connections)} connection(s) from {self.path}")
        return result.settings
