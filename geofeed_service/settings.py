"""
Settings Persistence

User preferences are a pydantic model whose field assignments are observed.
``SettingsStateMachine`` writes the full record to a store after each change,
but only once loading has finished: restoring fields from storage goes
through the same assignments and must not write them straight back.

States: UNINITIALIZED -> LOADING -> READY.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import redis
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

import config
from geofeed_service.models import DataLayerType, VisualMode
from geofeed_service.static_data import DEFAULT_CITY, CityPreset, find_city
from logging_config import get_logger

logger = get_logger(__name__)

SettingsObserver = Callable[[str], None]


class PersistedSettings(BaseModel):
    """User preferences that survive restarts. Assignments notify observers."""

    model_config = ConfigDict(validate_assignment=True)

    visual_mode: VisualMode = VisualMode.NORMAL
    sidebar_expanded: bool = True
    active_layers: Tuple[DataLayerType, ...] = ()
    selected_city: str = DEFAULT_CITY.name
    camera_latitude: float = Field(default=config.DEFAULT_CAMERA_LATITUDE, ge=-90.0, le=90.0)
    camera_longitude: float = Field(default=config.DEFAULT_CAMERA_LONGITUDE, ge=-180.0, le=180.0)
    camera_altitude: float = Field(default=config.DEFAULT_CAMERA_ALTITUDE_M, ge=0.0)

    _observers: List[SettingsObserver] = PrivateAttr(default_factory=list)

    @field_validator("selected_city")
    @classmethod
    def _known_city(cls, value: str) -> str:
        if find_city(value) is None:
            raise ValueError(f"Unknown city preset '{value}'")
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in type(self).model_fields:
            super().__setattr__(name, value)
            return
        previous = getattr(self, name)
        super().__setattr__(name, value)
        if getattr(self, name) != previous:
            for observer in list(self._observers):
                observer(name)

    def add_observer(self, observer: SettingsObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SettingsObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @property
    def city(self) -> CityPreset:
        return find_city(self.selected_city) or DEFAULT_CITY

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> "PersistedSettings":
        """
        Lenient restore from a stored record.

        Unknown visual modes and layers are ignored, an unknown city falls
        back to the default city, and a stored camera altitude under 1000 m
        is replaced by the default whole-globe altitude.
        """
        values: Dict[str, Any] = {}

        try:
            values["visual_mode"] = VisualMode(data.get("visual_mode"))
        except ValueError:
            pass

        if isinstance(data.get("sidebar_expanded"), bool):
            values["sidebar_expanded"] = data["sidebar_expanded"]

        layers = data.get("active_layers")
        if isinstance(layers, (list, tuple)):
            known = []
            for raw in layers:
                try:
                    layer = DataLayerType(raw)
                except ValueError:
                    logger.debug(f"Ignoring unknown stored layer {raw!r}")
                    continue
                if layer not in known:
                    known.append(layer)
            values["active_layers"] = tuple(known)

        city = find_city(data.get("selected_city"))
        values["selected_city"] = (city or DEFAULT_CITY).name

        latitude = data.get("camera_latitude")
        longitude = data.get("camera_longitude")
        altitude = data.get("camera_altitude")
        if all(isinstance(v, (int, float)) and not isinstance(v, bool)
               for v in (latitude, longitude, altitude)):
            if -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0:
                values["camera_latitude"] = float(latitude)
                values["camera_longitude"] = float(longitude)
                values["camera_altitude"] = (
                    float(altitude) if altitude >= config.MIN_RESTORED_CAMERA_ALTITUDE_M
                    else config.DEFAULT_CAMERA_ALTITUDE_M
                )

        return cls(**values)


PERSISTED_FIELDS = tuple(PersistedSettings.model_fields)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class SettingsStore:
    """Persists one settings record as a flat mapping."""

    def load(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def save(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemorySettingsStore(SettingsStore):
    """In-process store; records every write in ``writes``."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = dict(data) if data is not None else None
        self.writes: List[Dict[str, Any]] = []

    def load(self) -> Optional[Dict[str, Any]]:
        return dict(self.data) if self.data is not None else None

    def save(self, data: Dict[str, Any]) -> None:
        self.data = dict(data)
        self.writes.append(dict(data))

    def clear(self) -> None:
        self.data = None


class JsonFileSettingsStore(SettingsStore):
    """JSON file store; writes go to a temp file renamed over the target."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read settings file {self.path}: {e}. Using defaults.")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Settings file {self.path} does not hold an object. Using defaults.")
            return None
        return data

    def save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".settings-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.unlink(self.path)


class RedisSettingsStore(SettingsStore):
    """
    Redis store: one hash, one JSON-encoded value per field.

    Redis failures are logged and treated as "nothing stored" on load and as
    a skipped write on save.
    """

    def __init__(self, client: Optional[Any] = None, url: Optional[str] = None,
                 key: str = "geofeed:settings"):
        self.client = client if client is not None else redis.from_url(
            url or "redis://localhost:6379", decode_responses=True
        )
        self.key = key

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.hgetall(self.key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis settings load failed: {e}. Using defaults.")
            return None
        if not raw:
            return None

        data = {}
        for field, value in raw.items():
            if isinstance(field, bytes):
                field = field.decode("utf-8")
            try:
                data[field] = json.loads(value)
            except ValueError:
                logger.debug(f"Ignoring undecodable stored setting {field!r}")
        return data

    def save(self, data: Dict[str, Any]) -> None:
        mapping = {field: json.dumps(value) for field, value in data.items()}
        try:
            self.client.hset(self.key, mapping=mapping)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis settings save failed: {e}")

    def clear(self) -> None:
        try:
            self.client.delete(self.key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis settings clear failed: {e}")


def create_settings_store(service_config: config.FeedServiceConfig) -> SettingsStore:
    backend = service_config.SETTINGS_BACKEND
    if backend == "file":
        return JsonFileSettingsStore(service_config.SETTINGS_PATH)
    if backend == "redis":
        return RedisSettingsStore(url=service_config.REDIS_URL, key=service_config.SETTINGS_REDIS_KEY)
    if backend == "memory":
        return MemorySettingsStore()
    raise ValueError(f"Unknown SETTINGS_BACKEND '{backend}' (expected file, redis or memory)")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class SettingsState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class SettingsStateMachine:
    """
    Loads settings once, then saves the full record after every change.

    Parameters
    ----------
    store : SettingsStore
        Where the record lives.
    settings : PersistedSettings, optional
        Instance to manage; a default one is created otherwise.
    """

    def __init__(self, store: SettingsStore, settings: Optional[PersistedSettings] = None):
        self.store = store
        self.settings = settings if settings is not None else PersistedSettings()
        self.state = SettingsState.UNINITIALIZED
        self.write_count = 0
        self._batch_depth = 0
        self._dirty = False
        self.settings.add_observer(self._on_field_changed)

    @property
    def is_ready(self) -> bool:
        return self.state is SettingsState.READY

    def load(self) -> PersistedSettings:
        """Restore stored values into ``settings`` without writing anything back."""
        if self.state is not SettingsState.UNINITIALIZED:
            raise RuntimeError(f"Settings already loaded (state: {self.state.value})")

        self.state = SettingsState.LOADING
        try:
            data = self.store.load()
            if data:
                restored = PersistedSettings.from_storage(data)
                for field in PERSISTED_FIELDS:
                    setattr(self.settings, field, getattr(restored, field))
        finally:
            self.state = SettingsState.READY

        logger.info(
            "Settings loaded",
            mode=self.settings.visual_mode.value,
            layers=len(self.settings.active_layers),
            city=self.settings.selected_city,
        )
        return self.settings

    def _on_field_changed(self, field: str) -> None:
        if self.state is not SettingsState.READY:
            return
        if self._batch_depth:
            self._dirty = True
            return
        self.save()

    def save(self) -> None:
        self.store.save(self.settings.to_storage())
        self.write_count += 1

    @contextmanager
    def batch(self) -> Iterator[PersistedSettings]:
        """Group several assignments into a single write."""
        self._batch_depth += 1
        try:
            yield self.settings
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._dirty = False
                if self.is_ready:
                    self.save()

    def update(self, **changes: Any) -> PersistedSettings:
        """
        Validate and apply several fields with at most one write.

        Raises ValueError for unknown fields and pydantic's ValidationError
        for invalid values; nothing is applied in either case.
        """
        unknown = set(changes) - set(PERSISTED_FIELDS)
        if unknown:
            raise ValueError(f"Unknown settings fields: {', '.join(sorted(unknown))}")

        merged = {**self.settings.model_dump(), **changes}
        validated = PersistedSettings.model_validate(merged)

        with self.batch():
            for field in changes:
                setattr(self.settings, field, getattr(validated, field))
        return self.settings

    def save_camera_position(self, latitude: float, longitude: float, altitude: float) -> None:
        self.update(camera_latitude=latitude, camera_longitude=longitude, camera_altitude=altitude)

    def select_city(self, name: str) -> CityPreset:
        """Select a city preset and move the camera there in one write."""
        city = find_city(name)
        if city is None:
            raise ValueError(f"Unknown city preset '{name}'")
        self.update(
            selected_city=city.name,
            camera_latitude=city.latitude,
            camera_longitude=city.longitude,
            camera_altitude=city.default_altitude,
        )
        return city

    def reset_settings(self) -> PersistedSettings:
        """Restore defaults and save immediately."""
        if not self.is_ready:
            raise RuntimeError(f"Cannot reset settings in state {self.state.value}")

        defaults = PersistedSettings()
        with self.batch():
            for field in PERSISTED_FIELDS:
                setattr(self.settings, field, getattr(defaults, field))
            self._dirty = True

        logger.info("Settings reset to defaults")
        return self.settings
