"""
GeoFeed HTTP API

Flask front end for renderers that live outside this process. The service's
event loop runs on a background thread and owns every poller and the
settings; request handlers only reach it through
``asyncio.run_coroutine_threadsafe``.
"""

import asyncio
import threading
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import pydantic
from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import config
from geofeed_service import __version__
from geofeed_service.coordinator import RefreshCoordinator, UnknownLayerError
from geofeed_service.errors import FeedError
from geofeed_service.fetcher import HttpFetcher
from geofeed_service.models import DataLayerType
from geofeed_service.pollers import (
    CameraPoller,
    EarthquakePoller,
    FlightPoller,
    SatellitePoller,
    WeatherPoller,
)
from geofeed_service.settings import SettingsStateMachine, create_settings_store
from geofeed_service.weather_frames import WeatherFrameService
from logging_config import get_logger

logger = get_logger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class GeoFeedRuntime:
    """
    Event loop thread plus the objects it owns.

    Parameters
    ----------
    coordinator : RefreshCoordinator
    settings : SettingsStateMachine
    frame_service : WeatherFrameService, optional
    fetcher : HttpFetcher, optional
        Closed on shutdown when given.
    call_timeout : float
        Seconds a request handler waits for work on the loop.
    """

    def __init__(self, coordinator: RefreshCoordinator, settings: SettingsStateMachine,
                 frame_service: Optional[WeatherFrameService] = None,
                 fetcher: Optional[HttpFetcher] = None,
                 call_timeout: float = config.HTTP_TIMEOUT_S + 5):
        self.coordinator = coordinator
        self.settings = settings
        self.frame_service = frame_service
        self.fetcher = fetcher
        self.call_timeout = call_timeout
        self.loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None

    def start(self, start_polling: bool = True) -> None:
        """Start the loop thread, load settings and activate persisted layers."""
        self._thread = threading.Thread(target=self.loop.run_forever, name="geofeed-loop", daemon=True)
        self._thread.start()
        self.call(self._startup, start_polling)

    def _startup(self, start_polling: bool) -> None:
        self.settings.load()
        self.coordinator.apply_settings(self.settings.settings)
        if start_polling:
            self.coordinator.start()

    def run(self, coro) -> Any:
        """Run a coroutine on the loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.call_timeout)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a plain callable on the loop and wait for its result."""
        async def invoke():
            return fn(*args, **kwargs)
        return self.run(invoke())

    def shutdown(self) -> None:
        if self._thread is None:
            return
        self.call(self.coordinator.stop)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self._thread = None
        self.loop.close()
        if self.fetcher is not None:
            self.fetcher.close()
        logger.info("Runtime stopped")


def build_runtime(service_config: Optional[config.FeedServiceConfig] = None) -> GeoFeedRuntime:
    """Wire fetcher, pollers, coordinator and settings from configuration."""
    cfg = service_config or config.FeedServiceConfig()
    fetcher = HttpFetcher(timeout=cfg.HTTP_TIMEOUT, max_workers=cfg.HTTP_WORKERS)
    frame_service = WeatherFrameService(fetcher)

    pollers = [
        FlightPoller(fetcher, interval=cfg.FLIGHT_INTERVAL, timeout=cfg.HTTP_TIMEOUT),
        SatellitePoller(fetcher, groups=cfg.SATELLITE_GROUPS, interval=cfg.SATELLITE_INTERVAL,
                        timeout=cfg.HTTP_TIMEOUT),
        EarthquakePoller(fetcher, feed=cfg.EARTHQUAKE_FEED, interval=cfg.EARTHQUAKE_INTERVAL,
                         timeout=cfg.HTTP_TIMEOUT),
        WeatherPoller(fetcher, frame_service=frame_service, interval=cfg.WEATHER_INTERVAL,
                      timeout=cfg.HTTP_TIMEOUT),
        CameraPoller(fetcher, directory_urls=cfg.CAMERA_DIRECTORY_URLS, interval=cfg.CAMERA_INTERVAL,
                     timeout=cfg.HTTP_TIMEOUT),
    ]

    settings = SettingsStateMachine(create_settings_store(cfg))
    coordinator = RefreshCoordinator(pollers, settings=settings)
    return GeoFeedRuntime(coordinator, settings, frame_service=frame_service, fetcher=fetcher,
                          call_timeout=cfg.HTTP_TIMEOUT + 5)


def create_app(runtime: GeoFeedRuntime) -> Flask:
    app = Flask(__name__)
    CORS(app)

    coordinator = runtime.coordinator
    settings = runtime.settings

    def layer_status(layer: DataLayerType) -> Dict[str, Any]:
        status = runtime.call(coordinator.get_poller_status, layer)
        return {
            "display_name": layer.display_name,
            "data_source": layer.data_source,
            **status.model_dump(mode="json"),
        }

    def resolve_layer(name: str) -> DataLayerType:
        return coordinator.poller(name).layer

    @app.route('/health', methods=['GET'])
    def health_check():
        """Service liveness and a per-layer error summary"""
        statuses = runtime.call(coordinator.statuses)
        return jsonify({
            "status": "healthy",
            "timestamp": _timestamp(),
            "version": __version__,
            "services": {
                "settings": settings.state.value,
                "active_layers": [s.layer.value for s in statuses.values() if s.active],
                "layers_with_errors": [s.layer.value for s in statuses.values() if s.last_error],
                "weather_frames": bool(runtime.frame_service and runtime.frame_service.frames),
            },
        }), 200

    @app.route('/layers', methods=['GET'])
    def list_layers():
        return jsonify({
            "layers": [layer_status(layer) for layer in coordinator.layers],
            "timestamp": _timestamp(),
        })

    @app.route('/layers/<name>/entities', methods=['GET'])
    def layer_entities(name: str):
        """Current snapshot of one layer; satellites accept ?at=<ISO time>"""
        layer = resolve_layer(name)
        at = request.args.get('at')

        if at and layer is DataLayerType.SATELLITES:
            try:
                at_time = datetime.fromisoformat(at.replace("Z", "+00:00"))
            except ValueError:
                return jsonify({"error": f"Invalid 'at' timestamp: {at}"}), 400
            poller = coordinator.poller(layer)
            entities = runtime.call(
                lambda: poller.positions_at(at_time) if poller.active else []
            )
        else:
            entities = runtime.call(coordinator.get_active_entities, layer)

        return jsonify({
            "layer": layer.value,
            "count": len(entities),
            "entities": [entity.model_dump(mode="json") for entity in entities],
            "timestamp": _timestamp(),
        })

    @app.route('/layers/<name>/status', methods=['GET'])
    def get_layer_status(name: str):
        return jsonify(layer_status(resolve_layer(name)))

    @app.route('/layers/<name>/toggle', methods=['POST'])
    def toggle_layer(name: str):
        """Toggle a layer, or set it with {"active": true|false}"""
        layer = resolve_layer(name)
        body = request.get_json(silent=True) or {}
        active = body.get("active")
        if active is not None and not isinstance(active, bool):
            return jsonify({"error": "'active' must be a boolean"}), 400

        if active is None:
            runtime.run(coordinator.toggle_layer(layer))
        else:
            runtime.run(coordinator.set_layer_active(layer, active))
        return jsonify(layer_status(layer))

    @app.route('/layers/<name>/refresh', methods=['POST'])
    def refresh_layer(name: str):
        layer = resolve_layer(name)
        refreshed = runtime.run(coordinator.refresh_one(layer))
        return jsonify({"layer": layer.value, "refreshed": refreshed, "status": layer_status(layer)})

    @app.route('/refresh', methods=['POST'])
    def refresh_all():
        outcome = runtime.run(coordinator.refresh_all())
        return jsonify({
            "results": {layer.value: ok for layer, ok in outcome.items()},
            "timestamp": _timestamp(),
        })

    @app.route('/settings', methods=['GET'])
    def get_settings():
        record = runtime.call(settings.settings.to_storage)
        return jsonify({"state": settings.state.value, "settings": record})

    @app.route('/settings', methods=['PATCH'])
    def patch_settings():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "Expected a JSON object"}), 400

        changes = dict(body)
        wanted_layers = None
        if "active_layers" in changes:
            raw_layers = changes.pop("active_layers")
            if not isinstance(raw_layers, list):
                return jsonify({"error": "'active_layers' must be a list"}), 400
            try:
                wanted_layers = {resolve_layer(raw) for raw in raw_layers}
            except UnknownLayerError as e:
                return jsonify({"error": str(e.args[0])}), 400

        async def apply():
            with settings.batch():
                if changes:
                    settings.update(**changes)
                if wanted_layers is not None:
                    await coordinator.set_active_layers(wanted_layers)
            return settings.settings.to_storage()

        try:
            record = runtime.run(apply())
        except pydantic.ValidationError as e:
            return jsonify({"error": "Invalid settings", "details": e.errors(include_url=False, include_context=False)}), 400
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        return jsonify({"state": settings.state.value, "settings": record})

    @app.route('/settings/reset', methods=['POST'])
    def reset_settings():
        async def reset():
            with settings.batch():
                settings.reset_settings()
                await coordinator.set_active_layers(())
            return settings.settings.to_storage()

        record = runtime.run(reset())
        return jsonify({"state": settings.state.value, "settings": record})

    @app.route('/weather/frames', methods=['GET'])
    def weather_frames():
        """RainViewer frame timestamps; ?refresh=1 bypasses the cache"""
        service = runtime.frame_service
        if service is None:
            return jsonify({"error": "Weather frame service not configured"}), 404

        force = request.args.get('refresh', '').lower() in ('1', 'true', 'yes')
        try:
            frames = runtime.run(service.refresh(force=force))
        except FeedError as e:
            logger.warning(f"Weather frames unavailable: {e}")
            if service.frames is None:
                return jsonify({"error": str(e)}), 503
            frames = service.frames

        return jsonify({
            **frames.model_dump(mode="json"),
            "latest_radar": frames.latest_radar,
            "latest_satellite": frames.latest_satellite,
            "fresh": service.is_fresh(),
            "timestamp": _timestamp(),
        })

    @app.errorhandler(UnknownLayerError)
    def handle_unknown_layer(error):
        return jsonify({"error": str(error.args[0])}), 404

    @app.errorhandler(Exception)
    def handle_error(error):
        """Global error handler"""
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.error(f"Unhandled error: {error}\n{traceback.format_exc()}")
        return jsonify({
            "error": "Internal server error",
            "timestamp": _timestamp()
        }), 500

    return app


def main() -> None:
    cfg = config.FeedServiceConfig()
    runtime = build_runtime(cfg)
    runtime.start()
    app = create_app(runtime)
    logger.info("Starting GeoFeed service", host=cfg.API_HOST, port=cfg.API_PORT)
    try:
        app.run(host=cfg.API_HOST, port=cfg.API_PORT, debug=False)
    finally:
        runtime.shutdown()


if __name__ == '__main__':
    main()
