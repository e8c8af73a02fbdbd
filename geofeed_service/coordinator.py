"""
Refresh Coordinator

Owns the set of source pollers, fans out refreshes across active layers,
turns layers on and off, and mirrors the active set into persisted settings.
A failure in one layer never cancels or fails another.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from geofeed_service.models import DataLayerType, GeoEntity, PollerStatus
from geofeed_service.pollers import DiffCallback, DiffSubscription, SourcePoller
from logging_config import get_logger

logger = get_logger(__name__)


class UnknownLayerError(KeyError):
    """No poller is registered for the requested layer."""


class RefreshCoordinator:
    """
    Coordinates refreshes across all data layers.

    Parameters
    ----------
    pollers : iterable of SourcePoller
        One poller per layer; a later poller for the same layer replaces an
        earlier one.
    settings : SettingsStateMachine, optional
        When given, the active layer set is written back on every toggle.
    """

    def __init__(self, pollers: Iterable[SourcePoller], settings=None):
        self.pollers: Dict[DataLayerType, SourcePoller] = {p.layer: p for p in pollers}
        self.settings = settings
        self.running = False

    def poller(self, layer: DataLayerType) -> SourcePoller:
        try:
            return self.pollers[DataLayerType(layer)]
        except (KeyError, ValueError):
            raise UnknownLayerError(f"No poller registered for layer '{layer}'") from None

    @property
    def layers(self) -> List[DataLayerType]:
        return [layer for layer in DataLayerType if layer in self.pollers]

    @property
    def active_layers(self) -> List[DataLayerType]:
        return [layer for layer in self.layers if self.pollers[layer].active]

    def is_active(self, layer: DataLayerType) -> bool:
        return self.poller(layer).active

    async def refresh_all(self) -> Dict[DataLayerType, bool]:
        """Refresh every active layer concurrently; returns per-layer success."""
        active = [self.pollers[layer] for layer in self.active_layers]
        if not active:
            return {}

        results = await asyncio.gather(*(p.refresh() for p in active), return_exceptions=True)

        outcome: Dict[DataLayerType, bool] = {}
        for poller, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.error(f"Refresh of {poller.layer.value} raised: {result!r}")
                outcome[poller.layer] = False
            else:
                outcome[poller.layer] = result

        logger.info(
            "Refreshed all layers",
            succeeded=sum(1 for ok in outcome.values() if ok),
            total=len(outcome),
        )
        return outcome

    async def refresh_one(self, layer: DataLayerType) -> bool:
        return await self.poller(layer).refresh()

    async def set_layer_active(self, layer: DataLayerType, active: bool) -> bool:
        """
        Turn a layer on or off.

        Enabling refreshes immediately (and starts its timer while the
        coordinator runs). Disabling clears the layer for every subscriber
        and makes any outstanding fetch for it be discarded.
        """
        poller = self.poller(layer)
        if poller.active == active:
            return active

        if active:
            poller.enable()
            logger.info("Layer enabled", layer=poller.layer.value)
            self._mirror_settings()
            await self._first_refresh(poller)
        else:
            poller.disable()
            logger.info("Layer disabled", layer=poller.layer.value)
            self._mirror_settings()
        return active

    async def set_active_layers(self, layers: Iterable[DataLayerType]) -> List[DataLayerType]:
        """
        Make exactly ``layers`` active.

        Every switch is applied and mirrored into settings before any fetch
        starts; newly enabled layers then refresh concurrently.
        """
        wanted = {self.poller(layer).layer for layer in layers}
        enabled: List[SourcePoller] = []
        changed = False
        for layer in self.layers:
            poller = self.pollers[layer]
            if layer in wanted and not poller.active:
                poller.enable()
                enabled.append(poller)
                changed = True
            elif layer not in wanted and poller.active:
                poller.disable()
                changed = True

        if changed:
            logger.info("Active layers set", active_layers=[layer.value for layer in self.active_layers])
            self._mirror_settings()
        if enabled:
            results = await asyncio.gather(*(self._first_refresh(p) for p in enabled),
                                           return_exceptions=True)
            for poller, result in zip(enabled, results):
                if isinstance(result, BaseException):
                    logger.error(f"Refresh of {poller.layer.value} raised: {result!r}")
        return self.active_layers

    async def _first_refresh(self, poller: SourcePoller) -> None:
        await poller.refresh()
        # The layer may have been switched off while the fetch was outstanding
        if self.running and poller.active:
            poller.start_polling(immediate=False)

    async def toggle_layer(self, layer: DataLayerType) -> bool:
        return await self.set_layer_active(layer, not self.is_active(layer))

    def start(self) -> None:
        """Start polling timers for every active layer. Must run on the owning loop."""
        self.running = True
        for layer in self.active_layers:
            self.pollers[layer].start_polling()
        logger.info("Coordinator started", active_layers=[layer.value for layer in self.active_layers])

    def stop(self) -> None:
        self.running = False
        for poller in self.pollers.values():
            poller.stop_polling()
        logger.info("Coordinator stopped")

    def get_active_entities(self, layer: DataLayerType) -> List[GeoEntity]:
        poller = self.poller(layer)
        return poller.entities if poller.active else []

    def subscribe_to_reconciled_diff(self, layer: DataLayerType,
                                     callback: DiffCallback) -> DiffSubscription:
        return self.poller(layer).subscribe(callback)

    def get_poller_status(self, layer: DataLayerType) -> PollerStatus:
        return self.poller(layer).status()

    def statuses(self) -> Dict[DataLayerType, PollerStatus]:
        return {layer: self.pollers[layer].status() for layer in self.layers}

    def apply_settings(self, settings) -> None:
        """Activate the persisted layer set; call before ``start()``."""
        wanted = set(settings.active_layers)
        for layer, poller in self.pollers.items():
            if layer in wanted:
                poller.enable()
            elif poller.active:
                poller.disable()
        unknown = wanted - set(self.pollers)
        if unknown:
            logger.warning(f"Persisted layers without a poller ignored: {sorted(l.value for l in unknown)}")

    def _mirror_settings(self) -> None:
        if self.settings is None:
            return
        self.settings.settings.active_layers = tuple(self.active_layers)
