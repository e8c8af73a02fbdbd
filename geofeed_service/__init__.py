"""
GeoFeed Service Package

Ingests live geospatial feeds (aircraft, satellites, earthquakes, weather,
webcams) and keeps a continuously refreshed, renderable set of entities per
data layer.

Modules:
    pollers: Per-source polling loops with in-flight guard and error isolation
    coordinator: Concurrent fan-out refresh and layer activation
    reconciler: Minimal add/remove diffs against rendered identity sets
    propagator: Keplerian ground-track propagation with sidereal correction
    tle_parser: Two-line element parsing and validation
    parsers: OpenSky, USGS, NWS, RainViewer and camera directory parsers
    settings: Persisted user settings with a guarded loading phase
    api: Flask HTTP API for external renderers

References:
    Vallado, D. A. (2013). Fundamentals of Astrodynamics and Applications (4th ed.).
"""

__version__ = "1.0.0"
