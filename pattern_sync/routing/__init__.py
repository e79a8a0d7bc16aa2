"""
Routing module for pattern-sync.

    - resolver: navigable path -> active track (and step)
"""

from pattern_sync.routing.resolver import ActiveTrack, resolve_active_track

__all__ = ["ActiveTrack", "resolve_active_track"]
