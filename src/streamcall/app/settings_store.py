"""Settings store schema and reactions.

// [LAW:one-source-of-truth] All known settings and their defaults live in SCHEMA.
// [LAW:single-enforcer] Persistence reaction is the single writer to disk.

Consumers read values live through store.get() at each decision point; no
component caches a setting across its own lifetime.
"""

import logging

import streamcall.io.settings
from snarfx.hot_reload import HotReloadStore
from snarfx import reaction

logger = logging.getLogger(__name__)

# [LAW:one-source-of-truth] All known settings and defaults.
SCHEMA: dict[str, object] = {
    "auto_execute": True,
    "legacy_ledger_lookup": True,
    "fallback_scan_interval": 3.0,
    "stagger_delay": 0.1,
}


def create(initial_overrides: dict | None = None, *, load_from_disk: bool = True) -> HotReloadStore:
    """Create settings store, seeded from disk."""
    disk_data = streamcall.io.settings.load_settings() if load_from_disk else {}
    # Filter disk data to known keys only
    merged = {k: disk_data.get(k, default) for k, default in SCHEMA.items()}
    if initial_overrides:
        merged.update({k: v for k, v in initial_overrides.items() if k in SCHEMA})
    return HotReloadStore(SCHEMA, initial=merged)


def snapshot(store: HotReloadStore) -> dict[str, object]:
    return {k: store.get(k) for k in SCHEMA}


def setup_reactions(store: HotReloadStore, context: dict | None = None) -> list:
    """Register all reactions. Returns list of disposers.

    context: dict with live component refs (ledger).
    """
    disposers = []

    # Persistence: any setting change writes to disk
    disposers.append(reaction(
        lambda: snapshot(store),
        lambda values: _safe_persist(values),
    ))

    # Consumer sync
    if context:
        ledger = context.get("ledger")
        if ledger is not None:
            disposers.append(reaction(
                lambda: bool(store.get("legacy_ledger_lookup")),
                lambda val, l=ledger: setattr(l, "legacy_lookup", val),
                fire_immediately=True,
            ))

    return disposers


def _safe_persist(values: dict) -> None:
    """Write settings to disk. Catches and logs I/O errors."""
    try:
        existing = streamcall.io.settings.load_settings()
        existing.update(values)
        streamcall.io.settings.save_settings(existing)
    except Exception:
        logger.exception("Failed to persist settings to disk")
