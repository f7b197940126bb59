"""Codes shipped with appframe. Applications extend these via config or register_codes()."""

BUILTIN_CODES = {
    "app.already_setup": "Application setup has already run.",
    "app.startup_failed": "Application failed to start.",
    "rotation.invalid_items": "Rotation items must be a non-empty sequence.",
    "rotation.corrupted_state": "Rotation pool used-set no longer matches its items.",
    "rotation.locked_timeout": "Timed out waiting for an unlocked item.",
    "config.sample_not_collection": "Config path does not hold a collection to sample from.",
}
