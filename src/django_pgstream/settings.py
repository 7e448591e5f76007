from copy import deepcopy

from django.conf import settings

DEFAULTS: dict[str, object] = {
    # Executables
    "BIN_DIR_TEMPLATE": "/usr/lib/postgresql/{version}/bin",
    "TERMINATE_TIMEOUT": 10.0,
    # Database alias -> PostgreSQL major version ("13".."16")
    "VERSIONS": {},
    # Streaming
    "ARCHIVE_ENTRY_NAME": "dump.sql",
    "CHUNK_SIZE": 65536,
    "PIPE_BUFFER_SIZE": 262144,
    # Restore
    "FETCH_TIMEOUT": 60.0,
    "WORKSPACE_DIR": None,
    "WORKSPACE_PREFIX": "pgstream-restore-",
}


def get_setting(key: str) -> object:
    """Get a django-pgstream setting, falling back to defaults."""
    user_settings: dict[str, object] = getattr(settings, "DJANGO_PGSTREAM", {})
    if key in user_settings:
        value = user_settings[key]
    elif key in DEFAULTS:
        value = DEFAULTS[key]
    else:
        raise KeyError(f"Unknown django-pgstream setting: {key}")
    return deepcopy(value) if isinstance(value, (dict, list, set)) else value
