"""Versioned contract identifiers for scenario/result/event schemas."""

AST_SCHEMA_VERSION = "1.0.0"

PLAYER_EVENT_SCHEMA_V1 = "player_event.v1"
ERROR_SCHEMA_V1 = "error.v1"
SETTINGS_SCHEMA_V1 = "settings.v1"

SUPPORTED_AST_MAJOR_VERSIONS = {
    1,
}
