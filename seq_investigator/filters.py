#!/usr/bin/env python3
# Python 3.10
"""
Filter expression helpers for Seq queries.

This module owns the application alias table and the small set of builders
used to compose Seq filter expressions from tool parameters. Every value
supplied by a caller is escaped before it is embedded inside a single-quoted
literal; raw filter expressions supplied by the caller are never touched here.

Usage:
    app = resolve_app_name("fx-pims")           # 'fx-app-pims-services'
    clauses = [equals_clause("AppName", app), since_hours_clause(24)]
    query = join_clauses(clauses)
    # "AppName = 'fx-app-pims-services' and @Timestamp > Now() - 24h"
"""

from types import MappingProxyType
from typing import Iterable, Mapping

# Keys are stored lower-cased; lookups lower-case the input.
APP_ALIASES: Mapping[str, str] = MappingProxyType({
    # Standard services
    "pims": "pims-services",
    "pims-services": "pims-services",
    "charta": "charta-services",
    "charta-services": "charta-services",
    "data": "data-services",
    "data-services": "data-services",
    "scribing": "ai-scribing-services",
    "ai-scribing": "ai-scribing-services",
    "ai-scribing-services": "ai-scribing-services",
    "zus": "zus-services",
    "zus-services": "zus-services",
    "equip": "equip-services",
    "equip-services": "equip-services",
    "survey": "survey-services",
    "survey-services": "survey-services",
    "training": "training-services",
    "training-services": "training-services",
    "meetingbaas": "meetingbaas",
    "bot": "meetingbaas",
    "keystone": "keystone-platform-backend",
    "keystone-platform-backend": "keystone-platform-backend",

    # Azure Function apps
    "fx-pims": "fx-app-pims-services",
    "pims-fx": "fx-app-pims-services",
    "fx-app-pims-services": "fx-app-pims-services",
    "fx-charta": "fx-app-charta-services",
    "charta-fx": "fx-app-charta-services",
    "fx-app-charta-services": "fx-app-charta-services",
    "fx-survey": "fx-app-survey-services",
    "survey-fx": "fx-app-survey-services",
    "fx-app-survey-services": "fx-app-survey-services",
    "fx-data": "fx-app-data-services",
    "data-fx": "fx-app-data-services",
    "fx-app-data-services": "fx-app-data-services",
})

ERROR_LEVEL = "Error"


def resolve_app_name(alias: str) -> str:
    """
    Resolve an app alias to the AppName value carried by Seq events.

    Args:
        alias: App name or alias, matched case-insensitively

    Returns:
        str: Canonical app name, or ``alias`` unchanged if it is not a known alias
    """
    return APP_ALIASES.get(alias.lower(), alias)


def escape_filter_value(value: str) -> str:
    """Escape single quotes for use inside a single-quoted Seq literal."""
    return value.replace("'", "''")


def normalize_level(level: str) -> str:
    """Title-case a level name: first character upper, the rest lower."""
    return level[:1].upper() + level[1:].lower()


def equals_clause(prop: str, value: str) -> str:
    return f"{prop} = '{escape_filter_value(value)}'"


def level_clause(level: str) -> str:
    return f"@Level = '{normalize_level(level)}'"


def since_hours_clause(hours: int) -> str:
    return f"@Timestamp > Now() - {hours}h"


def join_clauses(clauses: Iterable[str]) -> str:
    return " and ".join(clauses)
