"""Google OAuth scopes requested at authorization time.

Scopes are collected per tool in registration order; that order is the order
they appear in the consent URL.  No pre-validation happens here: operations
declare the scopes they need and the client cache checks them against the
granted set.
"""

from __future__ import annotations

from dataclasses import dataclass

# Reference: https://developers.google.com/gmail/api/auth/scopes
GMAIL_READONLY = "https://www.googleapis.com/auth/gmail.readonly"
GMAIL_SEND = "https://www.googleapis.com/auth/gmail.send"
GMAIL_MODIFY = "https://www.googleapis.com/auth/gmail.modify"
GMAIL_LABELS = "https://www.googleapis.com/auth/gmail.labels"
GMAIL_SETTINGS_BASIC = "https://www.googleapis.com/auth/gmail.settings.basic"
GMAIL_SETTINGS_SHARING = "https://www.googleapis.com/auth/gmail.settings.sharing"

CALENDAR_READONLY = "https://www.googleapis.com/auth/calendar.readonly"
CALENDAR_EVENTS = "https://www.googleapis.com/auth/calendar.events"
CALENDAR_EVENTS_READONLY = "https://www.googleapis.com/auth/calendar.events.readonly"
CALENDAR_SETTINGS_READONLY = "https://www.googleapis.com/auth/calendar.settings.readonly"
CALENDAR_FULL = "https://www.googleapis.com/auth/calendar"

DRIVE_FULL = "https://www.googleapis.com/auth/drive"
DRIVE_READONLY = "https://www.googleapis.com/auth/drive.readonly"
DRIVE_FILE = "https://www.googleapis.com/auth/drive.file"
DRIVE_METADATA = "https://www.googleapis.com/auth/drive.metadata"
DRIVE_APPDATA = "https://www.googleapis.com/auth/drive.appdata"

CONTACTS_READONLY = "https://www.googleapis.com/auth/contacts.readonly"

GMAIL_SCOPES = (
    GMAIL_READONLY,
    GMAIL_SEND,
    GMAIL_MODIFY,
    GMAIL_LABELS,
    GMAIL_SETTINGS_BASIC,
    GMAIL_SETTINGS_SHARING,
)
CALENDAR_SCOPES = (
    CALENDAR_READONLY,
    CALENDAR_EVENTS,
    CALENDAR_EVENTS_READONLY,
    CALENDAR_SETTINGS_READONLY,
    CALENDAR_FULL,
)
DRIVE_SCOPES = (DRIVE_FULL, DRIVE_READONLY, DRIVE_FILE, DRIVE_METADATA, DRIVE_APPDATA)
CONTACTS_SCOPES = (CONTACTS_READONLY,)


@dataclass(frozen=True)
class ToolScope:
    scope: str
    tool: str


class ScopeRegistry:
    """Ordered collection of the scopes each tool needs."""

    def __init__(self) -> None:
        self._scopes: dict[str, ToolScope] = {}

    def register(self, tool: str, scope: str) -> None:
        """Register *scope* for *tool*.

        Re-registering an existing scope moves it to the end of the order and
        reassigns it to *tool*.
        """
        self._scopes.pop(scope, None)
        self._scopes[scope] = ToolScope(scope=scope, tool=tool)

    def register_many(self, tool: str, scopes: tuple[str, ...] | list[str]) -> None:
        for scope in scopes:
            self.register(tool, scope)

    def all_scopes(self) -> list[str]:
        """All registered scopes in registration order."""
        return list(self._scopes)

    def tool_scopes(self, tool: str) -> list[str]:
        return [entry.scope for entry in self._scopes.values() if entry.tool == tool]

    def __len__(self) -> int:
        return len(self._scopes)


def default_scope_registry() -> ScopeRegistry:
    """Registry with every Workspace service's scopes, core scopes first."""
    registry = ScopeRegistry()
    registry.register_many("gmail", GMAIL_SCOPES)
    registry.register_many("calendar", CALENDAR_SCOPES)
    registry.register_many("drive", DRIVE_SCOPES)
    registry.register_many("contacts", CONTACTS_SCOPES)
    return registry
