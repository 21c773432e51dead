"""Tests for the OAuth scope registry."""

from __future__ import annotations

import pytest

from workspace_auth.scopes import (
    CALENDAR_READONLY,
    CONTACTS_READONLY,
    DRIVE_READONLY,
    GMAIL_READONLY,
    GMAIL_SEND,
    ScopeRegistry,
    default_scope_registry,
)

pytestmark = pytest.mark.unit


def test_registration_order_is_preserved():
    registry = ScopeRegistry()
    registry.register("gmail", GMAIL_READONLY)
    registry.register("drive", DRIVE_READONLY)
    registry.register("gmail", GMAIL_SEND)

    assert registry.all_scopes() == [GMAIL_READONLY, DRIVE_READONLY, GMAIL_SEND]
    assert registry.tool_scopes("gmail") == [GMAIL_READONLY, GMAIL_SEND]


def test_reregistering_moves_scope_to_end():
    registry = ScopeRegistry()
    registry.register_many("gmail", [GMAIL_READONLY, GMAIL_SEND])
    registry.register("calendar", GMAIL_READONLY)

    assert registry.all_scopes() == [GMAIL_SEND, GMAIL_READONLY]
    assert registry.tool_scopes("calendar") == [GMAIL_READONLY]
    assert len(registry) == 2


def test_default_registry_covers_every_service():
    registry = default_scope_registry()
    scopes = registry.all_scopes()

    assert scopes[0] == GMAIL_READONLY
    for scope in (CALENDAR_READONLY, DRIVE_READONLY, CONTACTS_READONLY):
        assert scope in scopes
    assert len(scopes) == len(set(scopes))
