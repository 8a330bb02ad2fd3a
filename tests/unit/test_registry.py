"""Unit tests for HandlerRegistry, NotRegistered and DuplicateRegistrationError."""

from __future__ import annotations

import pytest

from flovyn.core.errors import ErrorCode, RegistryError
from flovyn.core.registry.definitions import (
    DuplicateRegistrationError,
    HandlerRegistry,
    NotRegistered,
    RegistrationClosedError,
)


@pytest.mark.unit
class TestNotRegistered:
    """Tests for the NotRegistered exception."""

    def test_message_contains_name_and_kind(self) -> None:
        err = NotRegistered('charge-card', 'task')
        assert "task 'charge-card' not registered" in str(err)

    def test_error_code(self) -> None:
        assert NotRegistered('x').code == ErrorCode.HANDLER_NOT_REGISTERED

    def test_is_key_error_and_registry_error(self) -> None:
        err = NotRegistered('x')
        assert isinstance(err, KeyError)
        assert isinstance(err, RegistryError)
        assert err.name == 'x'


@pytest.mark.unit
class TestHandlerRegistry:
    """Write-once registration, frozen at start."""

    def test_register_and_lookup(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('task')
        assert registry.register('defn', name='add') == 'defn'
        assert registry['add'] == 'defn'
        assert 'add' in registry
        assert len(registry) == 1
        assert registry.keys_list() == ['add']

    def test_missing_raises_not_registered(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('workflow')
        with pytest.raises(NotRegistered) as exc_info:
            registry['nope']
        assert 'workflow' in exc_info.value.message

    def test_contains_and_get_tolerate_missing(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('task')
        assert 'nope' not in registry
        assert registry.get('nope') is None

    def test_duplicate_name_rejected(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('task')
        registry.register('first', name='add')
        with pytest.raises(DuplicateRegistrationError) as exc_info:
            registry.register('second', name='add')
        assert exc_info.value.code == ErrorCode.HANDLER_DUPLICATE_NAME
        assert registry['add'] == 'first'

    def test_setitem_uses_register_rules(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('task')
        registry['add'] = 'first'
        with pytest.raises(DuplicateRegistrationError):
            registry['add'] = 'second'

    def test_frozen_rejects_mutation(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('task', {'add': 'defn'})
        registry.freeze()
        assert registry.frozen
        with pytest.raises(RegistrationClosedError) as exc_info:
            registry.register('other', name='sub')
        assert exc_info.value.code == ErrorCode.REGISTRATION_CLOSED
        with pytest.raises(RegistrationClosedError):
            del registry['add']
        assert registry['add'] == 'defn'

    def test_snapshot_is_a_copy(self) -> None:
        registry: HandlerRegistry[str] = HandlerRegistry('task')
        registry.register('defn', name='add')
        snapshot = registry.snapshot()
        registry.register('other', name='sub')
        assert list(snapshot) == ['add']
