# flovyn/core/registry/definitions.py
from __future__ import annotations
from typing import Dict, Generic, Iterator, Mapping, MutableMapping, TypeVar
from flovyn.core.errors import RegistryError, ErrorCode

T = TypeVar('T')


class NotRegistered(RegistryError, KeyError):
    """Raised when a handler name is not present in the registry.

    Inherits from KeyError so MutableMapping.__contains__ and .get() work
    (they catch KeyError).
    """

    def __init__(self, name: str, kind: str = 'handler') -> None:
        RegistryError.__init__(
            self,
            message=f"{kind} '{name}' not registered",
            code=ErrorCode.HANDLER_NOT_REGISTERED,
            notes=[f"requested {kind}: '{name}'"],
            help_text=f'register the {kind} on the client before calling start()',
        )
        self.name = name


class DuplicateRegistrationError(RegistryError):
    """Raised when a handler name is registered more than once."""

    def __init__(self, name: str, kind: str = 'handler', context: str = '') -> None:
        super().__init__(
            message=f"duplicate {kind} name '{name}'",
            code=ErrorCode.HANDLER_DUPLICATE_NAME,
            notes=[context] if context else [],
            help_text=f'each {kind} name must be unique within a client',
        )
        self.name = name


class RegistrationClosedError(RegistryError):
    """Raised when registering after the client has started its workers."""

    def __init__(self, name: str, kind: str = 'handler') -> None:
        super().__init__(
            message=f"cannot register {kind} '{name}' after the client has started",
            code=ErrorCode.REGISTRATION_CLOSED,
            help_text='register all workflows and tasks before calling start()',
        )
        self.name = name


class HandlerRegistry(MutableMapping[str, T], Generic[T]):
    """Registry mapping handler name -> definition.

    Write-once before the workers start, read-many afterwards: ``freeze()``
    closes registration, after which every mutation raises
    RegistrationClosedError.
    """

    def __init__(self, kind: str = 'handler', initial: Dict[str, T] | None = None) -> None:
        self.kind = kind
        self._data: Dict[str, T] = dict(initial or {})
        self._frozen = False

    def __getitem__(self, key: str) -> T:
        try:
            return self._data[key]
        except KeyError:
            raise NotRegistered(key, self.kind)

    def __setitem__(self, key: str, value: T) -> None:
        """Discourage direct assignment; enforce the same rules as register()."""
        self.register(value, name=key)

    def __delitem__(self, key: str) -> None:
        if self._frozen:
            raise RegistrationClosedError(key, self.kind)
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    # --- convenience ---
    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def register(self, definition: T, *, name: str) -> T:
        """Insert a definition under `name`.

        Raises:
            RegistrationClosedError: If the registry has been frozen.
            DuplicateRegistrationError: If `name` is already registered.
        """
        if self._frozen:
            raise RegistrationClosedError(name, self.kind)
        if name in self._data:
            raise DuplicateRegistrationError(
                name, self.kind, f'{self.kind} with this name already exists'
            )
        self._data[name] = definition
        return definition

    def snapshot(self) -> Mapping[str, T]:
        return dict(self._data)

    def keys_list(self) -> list[str]:
        return list(self._data.keys())
