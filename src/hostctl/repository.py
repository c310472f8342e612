"""Resource registry: the persisted inventory of users, hosts and certificates.

Entities are plain dataclasses (:mod:`hostctl.models`); storage is handled
here through :class:`YamlRepository` instances sharing one
:class:`~hostctl.state.StateRegistry`. Every storage failure surfaces as
:class:`~hostctl.errors.PersistenceError`.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

from .errors import PersistenceError
from .models import Certificate, SystemUser, VirtualHost
from .state import StateRegistry, StateRegistryError

T = TypeVar("T")


class Repository(Protocol[T]):
    """Storage operations the provisioners rely on."""

    def find(self, key: str) -> T | None:
        """Return the entity stored under *key*."""

    def list(self) -> list[T]:
        """Return every stored entity."""

    def create(self, entity: T) -> T:
        """Insert a new entity; its key must not exist yet."""

    def update(self, entity: T) -> T:
        """Replace an existing entity."""

    def delete(self, key: str) -> None:
        """Remove the entity stored under *key*."""

    def exists_by_unique_key(self, key: str) -> bool:
        """Return ``True`` when *key* is taken."""


@dataclass(slots=True)
class YamlRepository(Generic[T]):
    """Repository backed by one YAML collection file."""

    registry: StateRegistry
    filename: str
    collection: str
    key_field: str
    decode: Callable[[Mapping[str, object]], T]
    encode: Callable[[T], dict[str, object]]

    def find(self, key: str) -> T | None:
        """Return the entity stored under *key* (case-insensitive)."""
        wanted = _normalise(key)
        for entry in self._entries():
            if _normalise(str(entry.get(self.key_field, ""))) == wanted:
                return self._decode(entry)
        return None

    def list(self) -> list[T]:
        """Return every stored entity in insertion order."""
        return [self._decode(entry) for entry in self._entries()]

    def exists_by_unique_key(self, key: str) -> bool:
        """Return ``True`` when an entity with *key* exists."""
        return self.find(key) is not None

    def create(self, entity: T) -> T:
        """Insert *entity*; fail when its key is already taken."""
        payload = self.encode(entity)
        key = _normalise(str(payload[self.key_field]))

        def _insert(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
            for entry in entries:
                if _normalise(str(entry.get(self.key_field, ""))) == key:
                    raise PersistenceError(
                        f"{self.collection} entry '{payload[self.key_field]}' already exists."
                    )
            return [*entries, payload]

        self._mutate(_insert)
        return entity

    def update(self, entity: T) -> T:
        """Replace the stored entity sharing *entity*'s key."""
        payload = self.encode(entity)
        key = _normalise(str(payload[self.key_field]))

        def _replace(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
            updated: list[dict[str, Any]] = []
            found = False
            for entry in entries:
                if _normalise(str(entry.get(self.key_field, ""))) == key:
                    updated.append(payload)
                    found = True
                else:
                    updated.append(entry)
            if not found:
                raise PersistenceError(
                    f"{self.collection} entry '{payload[self.key_field]}' not found."
                )
            return updated

        self._mutate(_replace)
        return entity

    def delete(self, key: str) -> None:
        """Remove the entity stored under *key*."""
        wanted = _normalise(key)

        def _remove(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
            kept = [
                entry
                for entry in entries
                if _normalise(str(entry.get(self.key_field, ""))) != wanted
            ]
            if len(kept) == len(entries):
                raise PersistenceError(f"{self.collection} entry '{key}' not found.")
            return kept

        self._mutate(_remove)

    # ------------------------------------------------------------------
    def _entries(self) -> list[dict[str, Any]]:
        try:
            return self.registry.read_collection(self.filename, self.collection)
        except StateRegistryError as exc:
            raise PersistenceError(str(exc)) from exc

    def _mutate(
        self,
        mutator: Callable[[list[dict[str, Any]]], list[dict[str, Any]]],
    ) -> None:
        try:
            self.registry.mutate_collection(self.filename, self.collection, mutator)
        except StateRegistryError as exc:
            raise PersistenceError(str(exc)) from exc

    def _decode(self, entry: Mapping[str, object]) -> T:
        try:
            return self.decode(entry)
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Malformed {self.collection} entry in {self.filename}: {exc}"
            ) from exc


class ResourceRegistry:
    """Bundle the three repositories the provisioners read and write."""

    def __init__(self, state: StateRegistry) -> None:
        """Create repositories on top of *state*."""
        self.state = state
        self.users: YamlRepository[SystemUser] = YamlRepository(
            registry=state,
            filename="system_users.yml",
            collection="system_users",
            key_field="name",
            decode=SystemUser.from_dict,
            encode=SystemUser.to_dict,
        )
        self.vhosts: YamlRepository[VirtualHost] = YamlRepository(
            registry=state,
            filename="vhosts.yml",
            collection="vhosts",
            key_field="domain",
            decode=VirtualHost.from_dict,
            encode=VirtualHost.to_dict,
        )
        self.certificates: YamlRepository[Certificate] = YamlRepository(
            registry=state,
            filename="certificates.yml",
            collection="certificates",
            key_field="domain",
            decode=Certificate.from_dict,
            encode=Certificate.to_dict,
        )

    def vhosts_for_user(self, name: str) -> list[VirtualHost]:
        """Return the virtual hosts owned by *name*."""
        return [vhost for vhost in self.vhosts.list() if vhost.system_user == name]


def _normalise(key: str) -> str:
    return key.strip().lower()


__all__ = ["Repository", "ResourceRegistry", "YamlRepository"]
