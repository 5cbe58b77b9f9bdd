"""Check-in token lifecycle: one unguessable token per location, rotated atomically."""

import asyncio
import inspect
import json
import os
import secrets
import tempfile
from pathlib import Path

from dojoqr.logging import audit, get_logger

log = get_logger("tokens")

TOKEN_BYTES = 18  # 144 bits, 24 url-safe characters


class UnknownLocationError(LookupError):
    """No token exists for the location."""


class TokenPersistenceError(RuntimeError):
    """The store could not persist a token swap; the previous token stands."""


def new_token() -> str:
    """Fresh token from the OS CSPRNG."""
    return secrets.token_urlsafe(TOKEN_BYTES)


class MemoryTokenStore:
    """In-memory store keeping location→token and token→location in step.

    All mutations happen under one ``asyncio.Lock``; both maps are replaced
    together, so a rotated-out token never resolves after the swap.
    """

    def __init__(self, tokens: dict[str, str] | None = None):
        self._lock = asyncio.Lock()
        self._by_location: dict[str, str] = dict(tokens or {})
        self._by_token: dict[str, str] = {t: loc for loc, t in self._by_location.items()}

    async def _persist(self, by_location: dict[str, str]) -> None:
        """Durably write *by_location*; raise ``TokenPersistenceError`` on failure."""

    async def get(self, location_id: str) -> str:
        try:
            return self._by_location[location_id]
        except KeyError:
            raise UnknownLocationError(location_id) from None

    async def resolve(self, token: str) -> str | None:
        """Location for a token, or None if it is unknown or rotated out."""
        return self._by_token.get(token)

    async def _swap(self, location_id: str, token: str, *, must_exist: bool) -> str | None:
        async with self._lock:
            previous = self._by_location.get(location_id)
            if must_exist and previous is None:
                raise UnknownLocationError(location_id)
            if not must_exist and previous is not None:
                raise ValueError(f"location {location_id!r} already has a token")
            if token in self._by_token:
                raise ValueError("token already assigned")

            by_location = dict(self._by_location)
            by_location[location_id] = token
            await self._persist(by_location)

            by_token = dict(self._by_token)
            if previous is not None:
                by_token.pop(previous, None)
            by_token[token] = location_id
            self._by_location, self._by_token = by_location, by_token
            return previous

    async def create_location(self, location_id: str, token: str | None = None) -> str:
        """Seed a location with its initial token (done by whoever creates locations)."""
        token = token or new_token()
        await self._swap(location_id, token, must_exist=False)
        audit("token.created", logger=log, location=location_id, token=token)
        return token

    async def replace(self, location_id: str, token: str) -> str:
        """Atomically make *token* the only valid token for the location.

        Returns the token it replaced.
        """
        return await self._swap(location_id, token, must_exist=True)


class JsonTokenStore(MemoryTokenStore):
    """JSON-file-backed store.

    Writes go to a temporary file that is renamed over the old one, and the
    in-memory maps only change once the rename succeeded.
    """

    def __init__(self, db_path: str = "checkin_tokens.json"):
        self.db_path = Path(db_path)
        tokens = {}
        if self.db_path.exists():
            with open(self.db_path) as f:
                tokens = json.load(f).get("tokens", {})
            log.info("Loaded token store from %s (%d locations)", self.db_path, len(tokens))
        super().__init__(tokens)

    def _write(self, by_location: dict[str, str]) -> None:
        directory = self.db_path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tokens-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump({"tokens": by_location}, f, indent=2)
            os.replace(tmp, self.db_path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def _persist(self, by_location: dict[str, str]) -> None:
        try:
            await asyncio.to_thread(self._write, by_location)
        except OSError as e:
            raise TokenPersistenceError(f"cannot write {self.db_path}: {e}") from e


class TokenLifecycle:
    """The only sanctioned way to change a location's check-in token."""

    def __init__(self, store: MemoryTokenStore):
        self.store = store
        self._listeners = []

    def subscribe(self, callback) -> None:
        """Call ``callback(location_id, new_token)`` after each successful rotation.

        Coroutine callbacks are awaited. A failing callback is logged and
        does not undo the rotation or stop the remaining callbacks.
        """
        self._listeners.append(callback)

    async def regenerate(self, location_id: str) -> str:
        """Rotate the location's token and return the new one.

        Raises ``UnknownLocationError`` or ``TokenPersistenceError``; in both
        cases the previous token remains the valid one and no listener runs.
        """
        token = new_token()
        try:
            await self.store.replace(location_id, token)
        except TokenPersistenceError:
            log.error("Token rotation for %s was not persisted; previous token stays valid", location_id)
            raise
        audit("token.rotated", logger=log, location=location_id, new_token=token)

        for callback in list(self._listeners):
            try:
                result = callback(location_id, token)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.exception("Rotation listener %r failed for %s", callback, location_id)
                audit("token.listener_failed", logger=log, location=location_id, error=str(e))
        return token
