"""Credential pool with failover and round-robin rotation.

Failover is a last-resort fallback chain: every fresh call sequence starts at
the primary key and ``advance()`` returns ``None`` once the chain is
exhausted. Round-robin spreads load: ``advance()`` always wraps and the
position is persisted so the next document starts where this one stopped.
"""

from __future__ import annotations

from collections.abc import Iterable
import json
import logging
from pathlib import Path
import threading
from typing import TYPE_CHECKING, Protocol

from gemini_enhance.core.types import Credential, RotationPolicy, RotationState
from gemini_enhance.exceptions import CredentialsExhaustedError

if TYPE_CHECKING:
    import os

    from gemini_enhance.config import FrozenConfig

logger = logging.getLogger(__name__)


class RotationStore(Protocol):
    """Persists the round-robin position between runs."""

    def load_index(self) -> int: ...

    def save_index(self, index: int) -> None: ...


class InMemoryRotationStore:
    """Process-local store; the position survives runs but not restarts."""

    def __init__(self, index: int = 0) -> None:
        self._index = index

    def load_index(self) -> int:
        return self._index

    def save_index(self, index: int) -> None:
        self._index = index


class JSONRotationStore:
    """Single-file JSON store: ``{"current_index": int}``.

    Writes go to a temp file that is then renamed over the target, so a
    crash mid-write leaves the previous position intact. Unreadable or
    malformed files read as position 0.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    def load_index(self) -> int:
        if not self._path.exists():
            return 0
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable rotation state %s: %s", self._path, e)
            return 0
        value = data.get("current_index", 0) if isinstance(data, dict) else 0
        return value if isinstance(value, int) and value >= 0 else 0

    def save_index(self, index: int) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps({"current_index": index}), encoding="utf-8")
        tmp.replace(self._path)


class CredentialPool:
    """Ordered ``[primary, *backups]`` with a selection policy."""

    def __init__(
        self,
        keys: Iterable[str | None],
        policy: RotationPolicy = RotationPolicy.FAILOVER,
        store: RotationStore | None = None,
    ) -> None:
        """Build the pool, discarding blank keys."""
        self._keys = tuple(k.strip() for k in keys if k and k.strip())
        self._policy = policy
        self._store = store or InMemoryRotationStore()
        self._lock = threading.Lock()
        self._index = 0
        if policy is RotationPolicy.ROUND_ROBIN and self._keys:
            self._index = self._store.load_index() % len(self._keys)

    @classmethod
    def from_config(
        cls, cfg: FrozenConfig, store: RotationStore | None = None
    ) -> CredentialPool:
        """Build from configuration, persisting to ``rotation_state_path`` if set."""
        if store is None and cfg.rotation_state_path is not None:
            store = JSONRotationStore(cfg.rotation_state_path)
        return cls(cfg.all_keys, cfg.rotation, store)

    def __repr__(self) -> str:
        return (
            f"CredentialPool(size={len(self._keys)}, policy={self._policy.value}, "
            f"index={self._index})"
        )

    @property
    def size(self) -> int:
        return len(self._keys)

    @property
    def policy(self) -> RotationPolicy:
        return self._policy

    @property
    def state(self) -> RotationState:
        return RotationState(policy=self._policy, current_index=self._index)

    def require_non_empty(self) -> None:
        """Document-level precondition, checked before any work starts."""
        if not self._keys:
            raise CredentialsExhaustedError(
                "No API keys configured. Set an API key before enhancing."
            )

    def current(self) -> Credential:
        """Credential for the next attempt."""
        self.require_non_empty()
        with self._lock:
            return Credential(self._keys[self._index], self._index)

    def advance(self) -> Credential | None:
        """Move to the next credential.

        Failover returns ``None`` once every key has been tried. Round-robin
        wraps around and never returns ``None``.
        """
        self.require_non_empty()
        with self._lock:
            if self._policy is RotationPolicy.ROUND_ROBIN:
                self._index = (self._index + 1) % len(self._keys)
                try:
                    self._store.save_index(self._index)
                except OSError as e:
                    logger.warning(
                        "Could not persist rotation position %d: %s", self._index, e
                    )
            elif self._index + 1 >= len(self._keys):
                logger.debug("Failover chain exhausted after %d keys", len(self._keys))
                return None
            else:
                self._index += 1
            logger.debug(
                "Rotated to API key %d/%d (%s)",
                self._index + 1,
                len(self._keys),
                self._policy.value,
            )
            return Credential(self._keys[self._index], self._index)

    def reset(self) -> None:
        """Start a fresh failover sequence at the primary key.

        Round-robin keeps its position.
        """
        if self._policy is RotationPolicy.FAILOVER:
            with self._lock:
                self._index = 0
