"""Session store: durable, TTL'd persistence of ConversationSession objects.

Loading never fails. A missing, corrupted or unreadable session yields a
fresh empty session, so a bad cache entry costs the user their dialog state
but never an error.
"""

import asyncio
import base64
import binascii
import json
import logging
import weakref
import zlib
from datetime import timedelta
from threading import Lock

from fuelintel.model.session import DEFAULT_CONTEXT_TTL, DEFAULT_HISTORY_SIZE, ConversationSession
from fuelintel.stores.kv import KeyValueStore

logger = logging.getLogger(__name__)


class SessionStore:
    """Loads and saves sessions through a KeyValueStore.

    Every save refreshes the expiry (sliding TTL), so sessions abandoned for
    longer than ``ttl_seconds`` disappear on their own.

    Per-user locks serialize read-modify-write cycles for the same user key
    while different users proceed independently. A lock lives only as long as
    someone holds or awaits it, so idle users cost nothing.

    Example:
        >>> store = SessionStore(InMemoryKeyValueStore())
        >>> async with store.lock("telegram:42"):
        ...     session = await store.load("telegram:42")
        ...     session.add_to_history("hola", "¡Hola!")
        ...     await store.save("telegram:42", session)
    """

    def __init__(
        self,
        backend: KeyValueStore,
        ttl_seconds: int = 1800,
        key_prefix: str = "fuelintel:session",
        compression: bool = True,
        context_ttl: timedelta = DEFAULT_CONTEXT_TTL,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        self._backend = backend
        self.ttl_seconds = ttl_seconds
        self._prefix = key_prefix
        self._compression = compression
        self._context_ttl = context_ttl
        self._history_size = history_size
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = Lock()

    def _key(self, user_key: str) -> str:
        return f"{self._prefix}:{user_key}"

    def lock(self, user_key: str) -> asyncio.Lock:
        """Get or create the lock serializing turns for one user."""
        with self._locks_guard:
            user_lock = self._locks.get(user_key)
            if user_lock is None:
                user_lock = asyncio.Lock()
                self._locks[user_key] = user_lock
            return user_lock

    def new_session(self, user_key: str) -> ConversationSession:
        return ConversationSession(
            user_key=user_key,
            context_ttl=self._context_ttl,
            history_size=self._history_size,
        )

    def encode(self, session: ConversationSession) -> bytes:
        payload = json.dumps(session.to_dict(), ensure_ascii=False).encode("utf-8")
        if not self._compression:
            return payload
        return base64.b64encode(zlib.compress(payload, 6))

    def decode(self, user_key: str, data: bytes) -> ConversationSession:
        """Decode a stored payload.

        Plain JSON and compressed payloads are both accepted, so toggling
        compression does not invalidate existing sessions.

        Raises:
            ValueError: If the payload cannot be decoded.
        """
        try:
            raw = data if data[:1] == b"{" else zlib.decompress(base64.b64decode(data, validate=True))
            parsed = json.loads(raw.decode("utf-8"))
            if not isinstance(parsed, dict):
                raise ValueError(f"expected object, got {type(parsed).__name__}")
            session = ConversationSession.from_dict(
                parsed, context_ttl=self._context_ttl, history_size=self._history_size
            )
        except (binascii.Error, zlib.error, UnicodeDecodeError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Corrupted session payload: {e}") from e
        if session.user_key != user_key:
            raise ValueError(f"Session payload belongs to {session.user_key!r}")
        return session

    async def load(self, user_key: str) -> ConversationSession:
        """Load a user's session, or a fresh one if none is usable."""
        key = self._key(user_key)
        try:
            data = await self._backend.get(key)
        except Exception as e:
            logger.warning(f"Session store unavailable reading {key}: {e}")
            return self.new_session(user_key)

        if data is None:
            logger.debug(f"No stored session for {user_key}, starting fresh")
            return self.new_session(user_key)

        try:
            return self.decode(user_key, data)
        except ValueError as e:
            logger.warning(f"Discarding unreadable session for {user_key}: {e}")
            return self.new_session(user_key)

    async def save(self, user_key: str, session: ConversationSession) -> bool:
        """Persist a session with a refreshed expiry.

        Returns:
            True if written, False if the backend failed (logged, not raised).
        """
        key = self._key(user_key)
        try:
            await self._backend.set_with_ttl(key, self.encode(session), self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Failed to save session {key}: {e}")
            return False
        return True
