"""
Per-user locks - הודעות של אותו משתמש מעובדות אחת אחרי השנייה.

asyncio.Lock הוגן (FIFO) ולכן הודעות של משתמש מעובדות בסדר ההגעה.
משתמשים שונים לא חוסמים זה את זה.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class UserLockRegistry:
    """מנעול לכל user_handle, נמחק כשאין מי שמחזיק או ממתין"""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_handle: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_handle)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_handle] = lock
        self._waiters[user_handle] = self._waiters.get(user_handle, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[user_handle] -= 1
            if self._waiters[user_handle] == 0:
                del self._waiters[user_handle]
                del self._locks[user_handle]

    def __len__(self) -> int:
        return len(self._locks)


_registry = UserLockRegistry()


def get_user_lock_registry() -> UserLockRegistry:
    return _registry
