class OnceFlag:
    """Compare-and-set boolean.

    The engine runs on a single asyncio loop, so a check-and-set with no
    ``await`` in between cannot interleave with another task.
    """

    def __init__(self):
        self._set = False

    @property
    def is_set(self) -> bool:
        return self._set

    def try_set(self) -> bool:
        """Set the flag; True only for the caller that flipped it"""
        if self._set:
            return False
        self._set = True
        return True

    def reset(self) -> None:
        self._set = False


class StopGuard(OnceFlag):
    """Shared "stopped" flag checked by every task owned by one in-progress session"""

    @property
    def stopped(self) -> bool:
        return self.is_set
