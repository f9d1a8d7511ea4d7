import fcntl
import logging
import os
from pathlib import Path
from typing import IO, Optional

logger = logging.getLogger("raidbot.lock")


class SingleInstanceLock:
    """
    Ensures that only one bot process owns the raid state, using a file lock.

    Two processes would each keep their own in-memory raid index and race on
    the same announcements, so the second one must refuse to start.
    """

    def __init__(self, lock_file_name: str = "raidbot.lock"):
        self.lock_file_path = Path(lock_file_name).absolute()
        self.fp: Optional[IO[str]] = None

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock.
        Returns True if successful, False if another instance is already running.
        """
        try:
            self.fp = open(self.lock_file_path, 'a+')

            # LOCK_NB: raise BlockingIOError instead of waiting
            fcntl.flock(self.fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

            self.fp.seek(0)
            self.fp.truncate()
            self.fp.write(f"{os.getpid()}\n")
            self.fp.flush()

            return True

        except OSError:
            if self.fp:
                self.fp.close()
                self.fp = None
            return False

    def release(self) -> None:
        """
        Release the lock and remove the file.
        """
        if not self.fp:
            return
        try:
            fcntl.flock(self.fp.fileno(), fcntl.LOCK_UN)
            self.fp.close()
            self.fp = None

            if self.lock_file_path.exists():
                self.lock_file_path.unlink()
        except OSError as e:
            logger.warning("Failed to release instance lock: %s", e)
