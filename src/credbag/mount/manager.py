"""Time-bounded FUSE mounts of decrypted credential files."""

import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional

import structlog

from ..errors import MountError
from .memfs import MemoryFS

logger = structlog.get_logger(__name__)

READY_TIMEOUT = 5.0
POLL_INTERVAL = 0.05


def run_fuse(operations: MemoryFS, mountpoint: Path, debug: bool = False) -> None:
    """Serve ``operations`` on ``mountpoint`` until it is unmounted.

    fusepy loads libfuse when imported, so the import stays here.
    """
    from fuse import FUSE

    FUSE(
        operations,
        str(mountpoint),
        foreground=True,
        nothreads=True,
        ro=True,
        debug=debug,
        fsname="credbag",
    )


def is_mounted(path: Path) -> bool:
    return os.path.ismount(path)


def unmount(path: Path) -> None:
    """Unmount a FUSE filesystem.

    Raises:
        MountError: If the unmount command fails.
    """
    if sys.platform.startswith("linux"):
        tool = shutil.which("fusermount3") or shutil.which("fusermount") or "fusermount"
        cmd = [tool, "-u", str(path)]
    else:
        cmd = ["umount", str(path)]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise MountError(f"Cannot run {cmd[0]}: {e}") from e
    if result.returncode != 0:
        raise MountError(f"Failed to unmount {path}: {result.stderr.strip()}")


class EphemeralMount:
    """One FUSE mount of in-memory files, released exactly once.

    Entering the context mounts the files and waits until the mount is
    live; leaving it (normally, on error or on interrupt) unmounts and wipes
    the in-memory contents. A failure during setup releases whatever was
    acquired before re-raising.
    """

    def __init__(
        self,
        mountpoint: Path,
        files: Mapping[str, bytes],
        debug: bool = False,
        ready_timeout: float = READY_TIMEOUT,
    ):
        self.mountpoint = Path(mountpoint).expanduser()
        self.files = files
        self.debug = debug
        self.ready_timeout = ready_timeout
        self._fs: Optional[MemoryFS] = None
        self._thread: Optional[threading.Thread] = None
        self._served = threading.Event()
        self._cancelled = threading.Event()
        self._error: Optional[BaseException] = None
        self._released = False

    def _prepare(self) -> None:
        try:
            if not self.mountpoint.exists():
                os.makedirs(self.mountpoint, mode=0o700, exist_ok=True)
            if is_mounted(self.mountpoint):
                raise MountError(f"Mountpoint {self.mountpoint} is already in use")
            if not self.mountpoint.is_dir():
                raise MountError(f"Mountpoint {self.mountpoint} is not a directory")
            if any(self.mountpoint.iterdir()):
                raise MountError(f"Mountpoint {self.mountpoint} is not empty")
        except OSError as e:
            raise MountError(f"Cannot prepare mountpoint {self.mountpoint}: {e}") from e

    def _serve(self) -> None:
        try:
            run_fuse(self._fs, self.mountpoint, debug=self.debug)
        except (RuntimeError, OSError) as e:
            self._error = e
        finally:
            self._served.set()

    def _wait_ready(self) -> None:
        deadline = time.monotonic() + self.ready_timeout
        while not is_mounted(self.mountpoint):
            if self._served.is_set():
                raise MountError(f"Failed to mount {self.mountpoint}: {self._error}")
            if time.monotonic() > deadline:
                raise MountError(f"Timed out waiting for {self.mountpoint} to mount")
            time.sleep(POLL_INTERVAL)

    def __enter__(self) -> "EphemeralMount":
        self._prepare()
        try:
            self._fs = MemoryFS(self.files)
        except ValueError as e:
            raise MountError(str(e)) from e

        self._thread = threading.Thread(
            target=self._serve, name="credbag-fuse", daemon=True
        )
        self._thread.start()
        try:
            self._wait_ready()
        except BaseException:
            self.release()
            raise

        logger.info(
            "mounted",
            mountpoint=str(self.mountpoint),
            files=self._fs.paths,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def wait(self, timeout: float) -> str:
        """Block until the timeout expires, :meth:`cancel` is called or the
        filesystem is unmounted from outside.

        Returns:
            ``"timeout"``, ``"cancelled"`` or ``"unmounted"``.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return "timeout"
            if self._cancelled.wait(min(remaining, 0.5)):
                return "cancelled"
            if self._served.is_set():
                return "unmounted"

    def cancel(self) -> None:
        """Request early teardown; safe to call from a signal handler."""
        self._cancelled.set()

    def release(self) -> None:
        """Unmount and wipe the filesystem. Only the first call has effect.

        Raises:
            MountError: If the filesystem is still mounted after unmounting.
        """
        if self._released:
            return
        self._released = True

        failure = None
        if self._thread is not None and not self._served.is_set():
            try:
                unmount(self.mountpoint)
            except MountError as e:
                failure = e
            self._served.wait(self.ready_timeout)
            self._thread.join(self.ready_timeout)

        if self._fs is not None:
            self._fs.wipe()

        if failure is not None:
            if is_mounted(self.mountpoint):
                logger.error("unmount_failed", mountpoint=str(self.mountpoint), error=str(failure))
                raise failure
            logger.warning(
                "unmount_reported_failure",
                mountpoint=str(self.mountpoint),
                error=str(failure),
            )

        logger.info("unmounted", mountpoint=str(self.mountpoint))


@contextmanager
def cancel_on_signals(cancel: Callable[[], None]) -> Iterator[None]:
    """Route SIGTERM and SIGHUP to ``cancel`` while the block runs.

    SIGINT keeps raising ``KeyboardInterrupt``. Handlers can only be set
    from the main thread; elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = {}
    for signum in (signal.SIGTERM, signal.SIGHUP):
        previous[signum] = signal.signal(signum, lambda *_: cancel())
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def mount(
    mountpoint: Path,
    files: Mapping[str, bytes],
    timeout: float,
    debug: bool = False,
) -> str:
    """Expose ``files`` under ``mountpoint`` for ``timeout`` seconds.

    Blocks until the timeout expires or the process is asked to stop
    (SIGINT, SIGTERM, SIGHUP); every path ends with the same teardown.

    Args:
        mountpoint: Directory to mount on; created if missing, must be empty.
        files: Mount-relative path to file content.
        timeout: Seconds to keep the files exposed.
        debug: Enable libfuse debug output.

    Returns:
        Why the mount ended: ``"timeout"``, ``"cancelled"`` or ``"unmounted"``.

    Raises:
        MountError: If the mount cannot be set up or torn down.
    """
    active = EphemeralMount(mountpoint, files, debug=debug)
    with cancel_on_signals(active.cancel), active:
        try:
            reason = active.wait(timeout)
        except KeyboardInterrupt:
            reason = "cancelled"
    logger.info("mount_finished", mountpoint=str(mountpoint), reason=reason)
    return reason
