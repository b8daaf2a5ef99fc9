"""Read-only in-memory FUSE filesystem holding decrypted credential files."""

import errno
import os
import posixpath
import stat
import time
from typing import Mapping, Optional

import structlog

from ..crypto.memory import secure_zero_memory

logger = structlog.get_logger(__name__)

FILE_MODE = 0o400
DIR_MODE = 0o500

OPERATIONS = frozenset({"access", "destroy", "getattr", "open", "read", "readdir", "statfs"})
WRITE_OPS = frozenset(
    {
        "chmod", "chown", "create", "link", "mkdir", "mknod", "removexattr",
        "rename", "rmdir", "setxattr", "symlink", "truncate", "unlink",
        "utimens", "write",
    }
)


def fs_error(err: int) -> OSError:
    """Build the OSError fusepy translates into a negative errno."""
    return OSError(err, os.strerror(err))


def normalize_path(path: str) -> str:
    """Turn a mount-relative path into an absolute filesystem path.

    Raises:
        ValueError: If the path is empty or escapes the mount root.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    if not parts or ".." in parts:
        raise ValueError(f"Invalid mount path {path!r}")
    return "/" + "/".join(parts)


class MemoryFS:
    """Expose a fixed set of files from memory, read-only, to one user.

    Implements the fusepy operations protocol: FUSE calls the instance with
    the operation name and its arguments. Operations not defined here fail
    with ``EROFS`` when they would modify the tree, ``ENOSYS`` otherwise.
    File contents are kept in bytearrays so :meth:`wipe` can zero them.
    """

    def __init__(
        self,
        files: Mapping[str, bytes],
        uid: Optional[int] = None,
        gid: Optional[int] = None,
    ):
        self.uid = os.getuid() if uid is None else uid
        self.gid = os.getgid() if gid is None else gid
        self.created = time.time()
        self._files: dict[str, bytearray] = {}
        self._dirs: dict[str, set[str]] = {"/": set()}

        for rel_path, content in files.items():
            path = normalize_path(rel_path)
            if path in self._dirs:
                raise ValueError(f"Mount path {rel_path!r} is already a directory")
            self._add_parents(path)
            self._files[path] = bytearray(content)

    def __call__(self, op, *args):
        if op in WRITE_OPS:
            raise fs_error(errno.EROFS)
        if op.startswith("_") or op not in OPERATIONS:
            raise fs_error(errno.ENOSYS)
        return getattr(self, op)(*args)

    def _add_parents(self, path: str) -> None:
        child = path
        parent = posixpath.dirname(child)
        while True:
            if parent in self._files:
                raise ValueError(f"Mount path {parent!r} is already a file")
            self._dirs.setdefault(parent, set()).add(posixpath.basename(child))
            if parent == "/":
                break
            child, parent = parent, posixpath.dirname(parent)

    @property
    def paths(self) -> list[str]:
        return sorted(self._files)

    def _times(self) -> dict:
        return {"st_atime": self.created, "st_mtime": self.created, "st_ctime": self.created}

    def getattr(self, path, fh=None):
        if path in self._dirs:
            subdirs = sum(
                1 for name in self._dirs[path] if posixpath.join(path, name) in self._dirs
            )
            return {
                "st_mode": stat.S_IFDIR | DIR_MODE,
                "st_nlink": 2 + subdirs,
                "st_size": 0,
                "st_uid": self.uid,
                "st_gid": self.gid,
                **self._times(),
            }
        if path in self._files:
            return {
                "st_mode": stat.S_IFREG | FILE_MODE,
                "st_nlink": 1,
                "st_size": len(self._files[path]),
                "st_uid": self.uid,
                "st_gid": self.gid,
                **self._times(),
            }
        raise fs_error(errno.ENOENT)

    def readdir(self, path, fh):
        if path not in self._dirs:
            raise fs_error(errno.ENOTDIR if path in self._files else errno.ENOENT)
        return [".", ".."] + sorted(self._dirs[path])

    def open(self, path, flags):
        if path in self._dirs:
            raise fs_error(errno.EISDIR)
        if path not in self._files:
            raise fs_error(errno.ENOENT)
        if flags & os.O_ACCMODE != os.O_RDONLY:
            raise fs_error(errno.EACCES)
        return 0

    def read(self, path, size, offset, fh):
        try:
            content = self._files[path]
        except KeyError:
            raise fs_error(errno.ENOENT) from None
        return bytes(content[offset : offset + size])

    def access(self, path, amode):
        if path not in self._files and path not in self._dirs:
            raise fs_error(errno.ENOENT)
        if amode & os.W_OK:
            raise fs_error(errno.EACCES)
        return 0

    def statfs(self, path):
        return {"f_bsize": 4096, "f_frsize": 4096, "f_namemax": 255}

    def destroy(self, path):
        self.wipe()

    def wipe(self) -> None:
        """Zero and drop every file held in memory."""
        if not self._files:
            return
        for content in self._files.values():
            secure_zero_memory(content)
        logger.debug("wiped_memory_fs", files=len(self._files))
        self._files.clear()
        self._dirs = {"/": set()}
