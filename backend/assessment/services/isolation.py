"""
OS-level isolation for sandboxed programs.

Student code never runs as a plain child process. Every command is wrapped
so that it starts in fresh user, mount, network, PID, IPC and UTS namespaces:

- the root filesystem is an empty read-only tmpfs holding only the system
  library directories and the interpreter prefix, bound read-only
- the program's working directory is mounted read-only at ``/sandbox``
- the network namespace has nothing but a loopback interface that is down
- the program runs as an unprivileged uid with no capabilities
- rlimits are applied by util-linux ``prlimit`` right before exec

Two backends build that environment: bubblewrap (``bwrap``) when installed,
and util-linux ``unshare`` otherwise. Each backend is tried once with a
trivial command before first use; when none works the sandbox refuses to
run code.
"""
import logging
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from assessment.core.config import settings

try:
    import resource
except ImportError:  # non-POSIX: no backend can run anyway
    resource = None

logger = logging.getLogger(__name__)

SANDBOX_WORKDIR = "/sandbox"
SANDBOX_UID = 65534

SANDBOX_ENV = {
    "PATH": "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin",
    "HOME": SANDBOX_WORKDIR,
    "LANG": "C.UTF-8",
    "LC_ALL": "C.UTF-8",
}

# System directories the dynamic linker and interpreters load from
_SYSTEM_PATHS = ("/usr", "/bin", "/sbin", "/lib", "/lib32", "/lib64", "/libx32")
_DEVICES = ("null", "zero", "random", "urandom")
_CHECK_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class ResourceLimits:
    """Per-process rlimits, enforced with ``prlimit``."""

    cpu_seconds: int
    file_bytes: int
    memory_bytes: Optional[int] = None
    processes: Optional[int] = None

    def prlimit_options(self) -> List[str]:
        options = [
            f"--cpu={_bounded('RLIMIT_CPU', self.cpu_seconds, self.cpu_seconds + 1)}",
            f"--fsize={_bounded('RLIMIT_FSIZE', self.file_bytes, self.file_bytes)}",
        ]
        if self.processes:
            options.append(
                f"--nproc={_bounded('RLIMIT_NPROC', self.processes, self.processes)}"
            )
        if self.memory_bytes:
            options.append(
                f"--as={_bounded('RLIMIT_AS', self.memory_bytes, self.memory_bytes)}"
            )
        return options


def _bounded(kind: str, soft: int, hard: int) -> str:
    """Clamp to the server's own hard limit; prlimit cannot raise it."""
    if resource is not None:
        _, current = resource.getrlimit(getattr(resource, kind))
        if current != resource.RLIM_INFINITY:
            soft, hard = min(soft, current), min(hard, current)
    return f"{soft}:{hard}"


def read_only_paths(executable: str) -> List[str]:
    """
    Host paths visible inside the sandbox.

    The system directories plus the prefix the interpreter was installed
    under (``<prefix>/bin/<interpreter>``), so pyenv, conda or nvm builds
    find their standard library. Sorted so parents precede children.
    """
    paths = {path for path in _SYSTEM_PATHS if os.path.lexists(path)}
    prefix = Path(os.path.realpath(executable)).parent.parent
    if prefix != Path("/"):
        paths.add(str(prefix))
    return sorted(paths)


class IsolationBackend:
    """Builds the wrapper command line for one isolation tool."""

    name = ""
    tools: Sequence[str] = ()

    def __init__(self) -> None:
        self._available: Optional[bool] = None

    def wrap(
        self, command: List[str], sandbox_dir: Path, limits: ResourceLimits
    ) -> List[str]:
        """
        Wrap ``command`` so it runs isolated.

        ``sandbox_dir/work`` holds the program and becomes ``/sandbox``;
        backends may create other entries in ``sandbox_dir``.
        """
        raise NotImplementedError

    def available(self) -> bool:
        if self._available is None:
            self._available = self._check()
        return self._available

    def _tool(self, name: str) -> str:
        return shutil.which(name) or name

    def _limited(self, command: List[str], limits: ResourceLimits) -> List[str]:
        return [self._tool("prlimit"), *limits.prlimit_options(), "--", *command]

    def _check(self) -> bool:
        if not sys.platform.startswith("linux"):
            return False
        missing = [tool for tool in (*self.tools, "prlimit", "true") if not shutil.which(tool)]
        if missing:
            logger.info(f"{self.name} isolation unavailable: {', '.join(missing)} not found")
            return False

        limits = ResourceLimits(cpu_seconds=5, file_bytes=0)
        with tempfile.TemporaryDirectory(prefix="sandbox-check-") as tmp:
            (Path(tmp) / "work").mkdir()
            argv = self.wrap([self._tool("true")], Path(tmp), limits)
            try:
                result = subprocess.run(
                    argv,
                    stdin=subprocess.DEVNULL,
                    capture_output=True,
                    env=SANDBOX_ENV,
                    timeout=_CHECK_TIMEOUT_SECONDS,
                )
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning(f"{self.name} isolation unusable: {e}")
                return False

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            logger.warning(
                f"{self.name} isolation unusable (exit {result.returncode}): {stderr}"
            )
            return False
        logger.info(f"Sandbox isolation backend: {self.name}")
        return True


class BubblewrapBackend(IsolationBackend):
    name = "bwrap"
    tools = ("bwrap",)

    def wrap(
        self, command: List[str], sandbox_dir: Path, limits: ResourceLimits
    ) -> List[str]:
        argv = [
            self._tool("bwrap"),
            "--unshare-all",
            "--unshare-user",
            "--uid", str(SANDBOX_UID),
            "--gid", str(SANDBOX_UID),
            "--hostname", "sandbox",
            "--die-with-parent",
            "--cap-drop", "ALL",
        ]
        for path in read_only_paths(command[0]):
            if os.path.islink(path):
                argv += ["--symlink", os.readlink(path), path]
            else:
                argv += ["--ro-bind", path, path]
        argv += [
            "--ro-bind", str(sandbox_dir / "work"), SANDBOX_WORKDIR,
            "--dev", "/dev",
            "--proc", "/proc",
            "--remount-ro", "/",
            "--chdir", SANDBOX_WORKDIR,
            "--",
        ]
        return argv + self._limited(command, limits)


# Runs as root of a fresh user namespace: builds a read-only root on a
# tmpfs, pivots into it, and keeps running as PID 1 while the program runs
# in a nested user namespace as an unprivileged uid.
# Arguments: <mount point> <workdir> <read-only path>... -- <command>...
_UNSHARE_SETUP = f"""
set -eu
root=$1
work=$2
shift 2
mount -t tmpfs -o mode=0755,size=1m sandbox "$root"
mkdir "$root{SANDBOX_WORKDIR}" "$root/dev" "$root/proc" "$root/.old"
while [ "$1" != "--" ]; do
  path=$1
  shift
  mkdir -p "$root$(dirname "$path")"
  if [ -L "$path" ]; then
    ln -s "$(readlink "$path")" "$root$path"
  elif [ ! -e "$root$path" ]; then
    mkdir -p "$root$path"
    mount --bind "$path" "$root$path"
    mount -o remount,bind,ro,nosuid,nodev "$root$path"
  fi
done
shift
for node in {" ".join(_DEVICES)}; do
  touch "$root/dev/$node"
  mount --bind "/dev/$node" "$root/dev/$node"
done
mount --bind "$work" "$root{SANDBOX_WORKDIR}"
mount -o remount,bind,ro,nosuid,nodev "$root{SANDBOX_WORKDIR}"
mount -t proc -o nosuid,nodev,noexec proc "$root/proc"
cd "$root"
pivot_root . .old
umount -l /.old
rmdir /.old
mount -o remount,ro /
cd {SANDBOX_WORKDIR}
"$@"
"""


class UnshareBackend(IsolationBackend):
    name = "unshare"
    tools = ("unshare", "sh")

    def wrap(
        self, command: List[str], sandbox_dir: Path, limits: ResourceLimits
    ) -> List[str]:
        mount_point = sandbox_dir / "root"
        mount_point.mkdir(exist_ok=True)
        unshare = self._tool("unshare")
        return [
            unshare,
            "--user", "--map-root-user",
            "--mount", "--net", "--pid", "--ipc", "--uts",
            "--kill-child",
            "--",
            self._tool("sh"), "-c", _UNSHARE_SETUP, "sandbox-setup",
            str(mount_point),
            str(sandbox_dir / "work"),
            *read_only_paths(command[0]),
            "--",
            unshare,
            f"--map-user={SANDBOX_UID}",
            f"--map-group={SANDBOX_UID}",
            "--",
            *self._limited(command, limits),
        ]


BACKENDS: Dict[str, IsolationBackend] = {
    "bwrap": BubblewrapBackend(),
    "unshare": UnshareBackend(),
}


def isolation_backend(preference: Optional[str] = None) -> Optional[IsolationBackend]:
    """First working backend for ``preference`` (default: the configured one)."""
    preference = preference or settings.SANDBOX_ISOLATION
    names = list(BACKENDS) if preference == "auto" else [preference]
    for name in names:
        backend = BACKENDS.get(name)
        if backend is not None and backend.available():
            return backend
    return None
