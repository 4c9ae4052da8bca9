"""
Sandboxed execution of student code against test cases.

Every run is a separate OS process started in a fresh temporary directory
and wrapped by an isolation backend (see ``assessment.services.isolation``):

- stdin carries the test case input, stdout is captured up to
  ``SANDBOX_MAX_OUTPUT_BYTES``
- the program sees a read-only filesystem without host data and has no
  network
- CPU time, address space, file size and process count are limited by
  ``prlimit``
- the environment is replaced by a minimal one, Python runs in isolated
  mode (``-I``)
- a wall-clock timeout kills the whole process group
- at most ``SANDBOX_MAX_CONCURRENCY`` programs run at once per server

Without a working isolation backend nothing is executed.

Usage:
    executor = SandboxExecutor()
    report = await executor.run_test_cases(code, "python", question.test_cases)
"""
import asyncio
import logging
import os
import shutil
import signal
import sys
import tempfile
import time
import weakref
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from assessment.core.config import settings
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import SandboxExecutionError
from assessment.observability import metrics
from assessment.services.isolation import (
    SANDBOX_ENV,
    SANDBOX_WORKDIR,
    ResourceLimits,
    isolation_backend,
)

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096
_MAX_FILE_BYTES = 1024 * 1024
_MAX_ERROR_CHARS = 2000

_process_slots: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = (
    weakref.WeakKeyDictionary()
)


def process_slots() -> asyncio.Semaphore:
    """Server-wide cap on concurrently running sandboxed processes."""
    loop = asyncio.get_running_loop()
    slots = _process_slots.get(loop)
    if slots is None:
        slots = _process_slots[loop] = asyncio.Semaphore(settings.SANDBOX_MAX_CONCURRENCY)
    return slots


def normalize_output(text: Optional[str]) -> str:
    """Unify line endings and drop trailing whitespace before comparison."""
    if text is None:
        return ""
    return text.replace("\r\n", "\n").replace("\r", "\n").rstrip()


def outputs_match(actual: Optional[str], expected: Optional[str]) -> bool:
    return normalize_output(actual) == normalize_output(expected)


@dataclass(frozen=True)
class LanguageRuntime:
    """How to launch a source file for one language."""

    name: str
    file_name: str
    command: Callable[[str], Optional[List[str]]]
    # V8 reserves far more virtual memory than it uses and runs helper
    # threads; node gets a heap cap instead of these two limits
    limit_address_space: bool = True
    limit_processes: bool = True


def _python_command(source: str) -> Optional[List[str]]:
    return [os.path.realpath(sys.executable), "-I", source]


def _node_command(source: str) -> Optional[List[str]]:
    node = shutil.which(settings.SANDBOX_NODE_BINARY)
    if node is None:
        return None
    return [
        os.path.realpath(node),
        f"--max-old-space-size={settings.SANDBOX_MEMORY_LIMIT_MB}",
        source,
    ]


LANGUAGES: Dict[str, LanguageRuntime] = {
    "python": LanguageRuntime("python", "main.py", _python_command),
    "javascript": LanguageRuntime(
        "javascript",
        "main.js",
        _node_command,
        limit_address_space=False,
        limit_processes=False,
    ),
}

LANGUAGE_ALIASES = {
    "py": "python",
    "python3": "python",
    "js": "javascript",
    "node": "javascript",
}


def resolve_language(language: Optional[str]) -> Optional[LanguageRuntime]:
    """Runtime for a language name, or None if unknown or not installed."""
    if not language:
        return None
    key = language.strip().lower()
    runtime = LANGUAGES.get(LANGUAGE_ALIASES.get(key, key))
    if runtime is None:
        return None
    if runtime.command(runtime.file_name) is None:
        return None
    return runtime


def supported_languages() -> List[str]:
    return [name for name in LANGUAGES if resolve_language(name) is not None]


@dataclass
class TestCase:
    """One input/expected-output pair of a code question."""

    __test__ = False  # not a pytest test class

    input: str = ""
    expected_output: str = ""
    points: float = 1.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TestCase":
        raw_input = data.get("input")
        expected = data.get("expected_output")
        points = data.get("points")
        return cls(
            input="" if raw_input is None else str(raw_input),
            expected_output="" if expected is None else str(expected),
            points=1.0 if points is None else float(points),
        )


@dataclass
class ExecutionOutcome:
    """Result of a single sandboxed run."""

    output: str
    error: Optional[str] = None
    timed_out: bool = False
    exit_code: Optional[int] = None
    duration_ms: float = 0.0
    output_truncated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.timed_out


@dataclass
class TestCaseResult:
    __test__ = False  # not a pytest test class

    input: str
    expected_output: str
    actual_output: str
    passed: bool
    error: Optional[str] = None
    timed_out: bool = False
    duration_ms: float = 0.0
    points: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JudgingReport:
    results: List[TestCaseResult] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def all_passed(self) -> bool:
        return self.total_count > 0 and self.passed_count == self.total_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "passed_count": self.passed_count,
            "total_count": self.total_count,
            "all_passed": self.all_passed,
        }


class SandboxExecutor:
    """
    Runs untrusted code in short-lived, isolated, resource-limited processes.

    Instances hold configuration only; they are safe to share between
    requests and event loops. The cap on concurrent processes is
    server-wide (``process_slots``), not per instance.
    """

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
        memory_limit_mb: Optional[int] = None,
        cpu_limit_seconds: Optional[int] = None,
        max_processes: Optional[int] = None,
    ):
        self.timeout_seconds = timeout_seconds or settings.SANDBOX_TIMEOUT_SECONDS
        self.max_output_bytes = max_output_bytes or settings.SANDBOX_MAX_OUTPUT_BYTES
        self.memory_limit_mb = memory_limit_mb or settings.SANDBOX_MEMORY_LIMIT_MB
        self.cpu_limit_seconds = cpu_limit_seconds or settings.SANDBOX_CPU_LIMIT_SECONDS
        self.max_processes = max_processes or settings.SANDBOX_MAX_PROCESSES

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self, code: str, language: str, test_input: str = ""
    ) -> ExecutionOutcome:
        """
        Execute ``code`` once with ``test_input`` on stdin.

        Never raises for problems with the submitted program: unsupported
        languages, crashes, timeouts and a missing isolation backend are
        reported in the outcome.
        """
        runtime = resolve_language(language)
        if runtime is None:
            metrics.record_sandbox_run(str(language), "unsupported", 0.0)
            return ExecutionOutcome(
                output="", error=ErrorMessages.unsupported_language(language)
            )

        try:
            async with process_slots():
                outcome = await self._execute(runtime, code, test_input or "")
        except SandboxExecutionError as e:
            logger.error(f"Sandbox could not run {runtime.name} code: {e.message}")
            outcome = ExecutionOutcome(output="", error=e.message, timed_out=e.timed_out)

        if outcome.timed_out:
            label = "timeout"
        elif outcome.error:
            label = "error"
        else:
            label = "ok"
        metrics.record_sandbox_run(runtime.name, label, outcome.duration_ms)
        return outcome

    async def run_test_cases(
        self,
        code: str,
        language: str,
        test_cases: Sequence[Any],
    ) -> JudgingReport:
        """
        Run ``code`` against every test case and compare outputs.

        Cases run concurrently within the server-wide process cap, each
        under its own timeout. A failing case never affects the others.
        """
        cases = [
            tc if isinstance(tc, TestCase) else TestCase.from_mapping(tc)
            for tc in test_cases
        ]

        async def judge(case: TestCase) -> TestCaseResult:
            outcome = await self.run(code, language, case.input)
            return TestCaseResult(
                input=case.input,
                expected_output=case.expected_output,
                actual_output=outcome.output,
                passed=outcome.succeeded
                and outputs_match(outcome.output, case.expected_output),
                error=outcome.error,
                timed_out=outcome.timed_out,
                duration_ms=outcome.duration_ms,
                points=case.points,
            )

        results = await asyncio.gather(*(judge(case) for case in cases))
        report = JudgingReport(results=list(results))
        logger.info(
            f"Judged {language} submission: "
            f"{report.passed_count}/{report.total_count} test cases passed"
        )
        return report

    # ------------------------------------------------------------------
    # Process management
    # ------------------------------------------------------------------

    def _limits(self, runtime: LanguageRuntime) -> ResourceLimits:
        return ResourceLimits(
            cpu_seconds=self.cpu_limit_seconds,
            file_bytes=_MAX_FILE_BYTES,
            memory_bytes=(
                self.memory_limit_mb * 1024 * 1024 if runtime.limit_address_space else None
            ),
            processes=self.max_processes if runtime.limit_processes else None,
        )

    async def _execute(
        self, runtime: LanguageRuntime, code: str, test_input: str
    ) -> ExecutionOutcome:
        backend = isolation_backend()
        if backend is None:
            raise SandboxExecutionError(ErrorMessages.SANDBOX_UNAVAILABLE)

        with tempfile.TemporaryDirectory(prefix="sandbox-") as sandbox_dir:
            workdir = Path(sandbox_dir) / "work"
            workdir.mkdir()
            (workdir / runtime.file_name).write_text(code, encoding="utf-8")
            command = runtime.command(f"{SANDBOX_WORKDIR}/{runtime.file_name}")
            if command is None:
                raise SandboxExecutionError(
                    ErrorMessages.unsupported_language(runtime.name)
                )
            argv = backend.wrap(command, Path(sandbox_dir), self._limits(runtime))

            started = time.perf_counter()
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=sandbox_dir,
                    env=dict(SANDBOX_ENV),
                    start_new_session=True,
                )
            except (OSError, ValueError) as e:
                raise SandboxExecutionError(f"Failed to start process: {e}") from e

            stdout_buffer = _BoundedBuffer(self.max_output_bytes)
            stderr_buffer = _BoundedBuffer(self.max_output_bytes)
            timed_out = False
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        _feed_stdin(process, test_input.encode("utf-8")),
                        stdout_buffer.drain(process.stdout, on_overflow=lambda: _kill(process)),
                        stderr_buffer.drain(process.stderr, on_overflow=lambda: None),
                        process.wait(),
                    ),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                timed_out = True
                _kill(process)
                await process.wait()

            duration_ms = round((time.perf_counter() - started) * 1000, 2)

        output = stdout_buffer.text()
        exit_code = process.returncode
        if timed_out:
            error: Optional[str] = (
                f"Execution timed out after {self.timeout_seconds:g} seconds"
            )
        elif stdout_buffer.overflowed:
            error = f"Output limit of {self.max_output_bytes} bytes exceeded"
        elif exit_code != 0:
            error = _describe_failure(exit_code, stderr_buffer.text())
        else:
            error = None

        return ExecutionOutcome(
            output=output,
            error=error,
            timed_out=timed_out,
            exit_code=exit_code,
            duration_ms=duration_ms,
            output_truncated=stdout_buffer.overflowed,
        )


class _BoundedBuffer:
    """Collects a stream up to ``limit`` bytes, remembering any overflow."""

    def __init__(self, limit: int):
        self.limit = limit
        self.chunks: List[bytes] = []
        self.size = 0
        self.overflowed = False

    async def drain(
        self, stream: Optional[asyncio.StreamReader], on_overflow: Callable[[], None]
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            remaining = self.limit - self.size
            if remaining > 0:
                self.chunks.append(chunk[:remaining])
            self.size += len(chunk)
            if self.size > self.limit and not self.overflowed:
                self.overflowed = True
                on_overflow()

    def text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", errors="replace")


async def _feed_stdin(process: asyncio.subprocess.Process, data: bytes) -> None:
    if process.stdin is None:
        return
    try:
        if data:
            process.stdin.write(data)
            await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Program exited without reading its input
        pass
    finally:
        process.stdin.close()


def _kill(process: asyncio.subprocess.Process) -> None:
    """Kill the process group; the sandbox's PID namespace dies with it."""
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _signal_number(exit_code: Optional[int]) -> Optional[int]:
    """
    Signal that ended the program, if any.

    The isolation wrappers report a signalled child as ``128 + signal``;
    a negative code means the wrapper itself was killed.
    """
    if exit_code is None:
        return None
    if exit_code < 0:
        return -exit_code
    if 128 < exit_code < 128 + signal.NSIG:
        return exit_code - 128
    return None


def _describe_failure(exit_code: Optional[int], stderr: str) -> str:
    stderr = stderr.strip()
    if len(stderr) > _MAX_ERROR_CHARS:
        stderr = "..." + stderr[-_MAX_ERROR_CHARS:]
    signal_number = _signal_number(exit_code)
    if signal_number is not None:
        try:
            signal_name = signal.Signals(signal_number).name
        except ValueError:
            signal_name = str(signal_number)
        prefix = f"Process terminated by signal {signal_name}"
        return f"{prefix}: {stderr}" if stderr else prefix
    return stderr or f"Process exited with code {exit_code}"


# Shared executor used by the API and background judging
sandbox_executor = SandboxExecutor()
