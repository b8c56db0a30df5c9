# magi/integrations/PtyOrchestrator.py
"""PtyOrchestrator.py
====================
Runs long or interactive git commands under a pseudo-terminal.

Commit, push, pull and fetch may ask for credentials, open an editor or
simply take a while, so they never run on the UI thread. `PtyOrchestrator`
spawns ``git <args>`` on a fresh PTY (the PTY becomes the child's
controlling terminal, which is where git and ssh read passwords from) and
returns a `PtySession` right away. A worker thread then:

1. reads the PTY output and keeps a cleaned, human-readable log of it,
2. feeds the output through the `CredentialInterceptor`,
3. reaps the child and puts exactly one `CommandResult` on the result queue.

The UI polls the session with `poll_credential_request()` and
`poll_result()` on every tick; both return immediately.

Only one session may exist at a time. `spawn` raises `BusyError` while a
session is live and `SpawnError` when the binary cannot be launched (no
session is created in that case). A session stops counting as live once its
result has been delivered, or once its worker has finished after
`cancel()`.

Per-command state machine::

    IDLE -> SPAWNING -> RUNNING -> COMPLETED | FAILED

Foreground commands (a commit that opens ``$GIT_EDITOR``) are attached to
the real terminal instead: the caller suspends curses first, the worker puts
stdin in raw mode and copies keystrokes into the PTY and output back out.
"""

import codecs
import enum
import fcntl
import logging
import os
import pty
import queue
import re
import select
import shutil
import signal
import struct
import subprocess
import sys
import termios
import threading
import tty
from dataclasses import dataclass
from typing import Any, Optional

from magi.core.Errors import BusyError, SpawnError
from magi.integrations.Credentials import (
    CredentialInterceptor,
    CredentialRequest,
    CredentialResponse,
    CredentialStrategy,
    InterceptOutcome,
    ResponseChannel,
)


logger = logging.getLogger("magi")

READ_SIZE = 4096
POLL_INTERVAL = 0.1

ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")
ERROR_PREFIXES = ("fatal:", "error:", "remote:")
ERROR_MARKERS = ("Permission denied", "Authentication failed")


class PtyState(enum.Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PtyCommand:
    """A git invocation to run on a PTY.

    Attributes:
        args (tuple[str, ...]): Arguments after the git binary, e.g. ``("push", "-v")``.
        cwd (str): Working directory (the repository root).
        strategy (CredentialStrategy): What to do when a credential prompt appears.
        label (str): Operation name shown to the user ("Push", "Fetch", ...).
        foreground (bool): Attach the child to the real terminal.
    """

    args: tuple[str, ...]
    cwd: str
    strategy: CredentialStrategy = CredentialStrategy.PROMPT
    label: str = ""
    foreground: bool = False

    @property
    def display_label(self) -> str:
        if self.label:
            return self.label
        return f"git {self.args[0]}" if self.args else "git"


@dataclass(frozen=True)
class CommandResult:
    success: bool
    message: str

    @property
    def summary(self) -> str:
        return summarize_output(self.message) or ("Done" if self.success else "Failed")


def clean_output(text: str) -> str:
    """Strips escape sequences and carriage-return overwrites from PTY output."""
    text = ANSI_RE.sub("", text).replace("\r\n", "\n")
    lines = [line.rsplit("\r", 1)[-1].rstrip() for line in text.split("\n")]
    return "\n".join(lines).strip("\n")


def summarize_output(output: str) -> str:
    """Picks the line of ``output`` that best explains what happened.

    The last ``fatal:``/``error:``/``remote:`` line (or one mentioning a
    permission or authentication failure) wins; otherwise the last
    non-empty line.
    """
    lines = [line.strip() for line in output.splitlines()]
    for line in reversed(lines):
        if line.startswith(ERROR_PREFIXES) or any(marker in line for marker in ERROR_MARKERS):
            return line
    for line in reversed(lines):
        if line:
            return line
    return ""


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    try:
        fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
    except OSError:
        logger.debug("Could not set PTY window size", exc_info=True)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(): make the PTY slave (fd 0) its terminal.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


# ==================== PtySession Class ====================
class PtySession:
    """Handle of one running PTY command, owned by the UI.

    Holds the three channel endpoints: the result queue and the credential
    request queue (worker -> UI), and the credential `ResponseChannel`
    (UI -> worker).
    """

    def __init__(
        self,
        command: PtyCommand,
        process: subprocess.Popen,
        master_fd: int,
        orchestrator: "PtyOrchestrator",
    ) -> None:
        self.command = command
        self.label = command.display_label
        self.process = process
        self.master_fd = master_fd
        self.state = PtyState.SPAWNING
        self.result_q: "queue.Queue[CommandResult]" = queue.Queue(maxsize=1)
        self.request_q: "queue.Queue[CredentialRequest]" = queue.Queue()
        self.responses = ResponseChannel()
        self.cancelled = False
        self.delivered = False
        self.worker: Optional[threading.Thread] = None
        self._orchestrator = orchestrator
        self._log: list[str] = []
        self._log_lock = threading.Lock()

    # --- UI side (never blocks) ---
    def poll_credential_request(self) -> Optional[CredentialRequest]:
        try:
            return self.request_q.get_nowait()
        except queue.Empty:
            return None

    def poll_result(self) -> Optional[CommandResult]:
        try:
            result = self.result_q.get_nowait()
        except queue.Empty:
            return None
        self.delivered = True
        self._orchestrator._release(self)
        return result

    def send_credential(self, response: CredentialResponse) -> bool:
        return self.responses.send(response)

    def cancel(self) -> None:
        """Drops the response channel and stops the child.

        A worker waiting for a credential wakes up on the closed channel;
        a worker reading output sees the child die. Either way the session
        is released once the worker is done.
        """
        if self.cancelled:
            return
        logger.info(f"Cancelling {self.label}")
        self.cancelled = True
        self.responses.close()
        self.terminate()
        if self.state in (PtyState.COMPLETED, PtyState.FAILED):
            # The worker already finished without seeing the cancel.
            self._orchestrator._release(self)

    @property
    def is_alive(self) -> bool:
        return self.process.poll() is None

    @property
    def output(self) -> str:
        with self._log_lock:
            return clean_output("".join(self._log))

    # --- worker side ---
    def terminate(self) -> None:
        if self.process.poll() is not None:
            return
        try:
            os.killpg(self.process.pid, signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            self.process.terminate()

    def _write(self, data: bytes) -> None:
        os.write(self.master_fd, data)

    def _record(self, text: str) -> None:
        with self._log_lock:
            self._log.append(text)


# ==================== PtyOrchestrator Class ====================
class PtyOrchestrator:
    """Spawns PTY commands and enforces the single-session gate.

    Args:
        config (dict): Application configuration; ``config["git"]`` supplies
            ``binary``, ``pty_rows``, ``pty_cols`` and extra ``env``.
    """

    def __init__(self, config: Optional[dict[str, Any]] = None) -> None:
        git_config = (config or {}).get("git", {})
        self.git_binary: str = git_config.get("binary", "git")
        self.rows: int = int(git_config.get("pty_rows", 24))
        self.cols: int = int(git_config.get("pty_cols", 80))
        self.extra_env: dict[str, str] = {str(k): str(v) for k, v in git_config.get("env", {}).items()}
        self._session: Optional[PtySession] = None
        self._lock = threading.Lock()

    @property
    def active(self) -> Optional[PtySession]:
        return self._session

    @property
    def state(self) -> PtyState:
        session = self._session
        return session.state if session is not None else PtyState.IDLE

    def spawn(self, command: PtyCommand) -> PtySession:
        """Starts ``command`` and returns its session without waiting.

        Raises:
            BusyError: If another session is live; it is left untouched.
            SpawnError: If the process could not be started.
        """
        with self._lock:
            if self._session is not None:
                logger.info(f"Rejected {command.display_label}: {self._session.label} still running")
                raise BusyError()
            session = self._start(command)
            self._session = session

        worker = threading.Thread(
            target=self._run,
            args=(session,),
            daemon=True,
            name=f"PtyWorker-{command.args[0] if command.args else 'git'}",
        )
        session.worker = worker
        session.state = PtyState.RUNNING
        worker.start()
        return session

    def shutdown(self, timeout: float = 2.0) -> None:
        """Cancels the live session, if any, and waits for its worker."""
        session = self._session
        if session is None:
            return
        session.cancel()
        if session.worker is not None:
            session.worker.join(timeout)
        self._release(session)

    def _release(self, session: PtySession) -> None:
        with self._lock:
            if self._session is session:
                self._session = None

    def _environment(self, command: PtyCommand) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.extra_env)
        env["GIT_TERMINAL_PROMPT"] = "1"
        if not command.foreground:
            env.update({"LANG": "C", "LC_ALL": "C", "LC_MESSAGES": "C", "TERM": "dumb"})
        return env

    def _start(self, command: PtyCommand) -> PtySession:
        argv = [self.git_binary, *command.args]
        master_fd, slave_fd = pty.openpty()
        if command.foreground:
            size = shutil.get_terminal_size((self.cols, self.rows))
            _set_winsize(slave_fd, size.lines, size.columns)
        else:
            _set_winsize(slave_fd, self.rows, self.cols)

        try:
            process = subprocess.Popen(
                argv,
                cwd=command.cwd,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=self._environment(command),
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            os.close(slave_fd)
            logger.error(f"Could not start {' '.join(argv)}: {e}")
            raise SpawnError(f"Could not start {command.display_label}: {e}") from e

        os.close(slave_fd)
        logger.info(f"Started {command.display_label} (pid {process.pid}): git {' '.join(command.args)}")
        return PtySession(command, process, master_fd, self)

    # ------------------------------------------------------------------ worker
    def _run(self, session: PtySession) -> None:
        interceptor = CredentialInterceptor(
            strategy=CredentialStrategy.NONE if session.command.foreground else session.command.strategy,
            requests=session.request_q,
            responses=session.responses,
            write=session._write,
            terminate=session.terminate,
            is_alive=lambda: session.is_alive,
        )
        outcome = InterceptOutcome.CONTINUE
        saved_tty = None
        stdin_fd = -1
        if session.command.foreground and sys.stdin.isatty():
            stdin_fd = sys.stdin.fileno()
            saved_tty = termios.tcgetattr(stdin_fd)
            tty.setraw(stdin_fd)

        try:
            outcome = self._pump(session, interceptor, stdin_fd)
        except Exception:
            logger.exception(f"PTY worker for {session.label} crashed")
            session.terminate()
            outcome = InterceptOutcome.CANCELLED if session.cancelled else InterceptOutcome.CONTINUE
        finally:
            if saved_tty is not None:
                termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved_tty)
            returncode = self._reap(session)
            os.close(session.master_fd)
            self._finish(session, outcome, returncode)

    def _pump(self, session: PtySession, interceptor: CredentialInterceptor, stdin_fd: int) -> InterceptOutcome:
        decoder = codecs.getincrementaldecoder("utf-8")("replace")
        watched = [session.master_fd] + ([stdin_fd] if stdin_fd >= 0 else [])
        while True:
            ready, _, _ = select.select(watched, [], [], POLL_INTERVAL)
            if stdin_fd in ready:
                keys = os.read(stdin_fd, 1024)
                if keys:
                    session._write(keys)
            if session.master_fd not in ready:
                # Output written just before exit is still buffered; drain it first.
                exited = session.process.poll() is not None
                if exited and not select.select([session.master_fd], [], [], 0)[0]:
                    return InterceptOutcome.CONTINUE
                if not exited:
                    continue

            try:
                data = os.read(session.master_fd, READ_SIZE)
            except OSError:
                data = b""  # EIO once the slave side is gone
            if not data:
                return InterceptOutcome.CONTINUE
            if stdin_fd >= 0:
                os.write(sys.stdout.fileno(), data)

            pending = decoder.decode(data)
            while pending:
                consumed, request, pending = interceptor.scan(pending)
                session._record(consumed)
                if request is None:
                    break
                outcome = interceptor.handle(request)
                if outcome is not InterceptOutcome.CONTINUE:
                    return outcome

    def _reap(self, session: PtySession) -> int:
        try:
            return session.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning(f"{session.label} did not exit; killing it")
            try:
                os.killpg(session.process.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                session.process.kill()
            return session.process.wait()

    def _finish(self, session: PtySession, outcome: InterceptOutcome, returncode: int) -> None:
        # Prompts nobody answered are meaningless once the process is gone.
        while True:
            try:
                session.request_q.get_nowait()
            except queue.Empty:
                break

        output = session.output
        if outcome is InterceptOutcome.AUTH_REQUIRED:
            result = CommandResult(False, f"{session.label} requires authentication\n{output}".rstrip())
        elif outcome is InterceptOutcome.CANCELLED or session.cancelled:
            result = CommandResult(False, f"{session.label} cancelled")
        elif returncode == 0:
            result = CommandResult(True, output or f"{session.label} completed")
        else:
            result = CommandResult(False, output or f"{session.label} failed with exit code {returncode}")

        session.state = PtyState.COMPLETED if result.success else PtyState.FAILED
        logger.info(f"{session.label} finished: exit={returncode} success={result.success}")
        session.result_q.put(result)
        if session.cancelled:
            self._release(session)
