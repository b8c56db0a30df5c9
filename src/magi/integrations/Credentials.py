# magi/integrations/Credentials.py
"""Credentials.py
================
Detects authentication prompts in a PTY output stream and answers them.

The PTY worker decodes each chunk it reads and hands it to
`CredentialInterceptor.scan`, which consumes text only up to the end of the
first recognised prompt. Anything after the prompt is handed back so the
worker can resume with it once the prompt has been answered; this is what
keeps prompts and answers in strict order.

How a prompt is answered depends on the command's `CredentialStrategy`:

- ``PROMPT``: a `CredentialRequest` goes to the UI and the worker thread
  blocks until the UI sends a `CredentialInput` (written to the PTY followed
  by a newline) or cancels / closes the `ResponseChannel` (child terminated).
- ``FAIL``: the child is terminated and the command reports that
  authentication is required.
- ``NONE``: prompts are left alone and simply appear in the output log.

Response text is never logged; `CredentialInput` hides it from ``repr``.
"""

import enum
import logging
import queue
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Union


logger = logging.getLogger("magi")

BUFFER_LEN = 256


class CredentialType(enum.Enum):
    USERNAME = "username"
    PASSWORD = "password"
    PASSPHRASE = "passphrase"
    PIN = "pin"
    TOKEN = "token"

    @property
    def title(self) -> str:
        return _TITLES[self]

    @property
    def masked(self) -> bool:
        return self is not CredentialType.USERNAME


_TITLES = {
    CredentialType.USERNAME: "Username",
    CredentialType.PASSWORD: "Password",
    CredentialType.PASSPHRASE: "Passphrase",
    CredentialType.PIN: "PIN",
    CredentialType.TOKEN: "2FA Token",
}

# Checked in order; the first match wins.
PROMPT_PATTERNS: list[tuple[re.Pattern[str], CredentialType]] = [
    (re.compile(r"Username\s*for\s*'.+':"), CredentialType.USERNAME),
    (re.compile(r"Password\s*for\s*'.+':"), CredentialType.PASSWORD),
    (re.compile(r".+'s password:"), CredentialType.PASSWORD),
    (re.compile(r"Password:"), CredentialType.PASSWORD),
    (re.compile(r"Enter\s*passphrase\s*for\s*key\s*'.+':"), CredentialType.PASSPHRASE),
    (re.compile(r"Enter\s*PIN\s*for\s*.+\s*key\s*.+:"), CredentialType.PIN),
    (re.compile(r"Enter\s*PIN\s*for\s*'.+':"), CredentialType.PIN),
    (re.compile(r".*2FA Token.*"), CredentialType.TOKEN),
]


class CredentialStrategy(enum.Enum):
    PROMPT = "prompt"
    FAIL = "fail"
    NONE = "none"


@dataclass(frozen=True)
class CredentialRequest:
    kind: CredentialType
    prompt: str


@dataclass(frozen=True)
class CredentialInput:
    text: str = field(repr=False)


@dataclass(frozen=True)
class CredentialCancelled:
    pass


CredentialResponse = Union[CredentialInput, CredentialCancelled]


def match_prompt(text: str) -> Optional[CredentialType]:
    """Returns the prompt kind recognised in ``text``, if any."""
    for pattern, kind in PROMPT_PATTERNS:
        if pattern.search(text):
            return kind
    return None


# ==================== ResponseChannel Class ====================
class ChannelClosed(Exception):
    """Raised by `ResponseChannel.receive` once the sending side closed it."""


class ResponseChannel:
    """One-way UI -> worker channel for credential answers that can be closed.

    Closing is how the UI "drops" its sender: the worker blocked in
    `receive` wakes up with `ChannelClosed`.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, response: CredentialResponse) -> bool:
        """Queues a response. Returns False if the channel is already closed."""
        if self._closed.is_set():
            return False
        self._queue.put(response)
        return True

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(self._CLOSED)

    def receive(self, timeout: float) -> Optional[CredentialResponse]:
        """Waits up to ``timeout`` seconds; None means nothing arrived yet."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            raise ChannelClosed()
        return item  # type: ignore[return-value]


class InterceptOutcome(enum.Enum):
    CONTINUE = "continue"
    AUTH_REQUIRED = "auth_required"
    CANCELLED = "cancelled"


# ==================== CredentialInterceptor Class ====================
class CredentialInterceptor:
    """Scans PTY output for prompts and answers them on the worker thread.

    Args:
        strategy (CredentialStrategy): How to react to a recognised prompt.
        requests (queue.Queue): Worker -> UI channel for `CredentialRequest`.
        responses (ResponseChannel): UI -> worker channel for answers.
        write (Callable[[bytes], None]): Writes bytes to the PTY input.
        terminate (Callable[[], None]): Terminates the child process.
        is_alive (Callable[[], bool]): Reports whether the child still runs.
    """

    def __init__(
        self,
        strategy: CredentialStrategy,
        requests: "queue.Queue[CredentialRequest]",
        responses: ResponseChannel,
        write: Callable[[bytes], None],
        terminate: Callable[[], None],
        is_alive: Callable[[], bool],
        poll_interval: float = 0.1,
    ) -> None:
        self.strategy = strategy
        self.requests = requests
        self.responses = responses
        self._write = write
        self._terminate = terminate
        self._is_alive = is_alive
        self._poll_interval = poll_interval
        self._buffer = ""
        self._echo = ""

    def scan(self, text: str) -> tuple[str, Optional[CredentialRequest], str]:
        """Consumes ``text`` up to and including the first recognised prompt.

        The terminal echo of the last answer is cut from the front of
        ``text`` and never appears in ``consumed``.

        Returns:
            tuple: ``(consumed, request, rest)``. ``request`` is None when no
            prompt was found, in which case ``rest`` is empty.
        """
        text = self._strip_echo(text)
        if self.strategy is CredentialStrategy.NONE:
            return text, None, ""
        for position, ch in enumerate(text):
            if ch in "\r\n":
                self._buffer = ""
                continue
            self._buffer = (self._buffer + ch)[-BUFFER_LEN:]
            kind = match_prompt(self._buffer)
            if kind is not None:
                prompt = self._buffer.strip()
                self._buffer = ""
                return text[:position + 1], CredentialRequest(kind, prompt), text[position + 1:]
        return text, None, ""

    def _strip_echo(self, text: str) -> str:
        # The echo may be split across reads; anything else ends the match.
        # Blanks left over from the prompt line come before it.
        if not self._echo or not text.strip(" \t"):
            return text
        matched = 0
        limit = min(len(text), len(self._echo))
        while matched < limit and text[matched] == self._echo[matched]:
            matched += 1
        if matched == len(self._echo) or matched == len(text):
            self._echo = self._echo[matched:]
            return text[matched:]
        self._echo = ""
        return text

    def handle(self, request: CredentialRequest) -> InterceptOutcome:
        """Resolves one prompt according to the strategy; blocks for PROMPT."""
        if self.strategy is CredentialStrategy.FAIL:
            logger.info(f"{request.kind.title} prompt with FAIL strategy; terminating command")
            self._terminate()
            return InterceptOutcome.AUTH_REQUIRED

        logger.debug(f"Forwarding {request.kind.title} prompt to the UI")
        self.requests.put(request)
        while True:
            try:
                response = self.responses.receive(self._poll_interval)
            except ChannelClosed:
                logger.info("Credential channel closed; terminating command")
                self._terminate()
                return InterceptOutcome.CANCELLED
            if response is None:
                if not self._is_alive():
                    logger.debug("Command exited while waiting for credentials")
                    return InterceptOutcome.CONTINUE
                continue
            if isinstance(response, CredentialCancelled):
                logger.info("Credential prompt cancelled; terminating command")
                self._terminate()
                return InterceptOutcome.CANCELLED
            self._write((response.text + "\n").encode("utf-8"))
            self._echo = response.text + "\r\n"
            logger.debug(f"{request.kind.title} prompt answered")
            return InterceptOutcome.CONTINUE
