"""
Spoken alerts.

speak() only enqueues; a daemon worker renders each phrase by running an
external text-to-speech command, so the sampling loop never waits on audio.
The duration of the last rendering is kept in a gauge for telemetry.
"""
import queue
import shlex
import shutil
import subprocess
import sys
import threading
import time
from typing import Callable, List, Optional

import structlog

from pedalmon.services.telemetry_queue import Gauge

logger = structlog.get_logger(__name__)

_STOP = object()

WINDOWS_TTS = (
    "powershell.exe -NoProfile -Command "
    "\"Add-Type -AssemblyName System.Speech; "
    "(New-Object System.Speech.Synthesis.SpeechSynthesizer).Speak('{text}')\""
)


def default_tts_command() -> Optional[str]:
    """Best available speech command on this platform, or None."""
    if sys.platform == "win32":
        return WINDOWS_TTS
    if sys.platform == "darwin" and shutil.which("say"):
        return "say {text}"
    for candidate in ("espeak-ng", "espeak", "spd-say"):
        if shutil.which(candidate):
            return f"{candidate} {{text}}"
    return None


def build_argv(template: str, text: str) -> List[str]:
    """Split a command template (POSIX quoting) and substitute the phrase for {text}."""
    parts = shlex.split(template)
    if not any("{text}" in part for part in parts):
        return parts + [text]
    return [part.replace("{text}", text) for part in parts]


class Speaker:
    """Fire-and-forget speech on a background thread."""

    def __init__(
        self,
        enabled: bool = True,
        command: Optional[str] = None,
        duration_gauge: Optional[Gauge] = None,
        render: Optional[Callable[[str], None]] = None,
        timeout_s: float = 30.0,
    ):
        self.enabled = enabled
        self.command = command or default_tts_command()
        self.duration_gauge = duration_gauge or Gauge()
        self.timeout_s = timeout_s
        self._render = render or self._run_command
        self._queue: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None

        if self.enabled and render is None and self.command is None:
            logger.warning("No text-to-speech command available, alerts will only be logged")

    def start(self) -> None:
        if not self.enabled or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._worker, name="speech", daemon=True)
        self._thread.start()

    def speak(self, text: str) -> None:
        logger.info("Speak", text=text)
        if self.enabled and self._thread is not None:
            self._queue.put(text)

    def stop(self, timeout: float = 2.0) -> None:
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _worker(self) -> None:
        while True:
            text = self._queue.get()
            if text is _STOP:
                break
            started = time.perf_counter()
            try:
                self._render(text)
            except Exception as e:
                logger.warning("Speech failed", text=text, error=str(e))
            self.duration_gauge.set(round((time.perf_counter() - started) * 1000, 3))

    def _run_command(self, text: str) -> None:
        if self.command is None:
            return
        subprocess.run(
            build_argv(self.command, text),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=self.timeout_s,
            check=False,
        )
