"""
Utility Module: Observer-Based Logging for the Price History Pipeline.

A single `PipelineLogger` (the Subject) broadcasts every log event to the
observers attached to it. The pipeline code only ever talks to the logger;
where the messages end up (terminal, log file, test buffer) is decided by
which observers are attached.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Tuple

# Severity ordering used to silence chatty levels per observer.
LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}


class LogObserver(ABC):
    """
    The Abstract Blueprint for all Log Observers.

    Attributes:
        min_level (str): Events below this severity are ignored by the observer.
    """

    def __init__(self, min_level: str = "INFO") -> None:
        self.min_level = min_level

    def accepts(self, level: str) -> bool:
        return LEVELS.get(level, 0) >= LEVELS.get(self.min_level, 0)

    @abstractmethod
    def update(self, level: str, message: str) -> None:
        """
        Receives the broadcasted log event from the Subject.

        Args:
            level (str): The severity level of the log (e.g., 'INFO', 'ERROR').
            message (str): The actual log message content.
        """
        pass


class ConsoleObserver(LogObserver):
    """
    Concrete Observer: Terminal Output.

    Prints each event with an ANSI color per severity, so skipped rows and
    fatal errors stand out during a long streaming pass.
    """

    COLORS = {
        "DEBUG": "\033[90m",   # Grey
        "INFO": "\033[94m",    # Blue
        "WARNING": "\033[93m", # Yellow
        "ERROR": "\033[91m",   # Red
        "ENDC": "\033[0m"      # Reset
    }

    def update(self, level: str, message: str) -> None:
        color = self.COLORS.get(level, self.COLORS["ENDC"])
        print(f"{color}[{level}] {message}{self.COLORS['ENDC']}")


class FileObserver(LogObserver):
    """
    Concrete Observer: Persistent Run Log.

    Appends timestamped events to a text file, one line per event.

    Attributes:
        filepath (Path): The absolute path to the target log file.
    """

    def __init__(self, filepath: Path, min_level: str = "DEBUG") -> None:
        super().__init__(min_level)
        self.filepath = filepath
        # The logs/ directory may not exist on a fresh checkout
        self.filepath.parent.mkdir(parents=True, exist_ok=True)

    def update(self, level: str, message: str) -> None:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with open(self.filepath, "a", encoding="utf-8") as file:
            file.write(f"{timestamp} - [{level}] - {message}\n")


class MemoryObserver(LogObserver):
    """
    Concrete Observer: In-Memory Buffer.

    Keeps (level, message) pairs in a list. Used by the test-suite to assert
    on what a stage reported without touching the terminal or disk.
    """

    def __init__(self, min_level: str = "DEBUG") -> None:
        super().__init__(min_level)
        self.records: List[Tuple[str, str]] = []

    def update(self, level: str, message: str) -> None:
        self.records.append((level, message))

    def messages(self, level: str = None) -> List[str]:
        return [msg for lvl, msg in self.records if level is None or lvl == level]


class LogSubject(ABC):
    """
    The Abstract Blueprint for the Log Publisher.

    Manages the subscription list and fans each event out to every observer
    whose threshold accepts it.

    Attributes:
        _observers (List[LogObserver]): The internal list of subscribed observers.
    """

    def __init__(self) -> None:
        self._observers: List[LogObserver] = []

    def attach(self, observer: LogObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def detach(self, observer: LogObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def notify(self, level: str, message: str) -> None:
        for observer in self._observers:
            if observer.accepts(level):
                observer.update(level, message)


class PipelineLogger(LogSubject):
    """
    The Concrete Log Publisher.

    Attributes:
        name (str): The component name prefixed to every message (e.g., 'LookupBuilder').
    """

    def __init__(self, name: str = "Pipeline") -> None:
        super().__init__()
        self.name = name

    def _emit(self, level: str, message: str) -> None:
        self.notify(level, f"{self.name} | {message}")

    def debug(self, message: str) -> None:
        """Logs per-row detail (skipped rows, reducer decisions)."""
        self._emit("DEBUG", message)

    def info(self, message: str) -> None:
        """Logs an informational message (standard execution flow)."""
        self._emit("INFO", message)

    def warning(self, message: str) -> None:
        """Logs a warning message (row-level skips, empty stages)."""
        self._emit("WARNING", message)

    def error(self, message: str) -> None:
        """Logs an error message (fatal configuration or schema failures)."""
        self._emit("ERROR", message)


# Observers shared by every logger created through get_logger(), so tests can
# capture output from all stages with one MemoryObserver.
_SHARED_OBSERVERS: List[LogObserver] = []


def register_observer(observer: LogObserver) -> None:
    """Attaches an observer to every logger created afterwards by get_logger()."""
    if observer not in _SHARED_OBSERVERS:
        _SHARED_OBSERVERS.append(observer)


def unregister_observer(observer: LogObserver) -> None:
    if observer in _SHARED_OBSERVERS:
        _SHARED_OBSERVERS.remove(observer)


def get_logger(name: str = "Pipeline", filename: str = "pricehist.log") -> PipelineLogger:
    """
    Factory Function: Assembles the standard logging system.

    Creates a PipelineLogger, attaches the console observer, a file observer
    writing to <project_root>/logs/<filename>, and any observers registered
    through register_observer().

    Args:
        name (str): Component name used as the message prefix.
        filename (str, optional): The log file name. Defaults to "pricehist.log".

    Returns:
        PipelineLogger: The fully configured Subject ready to accept messages.
    """
    logger = PipelineLogger(name)

    project_root = Path(__file__).resolve().parent.parent.parent
    log_file: Path = project_root / "logs" / filename

    logger.attach(ConsoleObserver())
    logger.attach(FileObserver(log_file))
    for observer in _SHARED_OBSERVERS:
        logger.attach(observer)

    return logger
