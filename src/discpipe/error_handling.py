"""Error taxonomy and user-facing error display."""

import logging
import shutil
from enum import Enum
from pathlib import Path

from rich.console import Console

logger = logging.getLogger(__name__)
console = Console()


class ErrorCategory(Enum):
    """Categories of errors for better user experience."""

    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    HARDWARE = "hardware"
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    MEDIA = "media"
    EXTERNAL_TOOL = "external_tool"
    STATE = "state"
    SYSTEM = "system"


class DiscPipeError(Exception):
    """Base exception for discpipe with enhanced user experience."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        *,
        solution: str | None = None,
        details: str | None = None,
        recoverable: bool = True,
        log_level: int = logging.ERROR,
        original_error: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.solution = solution
        self.details = details
        self.recoverable = recoverable
        self.log_level = log_level
        self.original_error = original_error

    def display_to_user(self) -> None:
        """Display error to user with helpful context."""
        category_styles = {
            ErrorCategory.CONFIGURATION: ("⚙️", "yellow"),
            ErrorCategory.DEPENDENCY: ("📦", "red"),
            ErrorCategory.HARDWARE: ("🔌", "red"),
            ErrorCategory.NETWORK: ("🌐", "orange"),
            ErrorCategory.FILESYSTEM: ("📁", "red"),
            ErrorCategory.MEDIA: ("💿", "blue"),
            ErrorCategory.EXTERNAL_TOOL: ("🔧", "red"),
            ErrorCategory.STATE: ("🔀", "red"),
            ErrorCategory.SYSTEM: ("💻", "red"),
        }

        emoji, color = category_styles.get(self.category, ("❌", "red"))

        console.print(
            f"\n{emoji} [{color} bold]{self.category.value.title()} Error[/{color} bold]",
        )
        console.print(f"[{color}]{self.message}[/{color}]")

        if self.details:
            console.print(f"\n[dim]Details:[/dim] {self.details}")

        if self.solution:
            console.print(f"\n[green]💡 Solution:[/green] {self.solution}")

        if self.recoverable:
            console.print(
                "\n[dim]This error may be temporary. You can try again.[/dim]",
            )
        else:
            console.print(
                "\n[dim]This error requires intervention before continuing.[/dim]",
            )

        if self.original_error:
            logger.log(
                self.log_level,
                "%s: %s",
                self.category.value,
                self.message,
                exc_info=self.original_error,
            )
        else:
            logger.log(self.log_level, "%s: %s", self.category.value, self.message)


class ConfigurationError(DiscPipeError):
    """Missing or invalid configuration. Fatal at startup."""

    def __init__(self, message: str, *, config_path: Path | None = None, **kwargs):
        solution = kwargs.pop("solution", None)
        if not solution and config_path:
            solution = f"Check your configuration file at {config_path}"
        kwargs.setdefault("recoverable", False)
        super().__init__(
            message,
            ErrorCategory.CONFIGURATION,
            solution=solution,
            **kwargs,
        )


class DependencyError(DiscPipeError):
    """Missing or broken dependency errors."""

    def __init__(
        self,
        dependency: str,
        *,
        install_command: str | None = None,
        **kwargs,
    ):
        message = f"Required dependency '{dependency}' is not available"
        solution = kwargs.pop("solution", None)
        if not solution and install_command:
            solution = f"Install with: {install_command}"
        super().__init__(
            message,
            ErrorCategory.DEPENDENCY,
            solution=solution,
            recoverable=False,
            **kwargs,
        )

    def __str__(self) -> str:
        return self.message


class MountError(DiscPipeError):
    """The disc could not be mounted. Fatal to the job."""

    def __init__(self, message: str, **kwargs):
        solution = kwargs.pop(
            "solution",
            "Check disc is inserted properly and the mount point is writable",
        )
        super().__init__(message, ErrorCategory.HARDWARE, solution=solution, **kwargs)


class IdentificationError(DiscPipeError):
    """A metadata or AI source failed. Always recovered by the resolver."""

    def __init__(self, source: str, message: str, **kwargs):
        super().__init__(
            f"{source}: {message}",
            ErrorCategory.NETWORK,
            log_level=logging.WARNING,
            **kwargs,
        )
        self.source = source


class ToolError(DiscPipeError):
    """External tool execution errors."""

    def __init__(
        self,
        tool: str,
        exit_code: int | None = None,
        stderr: str | None = None,
        **kwargs,
    ):
        message = kwargs.pop("message", None) or f"{tool} failed"
        if exit_code is not None:
            message += f" with exit code {exit_code}"

        details = kwargs.pop("details", stderr)
        solution = kwargs.pop(
            "solution",
            f"Check {tool} is properly installed and configured",
        )

        super().__init__(
            message,
            ErrorCategory.EXTERNAL_TOOL,
            details=details,
            solution=solution,
            **kwargs,
        )
        self.tool = tool
        self.exit_code = exit_code


class ExtractionError(ToolError):
    """The disc extraction phase failed. Fatal to the job."""


class TranscodeError(ToolError):
    """The transcoding phase failed. Fatal to the job."""


class RelocationError(DiscPipeError):
    """A produced file could not be moved into the library."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            ErrorCategory.FILESYSTEM,
            log_level=logging.WARNING,
            **kwargs,
        )


class NotificationError(DiscPipeError):
    """A notification channel could not deliver."""

    def __init__(self, channel: str, message: str, **kwargs):
        super().__init__(
            f"{channel}: {message}",
            ErrorCategory.NETWORK,
            log_level=logging.WARNING,
            **kwargs,
        )
        self.channel = channel


class InvalidTransitionError(DiscPipeError):
    """A job status change that the state machine does not allow."""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(
            f"Illegal job status transition: {current} -> {target}",
            ErrorCategory.STATE,
            recoverable=False,
            **kwargs,
        )
        self.current = current
        self.target = target


def handle_error(
    error: Exception,
    *,
    category: ErrorCategory | None = None,
    **kwargs,
) -> None:
    """Convert generic exceptions to DiscPipeError and display to user."""
    if isinstance(error, DiscPipeError):
        error.display_to_user()
        return

    if category is None:
        if isinstance(error, FileNotFoundError | PermissionError):
            category = ErrorCategory.FILESYSTEM
        elif isinstance(error, ConnectionError | TimeoutError):
            category = ErrorCategory.NETWORK
        else:
            category = ErrorCategory.SYSTEM

    wrapped = DiscPipeError(
        message=str(error) or "An unexpected error occurred",
        category=category,
        original_error=error,
        **kwargs,
    )
    wrapped.display_to_user()


def check_dependencies(*, use_ffmpeg: bool = False) -> list[DependencyError]:
    """Check for missing external tools and return list of errors."""
    errors = []

    if not shutil.which("makemkvcon"):
        errors.append(
            DependencyError(
                "MakeMKV",
                solution="Install MakeMKV from https://makemkv.com/ or your package manager",
                details="MakeMKV is required for disc ripping",
            ),
        )

    if use_ffmpeg:
        if not shutil.which("ffmpeg"):
            errors.append(
                DependencyError(
                    "ffmpeg",
                    install_command="sudo apt install ffmpeg",
                    details="ffmpeg is the configured transcoder",
                ),
            )
    elif not shutil.which("HandBrakeCLI"):
        errors.append(
            DependencyError(
                "HandBrakeCLI",
                install_command="sudo apt install handbrake-cli",
                details="HandBrakeCLI is the configured transcoder",
            ),
        )

    return errors

