"""Command execution inside sandboxes."""

import logging
import shlex
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from e2b import CommandExitException
from e2b_code_interpreter import Sandbox

from agentbox.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a blocking command.

    ``exit_code`` is None when the command could not be executed at all,
    as opposed to running and exiting non-zero.
    """

    success: bool
    exit_code: int | None
    output: str
    error: str
    command: str


@dataclass
class StreamingCommandResult:
    """Outcome of a detached command followed until completion."""

    success: bool
    exit_code: int | None
    stderr: str
    command: str
    completed: bool = False
    error: str | None = None


class CommandService:
    """Service for running shell commands in a sandbox."""

    @staticmethod
    def build_command(command: str, args: list[str] | None = None) -> str:
        """Compose a command string, quoting every argument on its own."""
        if not args:
            return command
        return " ".join([command, *(shlex.quote(arg) for arg in args)])

    @staticmethod
    def run_command(
        sandbox: Sandbox,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        envs: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command in the sandbox and wait for it.

        Never raises: a non-zero exit and a failure to execute both come
        back as a CommandResult with ``success=False``.

        Args:
            sandbox: The sandbox instance
            command: Executable or shell snippet (not escaped)
            args: Arguments, each shell-quoted individually
            cwd: Working directory
            envs: Extra environment for this command only
            timeout: Timeout in seconds (defaults to settings.command_timeout)

        Returns:
            CommandResult with exit code and captured output
        """
        full_command = CommandService.build_command(command, args)
        try:
            result = sandbox.commands.run(
                full_command,
                cwd=cwd,
                envs=envs or None,
                timeout=timeout if timeout is not None else settings.command_timeout,
            )
        except CommandExitException as e:
            # E2B raises for non-zero exit codes, output is still attached
            return CommandResult(
                success=False,
                exit_code=e.exit_code,
                output=getattr(e, "stdout", "") or "",
                error=getattr(e, "stderr", "") or str(e),
                command=full_command,
            )
        except Exception as e:
            logger.error(f"Failed to run command in sandbox: {e}")
            return CommandResult(
                success=False,
                exit_code=None,
                output="",
                error=str(e) or e.__class__.__name__,
                command=full_command,
            )

        return CommandResult(
            success=result.exit_code == 0,
            exit_code=result.exit_code,
            output=result.stdout or "",
            error=result.stderr or "",
            command=full_command,
        )

    @staticmethod
    def run_in_project(
        sandbox: Sandbox,
        command: str,
        args: list[str] | None = None,
        envs: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command from the cloned project root."""
        return CommandService.run_command(
            sandbox, command, args, cwd=settings.project_dir, envs=envs, timeout=timeout
        )

    @staticmethod
    def start_detached(
        sandbox: Sandbox,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        envs: dict[str, str] | None = None,
    ):
        """Start a long-running command in the background.

        Returns:
            The provider's command handle, or None if it could not start
        """
        full_command = CommandService.build_command(command, args)
        try:
            return sandbox.commands.run(
                full_command, background=True, cwd=cwd, envs=envs or None, timeout=0
            )
        except Exception as e:
            logger.error(f"Failed to start background command: {e}")
            return None

    @staticmethod
    def run_streaming_command(
        sandbox: Sandbox,
        command: str,
        args: list[str] | None = None,
        *,
        on_stdout: Callable[[str], None],
        is_complete: Callable[[], bool] = lambda: False,
        cwd: str | None = None,
        envs: dict[str, str] | None = None,
        poll_interval: float | None = None,
        warn_after: float | None = None,
        on_warning: Callable[[], None] | None = None,
    ) -> StreamingCommandResult:
        """Run a detached command and poll until it exits or signals completion.

        Output is drained on a reader thread that feeds ``on_stdout`` as data
        arrives. The calling thread polls every ``poll_interval`` seconds and
        stops waiting as soon as ``is_complete()`` is true or the process
        exits. A process still running after signalling completion is killed,
        and ``on_stdout`` is never called once this method returns. The
        sandbox timeout is the hard limit; ``warn_after`` only triggers
        ``on_warning`` once.

        Returns:
            StreamingCommandResult; never raises
        """
        full_command = CommandService.build_command(command, args)
        interval = poll_interval if poll_interval is not None else settings.agent_poll_interval

        handle = CommandService.start_detached(sandbox, full_command, cwd=cwd, envs=envs)
        if handle is None:
            return StreamingCommandResult(
                success=False,
                exit_code=None,
                stderr="",
                command=full_command,
                error="Failed to start command",
            )

        stderr_chunks: list[str] = []
        outcome: dict[str, int | str] = {}
        feed_lock = threading.Lock()
        closed = threading.Event()

        def feed(chunk: str) -> None:
            with feed_lock:
                if not closed.is_set():
                    on_stdout(chunk)

        def drain() -> None:
            try:
                result = handle.wait(on_stdout=feed, on_stderr=stderr_chunks.append)
                outcome["exit_code"] = result.exit_code
            except CommandExitException as e:
                outcome["exit_code"] = e.exit_code
            except Exception as e:
                outcome["error"] = str(e) or e.__class__.__name__

        reader = threading.Thread(target=drain, name="sandbox-stream", daemon=True)
        reader.start()

        started = time.monotonic()
        warned = False
        while reader.is_alive() and not is_complete():
            reader.join(interval)
            if (
                not warned
                and warn_after is not None
                and time.monotonic() - started >= warn_after
            ):
                warned = True
                if on_warning is not None:
                    on_warning()

        completed = is_complete()
        if completed and reader.is_alive():
            # Give trailing output one more interval to arrive
            reader.join(interval)
            if reader.is_alive():
                logger.info("Command signalled completion but is still running, killing it")
                try:
                    handle.kill()
                except Exception as e:
                    logger.warning(f"Failed to kill command: {e}")
                reader.join(settings.command_kill_grace)

        # Output arriving after this point is dropped
        with feed_lock:
            closed.set()

        exit_code = outcome.get("exit_code")
        error = outcome.get("error")
        if error:
            logger.warning(f"Streaming command ended with error: {error}")

        return StreamingCommandResult(
            success=completed or exit_code == 0,
            exit_code=exit_code,
            stderr="".join(stderr_chunks),
            command=full_command,
            completed=completed,
            error=error,
        )
