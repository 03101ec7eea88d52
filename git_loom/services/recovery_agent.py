"""Recovery agent boundary.

A recovery agent is an external assistant process that is pointed at a
worktree with conflicts and asked to fix them. git-loom treats it as
opaque: it is run once, awaited to completion, and any error it raises
just means recovery failed.

Whether an agent is available is decided once, when the orchestrator is
built, and expressed as an :class:`AgentCapability` value.
"""

import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Union

from git_loom.config import Settings
from git_loom.constants import RECOVERY_ALLOWED_TOOLS
from git_loom.exceptions import RecoveryAgentError
from git_loom.logging_config import get_logger

logger = get_logger(__name__)


class RecoveryAgent(ABC):
    """Anything that can be asked to fix a worktree in place."""

    @abstractmethod
    def invoke(
        self, task_prompt: str, working_directory: str, interactive: bool = True
    ) -> Optional[str]:
        """Run the agent against ``working_directory`` and block until it exits.

        Returns:
            Captured output in non-interactive mode, otherwise None

        Raises:
            RecoveryAgentError: If the agent could not run or exited with an error
        """


class ClaudeCliRecoveryAgent(RecoveryAgent):
    """Runs the ``claude`` CLI as the recovery agent."""

    def __init__(
        self,
        binary: str = "claude",
        allowed_tools: Optional[List[str]] = None,
        system_prompt: Optional[str] = None,
    ):
        self.binary = binary
        self.allowed_tools = list(allowed_tools) if allowed_tools is not None else list(RECOVERY_ALLOWED_TOOLS)
        self.system_prompt = system_prompt

    def build_command(self, task_prompt: str, working_directory: str, interactive: bool) -> List[str]:
        command = [self.binary]
        if not interactive:
            command.extend(["-p", "--output-format", "text"])
        command.extend(["--add-dir", working_directory])
        if self.system_prompt:
            command.extend(["--append-system-prompt", self.system_prompt])
        if self.allowed_tools:
            command.extend(["--allowed-tools", *self.allowed_tools])
        if interactive:
            # --allowed-tools is variadic, so end option parsing before the prompt
            command.extend(["--", task_prompt])
        return command

    def invoke(
        self, task_prompt: str, working_directory: str, interactive: bool = True
    ) -> Optional[str]:
        command = self.build_command(task_prompt, working_directory, interactive)
        env = os.environ.copy()
        env["CLAUDECODE"] = "0"  # Don't let a nested session think it is inside another one

        logger.debug(f"Launching recovery agent in {working_directory}: {self.binary}")
        try:
            if interactive:
                # Inherit the terminal so the user can talk to the agent
                result = subprocess.run(command, cwd=working_directory, env=env)
            else:
                result = subprocess.run(
                    command,
                    cwd=working_directory,
                    env=env,
                    input=task_prompt,
                    capture_output=True,
                    text=True,
                )
        except FileNotFoundError as e:
            raise RecoveryAgentError(f"Recovery agent binary not found: {self.binary}") from e
        except OSError as e:
            raise RecoveryAgentError(f"Could not start recovery agent: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip() if not interactive else ""
            message = f"Recovery agent exited with code {result.returncode}"
            if stderr:
                message += f": {stderr}"
            raise RecoveryAgentError(message)

        return None if interactive else (result.stdout or "")


@dataclass(frozen=True)
class Supported:
    """A recovery agent is available."""

    agent: RecoveryAgent


@dataclass(frozen=True)
class Unsupported:
    """No recovery agent; conflicts go straight to the user."""

    reason: str


AgentCapability = Union[Supported, Unsupported]


def detect_recovery_agent(settings: Settings) -> AgentCapability:
    """Decide once whether the configured recovery agent can be used."""
    binary = settings.recovery_agent_binary
    if not binary:
        return Unsupported("No recovery agent configured")
    if shutil.which(binary) is None:
        logger.debug(f"Recovery agent {binary} not found on PATH")
        return Unsupported(f"'{binary}' is not installed or not on PATH")
    return Supported(ClaudeCliRecoveryAgent(binary=binary))
