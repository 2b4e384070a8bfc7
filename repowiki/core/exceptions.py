"""Typed errors raised by the RepoWiki pipeline."""

import re

_URL_USERINFO = re.compile(r"(\b[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


def redact_credentials(text: str) -> str:
    """Mask the ``user:password@`` part of any URL in the text."""
    return _URL_USERINFO.sub(r"\1***@", text)


class RepoWikiError(Exception):
    """Base class for pipeline errors."""


class GitCommandError(RepoWikiError):
    """A git invocation exited non-zero or timed out.

    URL credentials are masked in the stored command, stderr and message.
    """

    def __init__(self, command, returncode: int, stderr: str = ""):
        self.command = [redact_credentials(str(arg)) for arg in command]
        self.returncode = returncode
        self.stderr = redact_credentials(stderr)
        detail = self.stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(self.command[1:3])} failed: {detail}")


class LLMOutputParseError(RepoWikiError):
    """Model output did not contain a parseable payload."""

    def __init__(self, message: str, raw_output: str = ""):
        self.raw_output = raw_output[:2000]
        super().__init__(message)


class UnsupportedWarehouseTypeError(RepoWikiError):
    def __init__(self, warehouse_type: str):
        self.warehouse_type = warehouse_type
        super().__init__(f"Unsupported warehouse type: {warehouse_type}")


class OperationCancelled(RepoWikiError):
    """Raised inside a unit of work when its cancellation signal fires."""


class TaskNotFoundError(RepoWikiError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Translation task {task_id} not found")
