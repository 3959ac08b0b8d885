"""Failure taxonomy for provisioning workflows."""


class ProvisionError(Exception):
    """Base class for every failure that aborts a workflow."""


class PreconditionError(ProvisionError):
    """Raised when a step runs before something it depends on exists (wrong OS, missing prior step)."""


class TemplateError(ProvisionError):
    """Raised when a rendered configuration fails validation before being written."""


class VerificationError(ProvisionError):
    """Raised when a step's post-condition does not hold after its action ran."""


class CommandError(ProvisionError):
    """Raised when an OS command cannot be executed or exits non-zero."""

    def __init__(self, argv: list[str], message: str, returncode: int | None = None, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class CommandNotFoundError(CommandError):
    """The executable does not exist on this host."""


class PermissionDeniedError(CommandError):
    """The command was refused for lack of privileges."""


class CommandFailedError(CommandError):
    """The command ran and returned a non-zero exit status."""
