"""Module defining custom exceptions for kegworks."""

from __future__ import annotations

from typing import Any, Self

# Exit Codes
EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1
EXIT_SYSTEM_ERROR = 2


class KegError(Exception):
    """Base exception class with context propagation.

    All exceptions in kegworks should inherit from this class.
    Context is a dictionary that accumulates relevant information
    as the exception propagates up the call stack.

    Example:
        raise KegError("An error occurred", context={"package": "foo"})

        # Or with context propagation
        try:
            ...
        except KegError as e:
            raise e.with_context(operation="install")
    """
    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def with_context(self, **new_context: Any) -> Self:
        """Returns the exception with updated context.

        Args:
            **new_context: Additional context to add to the exception.

        Returns:
            The same instance with merged context.
        """
        self.context.update(new_context)
        return self

    def __str__(self) -> str:
        """String representation of the exception including context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class UserError(KegError):
    """Errors caused by user actions, inputs or formula definitions.

    These errors are detected before any filesystem mutation and should
    not be retried without correction.

    CLI should display helpful messages to guide the user.
    """
    pass


class SystemError(KegError):
    """Errors due to system-level issues.

    These errors indicate problems with the build, the source tree or the
    file system. They occur mid-transaction and trigger a rollback.
    """
    pass


## Formula and resolution errors ##

class InvalidFormulaError(UserError):
    """A formula descriptor is malformed."""
    def __init__(
        self,
        message: str | None = None,
        formula: str | None = None,
        reason: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if formula:
            ctx["formula"] = formula
        if reason:
            ctx["reason"] = reason

        if message is None:
            message = f"Invalid formula '{formula or 'unknown'}': {reason or 'unknown reason'}"

        super().__init__(message, context=ctx)


class MissingDependencyError(UserError):
    """A dependency edge cannot be satisfied from the descriptor set.

    `dependent` is None when the requested root itself is unknown.
    """
    def __init__(
        self,
        message: str | None = None,
        dependent: str | None = None,
        dependency: str | None = None,
        constraint: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise MissingDependencyError with the unresolved edge.

        Args:
            message: Optional custom error message.
            dependent: Name of the formula declaring the dependency.
            dependency: Name of the dependency that could not be resolved.
            constraint: Version constraint of the edge, if any.
            context: Additional context information.
        """
        ctx = context or {}
        if dependent:
            ctx["dependent"] = dependent
        ctx["dependency"] = dependency
        if constraint:
            ctx["constraint"] = constraint

        self.dependent = dependent
        self.dependency = dependency
        self.constraint = constraint

        if message is None:
            wanted = f"{dependency}{constraint or ''}"
            if dependent:
                message = f"Unresolved dependency: {dependent} -> {wanted}"
            else:
                message = f"Formula '{wanted}' not found"

        super().__init__(message, context=ctx)


class CyclicDependencyError(UserError):
    """The dependency graph contains a cycle.

    `cycle` lists the node sequence, starting and ending on the same name.
    """
    def __init__(
        self,
        cycle: list[str],
        message: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        ctx["cycle"] = " -> ".join(cycle)
        self.cycle = list(cycle)

        if message is None:
            message = "Dependency cycle detected"

        super().__init__(message, context=ctx)


## Keg store and link errors ##

class AlreadyInstalledError(UserError):
    """A keg for this exact formula and version already exists."""
    def __init__(
        self,
        name: str,
        version: str,
        message: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        ctx["package"] = name
        ctx["version"] = version

        if message is None:
            message = f"{name} {version} is already installed"

        super().__init__(message, context=ctx)


class InvalidStateError(UserError):
    """An operation was attempted against a keg in the wrong lifecycle state."""
    def __init__(
        self,
        keg: str,
        state: str,
        operation: str,
        message: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        ctx["keg"] = keg
        ctx["state"] = state
        ctx["operation"] = operation

        if message is None:
            message = f"Cannot {operation} {keg} while it is {state}"

        super().__init__(message, context=ctx)


class LinkConflictError(UserError):
    """A prefix path is already claimed by another keg or by a real file.

    Recoverable when `owner_name` equals the keg being linked (a version
    upgrade); fatal otherwise.
    """
    def __init__(
        self,
        path: str,
        owner: str,
        keg: str | None = None,
        owner_name: str | None = None,
        owner_version: str | None = None,
        message: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        """Initialise LinkConflictError with the conflicting path and owner.

        Args:
            path: Prefix-relative path that is already taken.
            owner: Display name of the owner ("name@version" or "unmanaged").
            keg: The keg being linked.
            owner_name: Formula name of the owning keg, if managed.
            owner_version: Version of the owning keg, if managed.
            message: Optional custom error message.
            context: Additional context information.
        """
        ctx = context or {}
        ctx["path"] = path
        ctx["owner"] = owner
        if keg:
            ctx["keg"] = keg

        self.path = path
        self.owner = owner
        self.owner_name = owner_name
        self.owner_version = owner_version

        if message is None:
            message = f"Cannot link {path}: already owned by {owner}"

        super().__init__(message, context=ctx)


class KegNotFoundError(UserError):
    """Requested keg is not installed.

    This is UserError - do not retry without changing the package name.
    """
    def __init__(
        self,
        name: str,
        version: str | None = None,
        message: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        ctx["package"] = name
        if version:
            ctx["version"] = version

        if message is None:
            version_str = f" {version}" if version else ""
            message = f"No keg installed for '{name}{version_str}'"

        super().__init__(message, context=ctx)


class KegInUseError(UserError):
    """Other installed kegs still depend on the keg being removed."""
    def __init__(
        self,
        name: str,
        dependents: list[str],
        message: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        ctx["package"] = name
        ctx["dependents"] = ", ".join(dependents)
        self.dependents = list(dependents)

        if message is None:
            message = f"Refusing to uninstall {name}: required by {', '.join(dependents)}"

        super().__init__(message, context=ctx)


## Collaborator errors ##

class BuildFailureError(SystemError):
    """The external build collaborator reported a failure.

    Typically indicates:
        - A non-zero exit status from a build command
        - A build command exceeding its time limit
        - An exception raised by a build procedure

    Triggers rollback of the current transaction.
    """
    def __init__(
        self,
        message: str | None = None,
        formula: str | None = None,
        version: str | None = None,
        phase: str | None = None,
        command: str | None = None,
        returncode: int | None = None,
        timeout: float | None = None,
        error: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if formula:
            ctx["package"] = formula
        if version:
            ctx["version"] = version
        ctx["phase"] = phase or "build"
        if command:
            ctx["command"] = command
        if returncode is not None:
            ctx["returncode"] = returncode
        if timeout is not None:
            ctx["timeout"] = timeout
        if error:
            ctx["error"] = error

        self.formula = formula
        self.phase = ctx["phase"]

        if message is None:
            message = f"Build of {formula or 'unknown'} failed"

        super().__init__(message, context=ctx)


class FetchError(SystemError):
    """The source tree for a formula could not be obtained."""
    def __init__(
        self,
        message: str | None = None,
        formula: str | None = None,
        path: str | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if formula:
            ctx["package"] = formula
        if path:
            ctx["path"] = path

        if message is None:
            message = f"Could not fetch source for {formula or 'unknown'}"

        super().__init__(message, context=ctx)


class CommandTimeoutError(SystemError):
    """A subprocess exceeded its time limit."""
    def __init__(
        self,
        message: str | None = None,
        command: str | None = None,
        timeout: float | None = None,
        context: dict[str, Any] | None = None
    ) -> None:
        ctx = context or {}
        if command:
            ctx["command"] = command
        if timeout is not None:
            ctx["timeout"] = timeout

        self.timeout = timeout

        if message is None:
            message = f"Command timed out after {timeout or 'unknown'}s"

        super().__init__(message, context=ctx)


# CLI Error Message Templates

ERROR_TEMPLATES = {
    KegNotFoundError: (
        "❌ Not installed: {package}\n"
        "   Suggestion: Try 'kegworks list' to see installed kegs"
    ),
    MissingDependencyError: (
        "❌ {message}\n"
        "   Add the missing formula to the formula directory"
    ),
    CyclicDependencyError: (
        "❌ Dependency cycle: {cycle}\n"
        "   Fix the formula dependencies to break the cycle"
    ),
    LinkConflictError: (
        "❌ Link conflict at {path} (owned by {owner})\n"
        "   Unlink the owning keg first with 'kegworks unlink'"
    ),
    KegInUseError: (
        "❌ {message}\n"
        "   Use '--force' to uninstall anyway"
    ),
    BuildFailureError: (
        "⚠️ Build failed: {package} ({phase})\n"
        "   {message}"
    ),
    UserError: (
        "❌ {message}"
    ),
    SystemError: (
        "⚠️ System error: {message}\n"
        "   Please check your system configuration and try again"
    ),
    KegError: (
        "❌ {message}"
    ),
}


def format_error_message(error: KegError) -> str:
    """Formats an error message for CLI display based on the error type.

    Falls back along the class hierarchy to the closest template.

    Args:
        error: The KegError instance to format.

    Returns:
        A formatted string message for CLI display.
    """
    template = ERROR_TEMPLATES[KegError]
    for cls in type(error).__mro__:
        if cls in ERROR_TEMPLATES:
            template = ERROR_TEMPLATES[cls]
            break
    fields = {**getattr(error, "context", {}), "message": error.message}
    try:
        return template.format(**fields)
    except KeyError:
        return f"❌ {error.message}"
