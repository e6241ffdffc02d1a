class HumanizeError(RuntimeError):
    code = "HUMANIZE_ERROR"


class ValidationError(HumanizeError):
    code = "VALIDATION_ERROR"


class EmptyInput(ValidationError):
    code = "EMPTY_INPUT"

    def __init__(self, message: str = "Please enter some text to humanize") -> None:
        super().__init__(message)


class TooShort(ValidationError):
    code = "TOO_SHORT"

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(f"Text must be at least {minimum} characters long to be humanized (got {length}).")
        self.length = length
        self.minimum = minimum


class Unauthenticated(ValidationError):
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "You must be logged in to use this feature") -> None:
        super().__init__(message)


class ProjectAccessDenied(ValidationError):
    code = "PROJECT_ACCESS_DENIED"

    def __init__(self, project_id: str) -> None:
        super().__init__(f"You do not own project {project_id}")
        self.project_id = project_id


class InsufficientCredits(HumanizeError):
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, required: int, available: int, shortfall: int) -> None:
        super().__init__(
            f"Not enough credits. This operation requires {required} credits, "
            f"but you only have {available} available ({shortfall} short)."
        )
        self.required = required
        self.available = available
        self.shortfall = shortfall


class SaveFailed(HumanizeError):
    """The remote job succeeded but the charge or project save did not persist.

    The humanized text is kept on the exception so the caller can still show it.
    """

    code = "SAVE_FAILED"

    def __init__(self, humanized_text: str, job_id: str, reason: str) -> None:
        super().__init__(f"Your text was humanized but could not be saved: {reason}")
        self.humanized_text = humanized_text
        self.job_id = job_id
        self.reason = reason


class ProjectNotFound(HumanizeError):
    code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id
