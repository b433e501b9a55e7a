from __future__ import annotations


class IntakeError(Exception):
    """Base class for failures raised by the intake pipeline."""


class ExtractionError(IntakeError):
    def __init__(self, message: str, *, filename: str = "", attempts: list[str] | None = None):
        super().__init__(message)
        self.filename = filename
        self.attempts = attempts or []


class ParsingError(IntakeError):
    def __init__(self, message: str, *, errors: dict[str, str] | None = None):
        super().__init__(message)
        self.errors = errors or {}


class OperationTimeoutError(IntakeError):
    def __init__(self, operation: str, timeout_sec: float):
        super().__init__(f"{operation} timed out after {timeout_sec:g}s")
        self.operation = operation
        self.timeout_sec = timeout_sec


class CircuitOpenError(IntakeError):
    def __init__(self, dependency: str, retry_after_sec: float = 0.0):
        super().__init__(f"circuit open for {dependency}; retry in {retry_after_sec:.1f}s")
        self.dependency = dependency
        self.retry_after_sec = retry_after_sec


class DuplicateApplicationError(IntakeError):
    def __init__(self, email: str, job_id: int | None):
        target = f"job {job_id}" if job_id is not None else "unassigned"
        super().__init__(f"application already exists for {email} ({target})")
        self.email = email
        self.job_id = job_id


class MailboxError(IntakeError):
    def __init__(self, message: str, *, account: str = ""):
        super().__init__(message)
        self.account = account


class EncryptionError(IntakeError):
    pass
