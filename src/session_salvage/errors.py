"""Error taxonomy.

Record-level problems (ParseError) are absorbed and logged by the component
that hits them. Composer-level problems (ReconstructionError) drop only that
composer. StorageError is fatal to the backend that raised it.
"""


class SalvageError(Exception):
    """Base class for session-salvage errors."""


class StorageError(SalvageError):
    """An underlying storage file cannot be opened or read."""

    def __init__(self, path: str, op: str, cause: object = None) -> None:
        self.path = str(path)
        self.op = op  # open, read, query
        self.cause = cause
        super().__init__(f"storage error: {op} {self.path}: {cause}")


class StorageNotFoundError(StorageError):
    """Neither storage form exists at any checked location."""

    def __init__(self, checked: list[str], message: str) -> None:
        self.checked = checked
        SalvageError.__init__(self, message)
        self.path = checked[0] if checked else ""
        self.op = "locate"
        self.cause = None


class ParseError(SalvageError):
    """A single record could not be recovered."""

    def __init__(self, source: str, key: str, cause: object = None) -> None:
        self.source = source
        self.key = key
        self.cause = cause
        super().__init__(f"parse error [{source}] {key}: {cause}")


class ReconstructionError(SalvageError):
    """A whole composer could not be turned into a conversation or session."""

    def __init__(self, composer_id: str, cause: object = None) -> None:
        self.composer_id = composer_id
        self.cause = cause
        super().__init__(f"reconstruction error [{composer_id}]: {cause}")


class ExportError(SalvageError):
    """A session could not be written to its sink."""

    def __init__(self, fmt: str, path: str, cause: object = None) -> None:
        self.format = fmt
        self.path = str(path)
        self.cause = cause
        super().__init__(f"export error [{fmt}] {self.path}: {cause}")


class SessionNotFoundError(SalvageError):
    """An explicitly requested session id is not in the corpus."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"session not found: {session_id}")


class PipelineCancelled(SalvageError):
    """A unit of work was cancelled or ran past its deadline."""
