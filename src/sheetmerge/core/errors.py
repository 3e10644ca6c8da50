class SheetMergeError(Exception):
    """Base exception for sheetmerge."""


class ValidationError(SheetMergeError):
    pass


class UnreadableFile(SheetMergeError):
    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"{filename}: {reason}")
        self.filename = filename
        self.reason = reason


class NoSheetsMatched(SheetMergeError):
    pass


class WorkerTimeout(SheetMergeError):
    pass


class WorkerOutOfMemory(SheetMergeError):
    pass


class WorkerCrashed(SheetMergeError):
    pass


class Cancelled(SheetMergeError):
    pass


class JobNotFound(SheetMergeError):
    pass
