class HlsfyError(Exception):
    """Base class for conversion failures."""


class ToolError(HlsfyError):
    """An external program (ffprobe, ffmpeg, packager) exited with a non-zero code."""

    def __init__(self, tool: str, returncode: int, stderr: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"{tool} exited with code {returncode}: {detail}")


class TransferError(HlsfyError):
    """A download or upload kept failing after every retry."""


class InputError(HlsfyError):
    """The source cannot be converted; retrying would fail the same way."""


class UnsupportedSubtitle(HlsfyError):
    pass


class PackagerNotFound(HlsfyError):
    pass


class JobFailed(HlsfyError):
    """The isolated converter process did not finish successfully."""


class JobNotFound(HlsfyError):
    pass


class ResubmitRejected(HlsfyError):
    """A ``processId`` resubmission that would give one job id two executions."""
