class ClassroomError(Exception):
    """Base class for errors raised by the extractor and the download phases."""


class AuthenticationError(ClassroomError):
    """The session cookies did not get past the login wall."""


class NoWorkItemsError(ClassroomError):
    """A download phase found nothing it could resolve in the classroom data."""


class TransferError(ClassroomError):
    pass


class ExternalToolError(ClassroomError):
    """An external program (yt-dlp, ffmpeg) exited with a non-zero code."""

    def __init__(self, tool: str, returncode: int, stderr: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{tool} exited with code {returncode}: {stderr}")
