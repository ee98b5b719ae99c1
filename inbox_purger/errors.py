"""
Error classification for purge runs
"""

from googleapiclient.errors import HttpError


QUOTA_MARKERS = ('quota', 'ratelimitexceeded', 'userratelimitexceeded', 'dailylimitexceeded')


class NotAuthenticatedError(RuntimeError):
    """Raised when an operation needs Gmail but no credentials are loaded"""

    def __init__(self, message: str = "Not authenticated. Call authenticate() first."):
        super().__init__(message)


def is_quota_error(error: BaseException) -> bool:
    """True when the failure means the Gmail quota is used up for now"""
    if isinstance(error, HttpError):
        if getattr(error.resp, 'status', None) == 429:
            return True
        text = f"{error} {error.content!r}".lower()
        return any(marker in text for marker in QUOTA_MARKERS)

    return 'quota' in str(error).lower()
