"""Exceptions raised at the boundary with upstream data providers."""


class UpstreamDataError(RuntimeError):
    """
    Raw filings or price history could not be retrieved.

    Retries (if any) already happened inside the API client; callers treat
    this as fatal for the current request.
    """

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code
