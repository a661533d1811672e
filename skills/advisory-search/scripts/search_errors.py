"""
search_errors.py — Failures raised by build_index.py and search_page.py.

Build time:  InputNotFound, MalformedInput, WriteFailure
Query time:  IndexNotLoaded, RenderTargetMissing

None of them is retried; the CLI entry points print the message and exit 1.
"""


class SearchError(Exception):
    """Base class for every advisory search failure."""


class InputNotFound(SearchError):
    pass


class MalformedInput(SearchError):
    pass


class WriteFailure(SearchError):
    pass


class IndexNotLoaded(SearchError):
    pass


class RenderTargetMissing(SearchError):
    pass
