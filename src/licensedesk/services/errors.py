from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import pydantic

from licensedesk.exceptions import ConsoleError, ServerError

logger = logging.getLogger(__name__)


@contextmanager
def normalized_errors(operation: str, fallback: str) -> Iterator[None]:
    """
    Turn any failure of a remote call into a ``ConsoleError``.

    The server's message wins; ``fallback`` is used when it sent none.
    Response bodies that do not match the expected record shape surface
    as ``ServerError``.
    """
    try:
        yield
    except ConsoleError as exc:
        logger.error("%s API error: %s", operation, exc.server_message or exc.message)
        raise exc.with_fallback(fallback)
    except pydantic.ValidationError as exc:
        logger.error("%s API error: unexpected response shape: %s", operation, exc)
        raise ServerError(fallback) from exc
