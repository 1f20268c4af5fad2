"""Short code generation and collision handling.

Flow Diagram — claim()
======================
::
    ┌─────────────┐
    │ candidate_fn │◄──────────────┐
    └──────┬──────┘               │
           ▼                      │
    ┌─────────────┐   taken       │
    │ store.exists │──────────────►┤ attempt += 1
    └──────┬──────┘               │
           ▼ free                 │
    ┌─────────────┐   conflict    │
    │ insert_fn    │──────────────►┘
    └──────┬──────┘
           ▼ inserted
    ┌─────────────┐
    │ return link  │
    └─────────────┘
    attempts == max  →  GenerationExhaustedError

Key Behaviours
===============
- Codes are drawn from an alphabet without look-alike characters.
- The ``exists`` pre-check only saves a doomed insert; the database unique
  constraint decides who owns a code when two claims race.
- Custom codes share the namespace and the insert path but never retry:
  a conflict is ``CodeTakenError``, a client error.
- Custom codes are shape-checked before any store round trip.
"""

import logging
import re
from collections.abc import Awaitable, Callable

from nanoid import generate

from shortlink.exceptions import (
    CodeTakenError,
    ConflictError,
    EntropyUnavailableError,
    GenerationExhaustedError,
    InvalidCodeError,
)
from shortlink.metrics import CODE_COLLISIONS_TOTAL
from shortlink.models import ShortLink
from shortlink.store import LinkStore

__all__ = ["ALPHABET", "CodeGenerator", "generate_short_code", "is_valid_custom_code", "looks_like_code"]

# URL-safe, without 0/O/o, 1/l/I.
ALPHABET = "23456789abcdefghijkmnpqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ-_"

CUSTOM_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{4,20}$")

InsertFn = Callable[[str], Awaitable[ShortLink]]


def generate_short_code(length: int = 7) -> str:
    if not isinstance(length, int) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    try:
        return generate(ALPHABET, length)
    except (OSError, NotImplementedError) as exc:
        raise EntropyUnavailableError(exc) from exc


LOOKUP_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,20}$")


def is_valid_custom_code(code: object) -> bool:
    return isinstance(code, str) and CUSTOM_CODE_PATTERN.fullmatch(code) is not None


def looks_like_code(code: object) -> bool:
    """Cheap shape check for lookups; anything else cannot exist in the store."""
    return isinstance(code, str) and LOOKUP_CODE_PATTERN.fullmatch(code) is not None


class CodeGenerator:
    """Produces short codes and claims them against the durable store."""

    def __init__(
        self,
        store: LinkStore,
        length: int = 7,
        max_attempts: int = 5,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts!r}")
        self._store = store
        self._length = length
        self._max_attempts = max_attempts
        self._logger = logger or logging.getLogger("shortlink.codegen")

    def generate(self, length: int | None = None) -> str:
        return generate_short_code(length or self._length)

    async def ensure_unique(
        self,
        candidate_fn: Callable[[], str] | None = None,
        max_attempts: int | None = None,
    ) -> str:
        """Return the first candidate with no durable record.

        This is a point-in-time check; use ``claim`` when the code is about to be inserted.
        """
        candidate_fn = candidate_fn or self.generate
        max_attempts = max_attempts or self._max_attempts
        for attempt in range(1, max_attempts + 1):
            code = candidate_fn()
            if not await self._store.exists(code):
                return code
            CODE_COLLISIONS_TOTAL.inc()
            self._logger.debug(f"Candidate {code} already taken (attempt {attempt}/{max_attempts})")
        self._logger.error(f"Short code generation exhausted after {max_attempts} attempts")
        raise GenerationExhaustedError(max_attempts)

    async def claim(
        self,
        insert_fn: InsertFn,
        candidate_fn: Callable[[], str] | None = None,
        max_attempts: int | None = None,
    ) -> ShortLink:
        """Generate, pre-check and insert until one insert succeeds or the budget runs out."""
        candidate_fn = candidate_fn or self.generate
        max_attempts = max_attempts or self._max_attempts
        for attempt in range(1, max_attempts + 1):
            code = candidate_fn()
            if await self._store.exists(code):
                CODE_COLLISIONS_TOTAL.inc()
                self._logger.debug(f"Candidate {code} already taken (attempt {attempt}/{max_attempts})")
                continue
            try:
                return await insert_fn(code)
            except ConflictError:
                CODE_COLLISIONS_TOTAL.inc()
                self._logger.info(f"Lost insert race for {code} (attempt {attempt}/{max_attempts})")
        self._logger.error(f"Short code generation exhausted after {max_attempts} attempts")
        raise GenerationExhaustedError(max_attempts)

    async def claim_custom(self, code: str, insert_fn: InsertFn) -> ShortLink:
        """Claim a caller-supplied code. Never retries; a conflict is the caller's to resolve."""
        if not is_valid_custom_code(code):
            raise InvalidCodeError(code)
        if await self._store.exists(code):
            raise CodeTakenError(code)
        try:
            return await insert_fn(code)
        except ConflictError as exc:
            raise CodeTakenError(code) from exc
