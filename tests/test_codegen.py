"""Short code generation and claim tests."""

import asyncio
import itertools
from unittest.mock import patch

import pytest

from shortlink.codegen import ALPHABET, CodeGenerator, generate_short_code, is_valid_custom_code, looks_like_code
from shortlink.exceptions import CodeTakenError, EntropyUnavailableError, GenerationExhaustedError, InvalidCodeError
from shortlink.models import ShortLink
from shortlink.store import LinkStore


def test_generate_short_code_default_length() -> None:
    assert len(generate_short_code()) == 7


def test_generate_short_code_custom_length() -> None:
    assert len(generate_short_code(length=10)) == 10


def test_generate_short_code_uses_alphabet_only() -> None:
    for _ in range(200):
        assert all(c in ALPHABET for c in generate_short_code())


def test_alphabet_excludes_look_alikes() -> None:
    for c in "0O1lI":
        assert c not in ALPHABET


@pytest.mark.parametrize("length", [0, -3, "7"])
def test_generate_short_code_rejects_bad_length(length) -> None:
    with pytest.raises(ValueError):
        generate_short_code(length=length)


def test_generate_short_code_entropy_failure() -> None:
    with patch("shortlink.codegen.generate", side_effect=OSError("no randomness")):
        with pytest.raises(EntropyUnavailableError):
            generate_short_code()


def test_custom_code_shape() -> None:
    assert is_valid_custom_code("promo")
    assert is_valid_custom_code("my-link_2024")
    assert not is_valid_custom_code("abc")
    assert not is_valid_custom_code("a" * 21)
    assert not is_valid_custom_code("has space")
    assert not is_valid_custom_code("slash/es")
    assert not is_valid_custom_code(None)


def test_looks_like_code() -> None:
    assert looks_like_code("x")
    assert not looks_like_code("")
    assert not looks_like_code("../etc")


def _inserter(store: LinkStore):
    async def insert(code: str) -> ShortLink:
        return await store.insert(ShortLink.new(code=code, target="https://example.com", retention_days=30))

    return insert


@pytest.mark.asyncio
async def test_claim_inserts_fresh_code(store: LinkStore) -> None:
    generator = CodeGenerator(store)
    link = await generator.claim(_inserter(store))
    assert len(link.code) == 7
    assert await store.exists(link.code)


@pytest.mark.asyncio
async def test_claim_skips_taken_candidates(store: LinkStore) -> None:
    await _inserter(store)("taken01")
    candidates = iter(["taken01", "taken01", "fresh01"])
    generator = CodeGenerator(store, max_attempts=5)

    link = await generator.claim(_inserter(store), candidate_fn=lambda: next(candidates))
    assert link.code == "fresh01"


@pytest.mark.asyncio
async def test_claim_exhausts_budget(store: LinkStore) -> None:
    await _inserter(store)("taken01")
    generator = CodeGenerator(store, max_attempts=3)

    with pytest.raises(GenerationExhaustedError) as exc_info:
        await generator.claim(_inserter(store), candidate_fn=lambda: "taken01")
    assert exc_info.value.attempts == 3


@pytest.mark.asyncio
async def test_ensure_unique_returns_free_candidate(store: LinkStore) -> None:
    await _inserter(store)("taken01")
    candidates = iter(["taken01", "free001"])
    generator = CodeGenerator(store)
    assert await generator.ensure_unique(candidate_fn=lambda: next(candidates)) == "free001"


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_code(store: LinkStore) -> None:
    # Two generators drawing from the same small pool race for the same codes.
    pool = ["pool001", "pool002", "pool003", "pool004"]
    first = itertools.cycle(pool)
    second = itertools.cycle(pool)
    generator = CodeGenerator(store, max_attempts=4)

    results = await asyncio.gather(
        generator.claim(_inserter(store), candidate_fn=lambda: next(first)),
        generator.claim(_inserter(store), candidate_fn=lambda: next(second)),
        return_exceptions=True,
    )
    codes = [r.code for r in results if isinstance(r, ShortLink)]
    assert len(codes) == len(set(codes))
    assert codes


@pytest.mark.asyncio
async def test_claim_custom_rejects_bad_shape(store: LinkStore) -> None:
    with pytest.raises(InvalidCodeError):
        await CodeGenerator(store).claim_custom("no", _inserter(store))


@pytest.mark.asyncio
async def test_claim_custom_taken(store: LinkStore) -> None:
    generator = CodeGenerator(store)
    await generator.claim_custom("promo", _inserter(store))
    with pytest.raises(CodeTakenError):
        await generator.claim_custom("promo", _inserter(store))


@pytest.mark.asyncio
async def test_claim_custom_lost_race_is_code_taken(store: LinkStore) -> None:
    generator = CodeGenerator(store)
    results = await asyncio.gather(
        generator.claim_custom("promo", _inserter(store)),
        generator.claim_custom("promo", _inserter(store)),
        return_exceptions=True,
    )
    assert sum(isinstance(r, ShortLink) for r in results) == 1
    assert sum(isinstance(r, CodeTakenError) for r in results) == 1
