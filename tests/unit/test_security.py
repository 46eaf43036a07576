"""
Unit Tests - Password Hashing & Slugs
=====================================
"""

import pytest

from exceptions import ValidationError
import security
from security import burn_verification, dummy_hash, hash_password, slugify, verify_password


def bcrypt_cost(hashed: str) -> int:
    return int(hashed.split("$")[2])


class TestPasswordHashing:

    @pytest.mark.unit
    async def test_hash_and_verify(self):
        hashed = await hash_password("s3cret-pass", rounds=4)

        assert hashed != "s3cret-pass"
        assert hashed.startswith("$2")
        assert await verify_password("s3cret-pass", hashed)
        assert not await verify_password("wrong-pass", hashed)

    @pytest.mark.unit
    async def test_hashes_are_salted(self):
        first = await hash_password("same-password", rounds=4)
        second = await hash_password("same-password", rounds=4)

        assert first != second

    @pytest.mark.unit
    async def test_password_over_72_bytes_rejected(self):
        with pytest.raises(ValidationError):
            await hash_password("ñ" * 40, rounds=4)

    @pytest.mark.unit
    async def test_overlong_password_never_verifies(self):
        hashed = await hash_password("a" * 72, rounds=4)

        assert not await verify_password("a" * 73, hashed)


class TestTimingGuard:

    @pytest.mark.unit
    @pytest.mark.parametrize("rounds", [4, 5])
    def test_dummy_hash_uses_requested_cost(self, rounds):
        assert bcrypt_cost(dummy_hash(rounds)) == rounds

    @pytest.mark.unit
    async def test_unknown_user_costs_the_same_as_a_stored_hash(self, monkeypatch):
        stored = await hash_password("s3cret-pass", rounds=5)
        checked = []
        real_verify = security._verify

        def recording_verify(password, hashed):
            checked.append(hashed)
            return real_verify(password, hashed)

        monkeypatch.setattr(security, "_verify", recording_verify)

        await burn_verification("s3cret-pass", rounds=5)

        assert len(checked) == 1
        assert bcrypt_cost(checked[0]) == bcrypt_cost(stored) == 5


class TestSlugify:

    @pytest.mark.unit
    @pytest.mark.parametrize("name, slug", [
        ("Taladro Percutor", "taladro-percutor"),
        ("  Llave 1/2\" Ñandú  ", "llave-1-2-nandu"),
        ("---", ""),
    ])
    def test_slugify(self, name, slug):
        assert slugify(name) == slug
