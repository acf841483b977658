"""Unit tests for recovery codes."""

import asyncio
import re

import pytest

from adaptive_mfa.core.auth.models import FactorType
from adaptive_mfa.storage import RecordSet

CODE_FORMAT = re.compile(r"^[A-HJ-NP-Z2-9]{4}-[A-HJ-NP-Z2-9]{4}$")


@pytest.fixture
def backup_codes(components):
    return components.backup_codes


class TestBackupCodes:
    """Tests for generation and redemption."""

    async def test_generation(self, backup_codes, user, storage, components):
        """Test a batch of distinct formatted codes backed by one factor."""
        codes = await backup_codes.generate(user["id"])

        assert len(codes) == 10
        assert len(set(codes)) == 10
        assert all(CODE_FORMAT.match(code) for code in codes)
        rows = await storage.select(RecordSet.BACKUP_CODES, {"user_id": user["id"]})
        assert all(code.replace("-", "") not in row["code_hash"] for code in codes for row in rows)

        await backup_codes.generate(user["id"])
        factors = await components.factors.list_for_user(user["id"])
        assert [f.factor_type for f in factors] == [FactorType.BACKUP_CODE]

    async def test_single_use(self, backup_codes, user):
        """Test each code verifies exactly once."""
        codes = await backup_codes.generate(user["id"])

        assert (await backup_codes.verify(user["id"], {"code": codes[0]})).unwrap()
        assert not (await backup_codes.verify(user["id"], {"code": codes[0]})).unwrap()
        assert await backup_codes.remaining(user["id"]) == 9

    async def test_input_is_normalized(self, backup_codes, user):
        """Test lower case and missing dashes are accepted."""
        codes = await backup_codes.generate(user["id"])

        typed = codes[1].replace("-", " ").lower()

        assert (await backup_codes.verify(user["id"], {"code": typed})).unwrap()

    @pytest.mark.parametrize("code", ["", "ABCD", "ABCD-EFGH-JKLM"])
    async def test_wrong_length_rejected(self, backup_codes, user, code):
        """Test codes of the wrong length fail without a lookup match."""
        await backup_codes.generate(user["id"])

        assert (await backup_codes.verify(user["id"], {"code": code})).unwrap() is False

    async def test_codes_are_per_user(self, backup_codes, user, components):
        """Test one user's code does not verify for another."""
        created = await components.passwords.create_user("bob@example.com", "Sturdy-Lantern-81!")
        other = created.unwrap()
        codes = await backup_codes.generate(user["id"])
        await backup_codes.generate(other["id"])

        assert not (await backup_codes.verify(other["id"], {"code": codes[0]})).unwrap()

    async def test_regeneration_replaces_unused(self, backup_codes, user):
        """Test a new batch voids the unused codes and keeps the used history."""
        old = await backup_codes.generate(user["id"])
        for code in old[:3]:
            await backup_codes.verify(user["id"], {"code": code})

        await backup_codes.generate(user["id"])
        status = await backup_codes.status(user["id"])

        assert (status.total, status.remaining, status.used) == (13, 10, 3)
        assert not status.low
        assert not (await backup_codes.verify(user["id"], {"code": old[5]})).unwrap()

    async def test_low_threshold(self, backup_codes, user):
        """Test the low flag trips at the configured remainder."""
        codes = await backup_codes.generate(user["id"])
        for code in codes[:7]:
            await backup_codes.verify(user["id"], {"code": code})
        assert not await backup_codes.is_low(user["id"])

        await backup_codes.verify(user["id"], {"code": codes[7]})

        assert await backup_codes.is_low(user["id"])
        assert (await backup_codes.status(user["id"])).low

    async def test_concurrent_use_has_one_winner(self, backup_codes, user):
        """Test the same code submitted twice at once succeeds once."""
        codes = await backup_codes.generate(user["id"])

        results = await asyncio.gather(
            *(backup_codes.verify(user["id"], {"code": codes[0]}) for _ in range(5))
        )

        assert sum(1 for r in results if r.unwrap()) == 1

    async def test_enroll_returns_codes(self, backup_codes, user):
        """Test enrollment hands the plaintext codes back once."""
        result = (await backup_codes.enroll(user["id"], {})).unwrap()

        assert result.factor_type is FactorType.BACKUP_CODE
        assert len(result.backup_codes) == 10
        assert result.factor is not None

    async def test_cleanup_deletes_codes(self, backup_codes, user, storage):
        """Test removing the factor drops every code."""
        await backup_codes.generate(user["id"])
        row = (await storage.select(RecordSet.MFA_FACTORS, {"user_id": user["id"]}))[0]

        await backup_codes.cleanup(user["id"], row)

        assert await storage.count(RecordSet.BACKUP_CODES, {"user_id": user["id"]}) == 0
