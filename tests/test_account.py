"""Tests for account.py — address derivation, init code and deploy state."""

import pytest
from web3 import Web3

from sardis_kernel.account import (
    CREATE_ACCOUNT_SELECTOR,
    AccountInitArgs,
    DeployState,
    custom_nonce_key_from_string,
    derive_address,
    generate_init_code,
    is_deployed,
    parse_factory_init_code,
    resolve_account,
)
from sardis_kernel.config import KernelAddresses
from sardis_kernel.exceptions import ConfigurationError, EncodingError, RPCError

from conftest import INIT_CODE_HASH, FakeChainClient


# ============ Fixtures ============

OWNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OWNER_2 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
FACTORY = KernelAddresses().factory


# ============ derive_address ============


class TestDeriveAddress:
    def test_returns_checksummed_address(self):
        addr = derive_address(FACTORY, AccountInitArgs(OWNER, 0), INIT_CODE_HASH)
        assert addr == Web3.to_checksum_address(addr)
        assert len(addr) == 42

    def test_deterministic(self):
        args = AccountInitArgs(OWNER, 0)
        assert derive_address(FACTORY, args, INIT_CODE_HASH) == derive_address(
            FACTORY, args, INIT_CODE_HASH
        )

    def test_matches_create2_formula(self):
        salt = Web3.keccak(bytes.fromhex(OWNER[2:]) + (7).to_bytes(32, "big"))
        digest = Web3.keccak(
            b"\xff" + bytes.fromhex(FACTORY[2:]) + salt + bytes.fromhex(INIT_CODE_HASH[2:])
        )
        expected = Web3.to_checksum_address(digest[12:])
        assert derive_address(FACTORY, AccountInitArgs(OWNER, 7), INIT_CODE_HASH) == expected

    def test_different_index_different_address(self):
        a = derive_address(FACTORY, AccountInitArgs(OWNER, 0), INIT_CODE_HASH)
        b = derive_address(FACTORY, AccountInitArgs(OWNER, 1), INIT_CODE_HASH)
        assert a != b

    def test_different_owner_different_address(self):
        a = derive_address(FACTORY, AccountInitArgs(OWNER, 0), INIT_CODE_HASH)
        b = derive_address(FACTORY, AccountInitArgs(OWNER_2, 0), INIT_CODE_HASH)
        assert a != b

    def test_bad_init_code_hash_rejected(self):
        with pytest.raises(ConfigurationError):
            derive_address(FACTORY, AccountInitArgs(OWNER, 0), "0x1234")

    def test_bad_factory_rejected(self):
        with pytest.raises(ConfigurationError):
            derive_address("0xnotanaddress", AccountInitArgs(OWNER, 0), INIT_CODE_HASH)

    def test_negative_index_rejected(self):
        with pytest.raises(ConfigurationError):
            AccountInitArgs(OWNER, -1)

    def test_index_overflow_rejected(self):
        with pytest.raises(ConfigurationError):
            AccountInitArgs(OWNER, 2**256)

    def test_invalid_owner_rejected(self):
        with pytest.raises(ConfigurationError):
            AccountInitArgs("0x1234", 0)


# ============ Init code ============


class TestInitCode:
    def test_starts_with_factory_and_selector(self):
        init_code = generate_init_code(FACTORY, AccountInitArgs(OWNER, 5))
        assert init_code[:20] == bytes.fromhex(FACTORY[2:])
        assert init_code[20:24] == CREATE_ACCOUNT_SELECTOR
        assert len(init_code) == 20 + 4 + 64

    def test_parse_recovers_factory_and_calldata(self):
        init_code = generate_init_code(FACTORY, AccountInitArgs(OWNER, 5))
        factory, call_data = parse_factory_init_code(init_code)
        assert factory.lower() == FACTORY.lower()
        assert call_data == init_code[20:]

    def test_parse_short_init_code_rejected(self):
        with pytest.raises(EncodingError):
            parse_factory_init_code(b"\x01" * 19)


# ============ Nonce keys ============


class TestCustomNonceKey:
    def test_fits_in_192_bits(self):
        assert 0 <= custom_nonce_key_from_string("payments") < 2**192

    def test_deterministic_and_distinct(self):
        assert custom_nonce_key_from_string("a") == custom_nonce_key_from_string("a")
        assert custom_nonce_key_from_string("a") != custom_nonce_key_from_string("b")


# ============ Deploy state ============


class TestDeployState:
    @pytest.mark.asyncio
    async def test_is_deployed_reads_code(self):
        client = FakeChainClient()
        assert await is_deployed(client, OWNER) is False
        client.deploy(OWNER)
        assert await is_deployed(client, OWNER) is True

    @pytest.mark.asyncio
    async def test_probe_failure_propagates(self):
        client = FakeChainClient()
        client.fail_code_reads = True
        with pytest.raises(RPCError):
            await is_deployed(client, OWNER)

    @pytest.mark.asyncio
    async def test_init_code_empty_once_deployed(self, account_config):
        client = FakeChainClient()
        model = await resolve_account(client, account_config, AccountInitArgs(OWNER, 0))

        assert await model.get_init_code(client) == model.init_code
        assert await model.deploy_state(client) is DeployState.UNDEPLOYED

        client.deploy(model.address)
        assert await model.get_init_code(client) == b""
        assert await model.deploy_state(client) is DeployState.DEPLOYED

    @pytest.mark.asyncio
    async def test_address_stable_across_deployment(self, account_config):
        client = FakeChainClient()
        before = await resolve_account(client, account_config, AccountInitArgs(OWNER, 0))
        client.deploy(before.address)
        after = await resolve_account(client, account_config, AccountInitArgs(OWNER, 0))
        assert before.address == after.address


# ============ Address resolution ============


class TestResolveAccount:
    @pytest.mark.asyncio
    async def test_uses_init_code_hash(self, account_config):
        model = await resolve_account(FakeChainClient(), account_config, AccountInitArgs(OWNER, 2))
        assert model.address == derive_address(FACTORY, AccountInitArgs(OWNER, 2), INIT_CODE_HASH)
        assert model.owner == OWNER
        assert model.factory.lower() == FACTORY.lower()

    @pytest.mark.asyncio
    async def test_falls_back_to_entry_point(self, account_config):
        from dataclasses import replace

        from sardis_kernel.config import FactoryConfig

        expected = "0x000000000000000000000000000000000000dEaD"
        config = replace(account_config, factory=FactoryConfig(address=FACTORY))
        model = await resolve_account(
            FakeChainClient(sender_address=expected), config, AccountInitArgs(OWNER, 0)
        )
        assert model.address == expected

    @pytest.mark.asyncio
    async def test_entry_point_failure_propagates(self, account_config):
        from dataclasses import replace

        from sardis_kernel.config import FactoryConfig

        config = replace(account_config, factory=FactoryConfig(address=FACTORY))
        with pytest.raises(RPCError):
            await resolve_account(FakeChainClient(), config, AccountInitArgs(OWNER, 0))

    @pytest.mark.asyncio
    async def test_deployed_address_override(self, account_config):
        known = "0x1234567890123456789012345678901234567890"
        model = await resolve_account(
            FakeChainClient(), account_config, AccountInitArgs(OWNER, 0), known
        )
        assert model.address == Web3.to_checksum_address(known)

    @pytest.mark.asyncio
    async def test_invalid_override_rejected(self, account_config):
        with pytest.raises(ConfigurationError):
            await resolve_account(
                FakeChainClient(), account_config, AccountInitArgs(OWNER, 0), "0xbad"
            )
