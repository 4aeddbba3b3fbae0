"""Account handle, signing paths and enable flow (kernel_account.py)."""

import asyncio
from dataclasses import replace

import pytest
from eth_abi import decode

from sardis_kernel.call_encoder import Call, CallKind
from sardis_kernel.config import ENTRYPOINT_V07, SigningConfig
from sardis_kernel.exceptions import (
    ApprovalMismatch,
    ConfigurationError,
    PolicyDenied,
    SignTransactionNotSupported,
    SigningRefused,
    ValidatorNotEnabled,
)
from sardis_kernel.plugin_manager import PluginState, decode_enable_signature, enable_typed_data
from sardis_kernel.signature_6492 import is_6492_signature, unwrap_signature_6492
from sardis_kernel.signers import recover_message_signer, recover_typed_data_signer
from sardis_kernel.utils import selector, to_hex
from sardis_kernel.validators import (
    DUMMY_ECDSA_SIGNATURE,
    CallPermission,
    CallPolicy,
    ECDSAValidator,
    ValidatorMode,
    to_permission_validator,
    to_sudo_policy,
)

from conftest import (
    ADDRESSES,
    OP_SEPOLIA,
    OWNER_ADDRESS,
    SEPOLIA,
    SESSION_ADDRESS,
    FakeChainClient,
    SlowSigner,
    build_user_op,
)

TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
RECIPIENT = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
TRANSFER = selector("transfer(address,uint256)") + bytes(64)

TYPED_DATA = {
    "types": {
        "EIP712Domain": [
            {"name": "name", "type": "string"},
            {"name": "chainId", "type": "uint256"},
        ],
        "Mail": [{"name": "contents", "type": "string"}],
    },
    "primaryType": "Mail",
    "domain": {"name": "Test", "chainId": SEPOLIA},
    "message": {"contents": "hello"},
}


# ============ Construction ============


class TestCreateKernelAccount:
    @pytest.mark.asyncio
    async def test_owner_is_sudo_signer(self, make_account, chain_client):
        account = await make_account(chain_client)
        assert account.model.owner == OWNER_ADDRESS
        assert account.chain_id == SEPOLIA
        assert account.regular is None

    @pytest.mark.asyncio
    async def test_index_changes_address(self, make_account, chain_client):
        a = await make_account(chain_client, index=0)
        b = await make_account(chain_client, index=1)
        assert a.address != b.address

    @pytest.mark.asyncio
    async def test_chain_mismatch_rejected(self, make_account, account_config):
        with pytest.raises(ConfigurationError) as exc_info:
            await make_account(FakeChainClient(OP_SEPOLIA), config=account_config)
        assert exc_info.value.details["field"] == "expected_chain_id"

    @pytest.mark.asyncio
    async def test_v07_entry_point_rejected(self, make_account, chain_client, account_config):
        config = replace(account_config, entry_point=ENTRYPOINT_V07)
        with pytest.raises(ConfigurationError):
            await make_account(chain_client, config=config)

    @pytest.mark.asyncio
    async def test_deployed_address_override(self, make_account, chain_client):
        known = "0x1234567890123456789012345678901234567890"
        account = await make_account(chain_client, deployed_account_address=known)
        assert account.address == known

    @pytest.mark.asyncio
    async def test_nonce_read_from_entry_point(self, make_account, chain_client):
        account = await make_account(chain_client)
        chain_client.nonces[(account.address.lower(), 7)] = 3
        assert await account.get_nonce(7) == 3
        assert await account.get_nonce() == 0


# ============ Encoding ============


class TestEncoding:
    @pytest.mark.asyncio
    async def test_dummy_signature_sudo(self, make_account, chain_client):
        account = await make_account(chain_client)
        assert account.get_dummy_signature() == DUMMY_ECDSA_SIGNATURE
        assert len(account.get_dummy_signature()) == 65

    @pytest.mark.asyncio
    async def test_hash_ignores_signature(self, make_account, chain_client):
        account = await make_account(chain_client)
        op = build_user_op(account, Call(target=TOKEN, data=TRANSFER))
        assert account.get_user_operation_hash(op) == account.get_user_operation_hash(
            op.with_signature(b"\x01" * 65)
        )

    @pytest.mark.asyncio
    async def test_init_code_until_deployed(self, make_account, chain_client):
        account = await make_account(chain_client)
        assert await account.get_init_code() == account.model.init_code
        assert await account.is_deployed() is False
        chain_client.deploy(account.address)
        assert await account.get_init_code() == b""
        assert await account.is_deployed() is True


# ============ Sudo signing ============


class TestSudoSigning:
    @pytest.mark.asyncio
    async def test_user_operation_signed_by_sudo(self, make_account, chain_client):
        account = await make_account(chain_client)
        op = build_user_op(account, Call(target=TOKEN, data=TRANSFER))
        signed = await account.sign_user_operation(op)

        signature = bytes.fromhex(signed.signature[2:])
        assert len(signature) == 65
        assert recover_message_signer(
            account.get_user_operation_hash(op), signature
        ) == OWNER_ADDRESS

    @pytest.mark.asyncio
    async def test_sender_mismatch_rejected(self, make_account, chain_client):
        account = await make_account(chain_client)
        op = replace(build_user_op(account, Call(target=TOKEN)), sender=RECIPIENT)
        with pytest.raises(ConfigurationError):
            await account.sign_user_operation(op)

    @pytest.mark.asyncio
    async def test_sign_transaction_not_supported(self, make_account, chain_client):
        account = await make_account(chain_client)
        with pytest.raises(SignTransactionNotSupported):
            account.sign_transaction({"to": TOKEN, "value": 1})


# ============ ERC-1271 / ERC-6492 ============


class TestOffchainSignatures:
    @pytest.mark.asyncio
    async def test_undeployed_message_is_wrapped(self, make_account, chain_client):
        account = await make_account(chain_client)
        signature = await account.sign_message("hello")

        assert is_6492_signature(signature)
        unwrapped = unwrap_signature_6492(signature)
        assert unwrapped.factory == account.model.factory
        assert unwrapped.factory_calldata == account.model.init_code[20:]
        assert recover_message_signer(b"hello", unwrapped.signature) == OWNER_ADDRESS

    @pytest.mark.asyncio
    async def test_deployed_message_is_plain(self, make_account, chain_client):
        account = await make_account(chain_client)
        chain_client.deploy(account.address)
        signature = await account.sign_message(b"\x01\x02")
        assert len(signature) == 65
        assert recover_message_signer(b"\x01\x02", signature) == OWNER_ADDRESS

    @pytest.mark.asyncio
    async def test_typed_data_wrapped_while_undeployed(self, make_account, chain_client):
        account = await make_account(chain_client)
        signature = await account.sign_typed_data(TYPED_DATA)
        inner = unwrap_signature_6492(signature).signature
        assert recover_typed_data_signer(TYPED_DATA, inner) == OWNER_ADDRESS

    @pytest.mark.asyncio
    async def test_deploy_state_probed_per_signature(self, make_account, chain_client):
        account = await make_account(chain_client)
        assert is_6492_signature(await account.sign_message("one"))
        chain_client.deploy(account.address)
        assert not is_6492_signature(await account.sign_message("two"))

    @pytest.mark.asyncio
    async def test_probe_failure_propagates(self, make_account, chain_client, owner_signer):
        from sardis_kernel.exceptions import RPCError

        account = await make_account(chain_client)
        chain_client.fail_code_reads = True
        with pytest.raises(RPCError):
            await account.sign_message("hello")

    @pytest.mark.asyncio
    async def test_user_operation_signature_never_wrapped(self, make_account, chain_client):
        account = await make_account(chain_client)
        signed = await account.sign_user_operation(build_user_op(account, Call(target=TOKEN)))
        assert not is_6492_signature(signed.signature)
        assert len(bytes.fromhex(signed.signature[2:])) == 65


# ============ Timeouts ============


class TestSigningTimeouts:
    @pytest.mark.asyncio
    async def test_slow_signer_refused(self, make_account, chain_client, account_config):
        config = replace(
            account_config.with_chain(SEPOLIA), signing=SigningConfig(timeout_seconds=0.05)
        )
        account = await make_account(
            chain_client, sudo=ECDSAValidator(SlowSigner()), config=config
        )
        with pytest.raises(SigningRefused):
            await account.sign_message("hello")
        with pytest.raises(SigningRefused):
            await account.sign_user_operation(build_user_op(account, Call(target=TOKEN)))

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, make_account, chain_client):
        account = await make_account(chain_client, sudo=ECDSAValidator(SlowSigner()))
        task = asyncio.ensure_future(account.sign_message("hello"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


# ============ Regular validator ============


class TestRegularValidator:
    @pytest.fixture
    def transfer_only(self, session_signer):
        return to_permission_validator(
            session_signer,
            [CallPolicy([CallPermission(target=TOKEN, selector=TRANSFER[:4])])],
            ADDRESSES,
        )

    @pytest.mark.asyncio
    async def test_not_enabled_without_approval(self, make_account, chain_client, transfer_only):
        account = await make_account(chain_client, regular=transfer_only)
        with pytest.raises(ValidatorNotEnabled):
            await account.sign_user_operation(
                build_user_op(account, Call(target=TOKEN, data=TRANSFER))
            )

    @pytest.mark.asyncio
    async def test_enable_flow(self, make_account, chain_client, transfer_only, owner_signer):
        account = await make_account(chain_client, regular=transfer_only)
        enabled = await account.enable_regular()

        assert account.enable_approval is None
        assert enabled.enable_approval is not None
        assert owner_signer.typed_data_count == 1

        op = build_user_op(enabled, Call(target=TOKEN, data=TRANSFER))
        signed = await enabled.sign_user_operation(op)
        decoded = decode_enable_signature(signed.signature)

        typed = enable_typed_data(enabled.address, SEPOLIA, enabled.enable_approval.enable_data)
        assert recover_typed_data_signer(typed, decoded.enable_signature) == OWNER_ADDRESS
        assert recover_message_signer(
            enabled.get_user_operation_hash(op), decoded.regular_signature
        ) == SESSION_ADDRESS
        # Sudo is not asked again for the operation itself.
        assert owner_signer.total == 1

    @pytest.mark.asyncio
    async def test_plugin_mode_once_installed(self, make_account, chain_client, transfer_only):
        enabled = await (await make_account(chain_client, regular=transfer_only)).enable_regular()
        chain_client.deploy(enabled.address)
        chain_client.install_validator(enabled.address, transfer_only.address)

        assert await enabled.get_plugin_state() is PluginState.REGULAR_ACTIVE
        signed = await enabled.sign_user_operation(
            build_user_op(enabled, Call(target=TOKEN, data=TRANSFER))
        )
        assert bytes.fromhex(signed.signature[2:10]) == ValidatorMode.PLUGIN

    @pytest.mark.asyncio
    async def test_policy_denied_before_signing(
        self, make_account, chain_client, transfer_only, session_signer
    ):
        enabled = await (await make_account(chain_client, regular=transfer_only)).enable_regular()
        with pytest.raises(PolicyDenied):
            await enabled.sign_user_operation(
                build_user_op(enabled, Call(target=RECIPIENT, value=1))
            )
        assert session_signer.total == 0

    @pytest.mark.asyncio
    async def test_policy_checks_every_batched_call(
        self, make_account, chain_client, transfer_only, session_signer
    ):
        enabled = await (await make_account(chain_client, regular=transfer_only)).enable_regular()
        op = build_user_op(
            enabled, Call(target=TOKEN, data=TRANSFER), Call(target=RECIPIENT, value=1)
        )
        with pytest.raises(PolicyDenied):
            await enabled.sign_user_operation(op)
        assert session_signer.total == 0

    @pytest.mark.asyncio
    async def test_multi_send_payload_delegated_elsewhere_denied(
        self, make_account, chain_client, transfer_only, session_signer
    ):
        enabled = await (await make_account(chain_client, regular=transfer_only)).enable_regular()
        chain_client.deploy(enabled.address)
        chain_client.install_validator(enabled.address, transfer_only.address)

        batch = enabled.encode_call_data([Call(target=TOKEN, data=TRANSFER)])
        multi_send_data = decode(["address", "uint256", "bytes", "uint8"], batch[4:])[2]
        rogue = Call(target=RECIPIENT, data=multi_send_data, kind=CallKind.DELEGATE_CALL)
        op = replace(
            build_user_op(enabled, Call(target=TOKEN, data=TRANSFER)),
            call_data=to_hex(enabled.encode_call_data(rogue)),
        )

        with pytest.raises(PolicyDenied):
            await enabled.sign_user_operation(op)
        assert session_signer.total == 0

    @pytest.mark.asyncio
    async def test_allowed_batch_of_one_signed(self, make_account, chain_client, transfer_only):
        enabled = await (await make_account(chain_client, regular=transfer_only)).enable_regular()
        chain_client.deploy(enabled.address)
        chain_client.install_validator(enabled.address, transfer_only.address)

        op = replace(
            build_user_op(enabled, Call(target=TOKEN, data=TRANSFER)),
            call_data=to_hex(enabled.encode_call_data([Call(target=TOKEN, data=TRANSFER)])),
        )
        signed = await enabled.sign_user_operation(op)
        assert bytes.fromhex(signed.signature[2:10]) == ValidatorMode.PLUGIN

    @pytest.mark.asyncio
    async def test_enable_without_regular_rejected(self, make_account, chain_client):
        account = await make_account(chain_client)
        with pytest.raises(ConfigurationError):
            await account.enable_regular()

    @pytest.mark.asyncio
    async def test_approval_for_other_chain_rejected(
        self, make_account, chain_client, session_signer
    ):
        regular = to_permission_validator(session_signer, [to_sudo_policy()], ADDRESSES)
        enabled = await (await make_account(chain_client, regular=regular)).enable_regular()
        other = replace(enabled.enable_approval, chain_id=OP_SEPOLIA)
        with pytest.raises(ApprovalMismatch):
            enabled.with_enable_approval(other)

    @pytest.mark.asyncio
    async def test_approval_for_other_account_rejected(
        self, make_account, chain_client, session_signer
    ):
        regular = to_permission_validator(session_signer, [to_sudo_policy()], ADDRESSES)
        enabled = await (await make_account(chain_client, regular=regular)).enable_regular()
        other_account = await make_account(chain_client, regular=regular, index=1)
        with pytest.raises(ApprovalMismatch):
            other_account.with_enable_approval(enabled.enable_approval)
