"""
Serialized permission approvals.

An approval is a Sudo-signed EnableData for one account on one chain,
together with everything needed to rebuild the Regular validator except the
session key itself. It is issued once by the Sudo holder and redeemed later
by whoever holds the session key, without involving Sudo again.

Wire format: compact JSON produced by the ``Approval`` pydantic model,
fields in declaration order. ``Approval.from_bytes(data).to_bytes() == data``
for anything ``to_bytes`` produced.
"""
from __future__ import annotations

import logging
from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from .account import AccountInitArgs, derive_address, generate_init_code
from .chain_client import ChainClientPort
from .config import AccountConfig, FactoryConfig
from .exceptions import ApprovalFormatError, ApprovalMismatch, ConfigurationError
from .kernel_account import KernelAccount, create_kernel_account
from .logging_utils import OperationType, get_kernel_logger
from .multichain import sign_enable_approvals
from .plugin_manager import EnableApproval, EnableData
from .signers import SmartAccountSigner, address_to_empty_account
from .utils import as_bytes, checksum, same_address, to_hex
from .validators.base import ValidatorPlugin
from .validators.ecdsa import ECDSAValidator
from .validators.multichain import MultiChainValidator
from .validators.permission import PermissionValidator
from .validators.policies import PolicyDescriptor, PolicySet

logger = logging.getLogger(__name__)

APPROVAL_TYPE = "sardis.kernel.approval"
APPROVAL_VERSION = 1

_SUDO_VALIDATORS = {
    ECDSAValidator.kind: ECDSAValidator,
    MultiChainValidator.kind: MultiChainValidator,
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SudoValidatorModel(_Frozen):
    kind: str
    address: str
    owner: str


class EnableDataModel(_Frozen):
    validator_address: str
    validator_id: str
    enable_data: str
    valid_until: int
    valid_after: int
    executor: str
    selector: str

    @classmethod
    def from_enable_data(cls, data: EnableData) -> "EnableDataModel":
        return cls(
            validator_address=data.validator_address,
            validator_id=to_hex(data.validator_id),
            enable_data=to_hex(data.enable_data),
            valid_until=data.valid_until,
            valid_after=data.valid_after,
            executor=data.executor,
            selector=to_hex(data.selector),
        )

    def to_enable_data(self) -> EnableData:
        return EnableData(
            validator_address=self.validator_address,
            validator_id=as_bytes(self.validator_id),
            enable_data=as_bytes(self.enable_data),
            valid_until=self.valid_until,
            valid_after=self.valid_after,
            executor=self.executor,
            selector=as_bytes(self.selector),
        )


class PolicyModel(_Frozen):
    kind: str
    address: str
    data: str

    def to_descriptor(self) -> PolicyDescriptor:
        return PolicyDescriptor(kind=self.kind, address=self.address, data=as_bytes(self.data))


class SessionSignerModel(_Frozen):
    contract: str
    address: str


class Approval(_Frozen):
    """Everything a session key holder needs to act for the account."""
    type: Literal["sardis.kernel.approval"] = APPROVAL_TYPE
    version: Literal[1] = APPROVAL_VERSION
    chain_id: int
    entry_point: str
    account_address: str
    factory_address: str
    account_index: int
    init_code: str
    sudo_validator: SudoValidatorModel
    enable: EnableDataModel
    enable_signature: str
    validator_id: str
    policies: List[PolicyModel]
    session_signer: SessionSignerModel

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Approval":
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise ApprovalFormatError(f"Invalid approval: {e.error_count()} field error(s)") from e


def _permission_regular(account: KernelAccount) -> PermissionValidator:
    if not isinstance(account.regular, PermissionValidator):
        raise ConfigurationError(
            "Approvals can only be issued for a permission validator",
            field="regular",
        )
    return account.regular


def serialize_approval(
    account: KernelAccount,
    enable_data: EnableData,
    sudo_signature: bytes,
    policy_set: PolicySet,
    regular_validator_id: bytes,
) -> bytes:
    """
    Pack an approval for ``account``.

    No key material is included; the session signer is referenced by
    address only.

    Raises:
        ApprovalMismatch: ``regular_validator_id`` is not the id of
            ``policy_set`` with the account's session signer
    """
    regular = _permission_regular(account)
    expected_id = PermissionValidator(
        regular.signer, policy_set, regular.address, regular.signer_contract
    ).validator_id
    if as_bytes(regular_validator_id) != expected_id:
        raise ApprovalMismatch(
            "Validator id does not match the policy set and session signer",
            field="validator_id",
        )

    approval = Approval(
        chain_id=account.chain_id,
        entry_point=checksum(account.entry_point),
        account_address=account.address,
        factory_address=account.model.factory,
        account_index=account.model.init_args.index,
        init_code=to_hex(account.model.init_code),
        sudo_validator=SudoValidatorModel(
            kind=account.sudo.kind,
            address=account.sudo.address,
            owner=checksum(account.model.owner),
        ),
        enable=EnableDataModel.from_enable_data(enable_data),
        enable_signature=to_hex(sudo_signature),
        validator_id=to_hex(expected_id),
        policies=[
            PolicyModel(kind=d.kind, address=d.address, data=to_hex(d.data))
            for d in policy_set.descriptors()
        ],
        session_signer=SessionSignerModel(
            contract=regular.signer_contract,
            address=checksum(regular.signer.address),
        ),
    )
    return approval.to_bytes()


def _serialize_with(account: KernelAccount, enable: EnableApproval) -> bytes:
    regular = _permission_regular(account)
    return serialize_approval(
        account,
        enable.enable_data,
        enable.enable_signature,
        regular.policies,
        regular.validator_id,
    )


async def serialize_permission_account(account: KernelAccount) -> bytes:
    """Serialize ``account``'s approval, asking Sudo to sign it if needed."""
    _permission_regular(account)
    async with get_kernel_logger().operation_context(
        OperationType.SERIALIZE_APPROVAL, account.address, chain_id=account.chain_id
    ):
        if account.enable_approval is None:
            account = await account.enable_regular()
        return _serialize_with(account, account.enable_approval)


async def serialize_multi_chain_permission_accounts(
    accounts: Sequence[KernelAccount],
) -> List[bytes]:
    """One approval per account, all covered by a single Sudo signature."""
    for account in accounts:
        _permission_regular(account)
    approvals = await sign_enable_approvals(accounts)
    return [
        _serialize_with(account.with_enable_approval(enable), enable)
        for account, enable in zip(accounts, approvals)
    ]


async def deserialize_approval(
    data: bytes,
    session_signer: SmartAccountSigner,
    chain_client: ChainClientPort,
    config: AccountConfig,
    expected_account: Optional[str] = None,
) -> KernelAccount:
    """
    Redeem an approval: a handle that signs with ``session_signer`` and
    attaches the pre-signed EnableData on first use.

    ``config`` supplies what the approval does not carry: the proxy init
    code hash, MultiSend and signing bounds. Factory, entry point and chain
    come from the approval itself.

    Expiry (``valid_until`` / ``valid_after``) is carried through for the
    account to enforce; it is never checked here.

    Raises:
        ApprovalFormatError: ``data`` is not an approval
        ApprovalMismatch: signer, validator id, account or chain do not match
    """
    approval = Approval.from_bytes(data)
    address = approval.account_address

    async with get_kernel_logger().operation_context(
        OperationType.DESERIALIZE_APPROVAL, address, chain_id=approval.chain_id
    ):
        if not same_address(session_signer.address, approval.session_signer.address):
            raise ApprovalMismatch(
                f"Approval was issued for signer {approval.session_signer.address}, "
                f"not {session_signer.address}",
                field="session_signer",
            )
        if expected_account is not None and not same_address(expected_account, address):
            raise ApprovalMismatch(
                f"Approval is for account {address}, not {expected_account}",
                field="account",
            )

        policies = PolicySet.from_descriptors([p.to_descriptor() for p in approval.policies])
        regular = PermissionValidator(
            session_signer,
            policies,
            address=approval.enable.validator_address,
            signer_contract=approval.session_signer.contract,
        )
        if to_hex(regular.validator_id) != approval.validator_id.lower():
            raise ApprovalMismatch(
                "Policies and session signer do not reproduce the approved validator id",
                field="validator_id",
            )
        enable_data = approval.enable.to_enable_data()
        if enable_data.enable_data != regular.get_enable_data():
            raise ApprovalMismatch(
                "Enable data does not match the rebuilt validator", field="enable_data"
            )

        init_args = AccountInitArgs(
            owner=approval.sudo_validator.owner, index=approval.account_index
        )
        init_code = generate_init_code(approval.factory_address, init_args)
        if to_hex(init_code) != approval.init_code.lower():
            raise ApprovalMismatch(
                "Init code does not match the factory, owner and index", field="init_code"
            )

        config = _redeem_config(approval, config)
        if config.factory.init_code_hash:
            derived = derive_address(
                approval.factory_address, init_args, config.factory.init_code_hash
            )
            if not same_address(derived, address):
                raise ApprovalMismatch(
                    f"Approval account {address} is not derived from its init code",
                    field="account",
                )

        chain_id = await chain_client.get_chain_id()
        if chain_id != approval.chain_id:
            raise ApprovalMismatch(
                f"Approval is for chain {approval.chain_id}, client is on {chain_id}",
                field="chain_id",
            )

        account = await create_kernel_account(
            chain_client,
            config,
            sudo=_sudo_placeholder(approval),
            regular=regular,
            index=approval.account_index,
            deployed_account_address=address,
        )
        return account.with_enable_approval(
            EnableApproval(
                account=address,
                chain_id=approval.chain_id,
                enable_data=enable_data,
                enable_signature=as_bytes(approval.enable_signature),
            )
        )


def _sudo_placeholder(approval: Approval) -> ValidatorPlugin:
    """Sudo as an address-only signer; redeeming never asks Sudo to sign."""
    validator_cls = _SUDO_VALIDATORS.get(approval.sudo_validator.kind)
    if validator_cls is None:
        raise ApprovalFormatError(f"Unknown sudo validator kind: {approval.sudo_validator.kind}")
    return validator_cls(
        address_to_empty_account(approval.sudo_validator.owner),
        approval.sudo_validator.address,
    )


def _redeem_config(approval: Approval, base: AccountConfig) -> AccountConfig:
    return AccountConfig(
        factory=FactoryConfig(
            address=approval.factory_address,
            init_code_hash=base.factory.init_code_hash,
        ),
        entry_point=approval.entry_point,
        multi_send=base.multi_send,
        expected_chain_id=approval.chain_id,
        signing=base.signing,
        addresses=base.addresses,
    )
