"""
sardis-kernel: authorization core for Kernel smart accounts.

Covers account address derivation, call encoding, ERC-6492 predeploy
signatures, Sudo/Regular validator management, multi-chain signing with a
Merkle commitment, and serializable session-key approvals.
"""

from .account import (
    AccountInitArgs,
    AccountModel,
    DeployState,
    custom_nonce_key_from_string,
    derive_address,
    generate_init_code,
    is_deployed,
    parse_factory_init_code,
)
from .approval import (
    Approval,
    deserialize_approval,
    serialize_approval,
    serialize_multi_chain_permission_accounts,
    serialize_permission_account,
)
from .call_encoder import (
    Call,
    CallBatch,
    CallKind,
    decode_call_data,
    decode_multi_send,
    encode_call_data,
)
from .chain_client import ChainClientPort, ExecutionDetail, JsonRpcChainClient
from .client import KernelAccountClient
from .config import (
    AccountConfig,
    FactoryConfig,
    KernelAddresses,
    SardisKernelConfig,
    SigningConfig,
    get_config,
    set_config,
)
from .exceptions import (
    AdapterError,
    ApprovalFormatError,
    ApprovalMismatch,
    BundlerError,
    ConfigurationError,
    DuplicateChainInBatch,
    EncodingError,
    InvalidCallKind,
    InvalidSignatureEnvelope,
    PaymasterError,
    PolicyDenied,
    RPCError,
    SardisKernelError,
    SignTransactionNotSupported,
    SigningRefused,
    ValidatorNotEnabled,
    ValidatorStateError,
)
from .kernel_account import KernelAccount, create_kernel_account
from .merkle import MultiChainLeaf, MultiChainProof, verify_multi_chain_proof
from .multichain import ChainUserOperation, sign_user_ops, sign_user_ops_with_enable
from .plugin_manager import (
    EnableApproval,
    EnableData,
    KernelPluginManager,
    PluginState,
    decode_enable_signature,
    encode_enable_signature,
)
from .signature_6492 import is_6492_signature, unwrap_signature_6492, wrap_signature_6492
from .signers import (
    EmptyAccountSigner,
    LocalAccountSigner,
    SmartAccountSigner,
    address_to_empty_account,
)
from .validators import (
    CallPermission,
    CallPolicy,
    ECDSAValidator,
    MultiChainValidator,
    PermissionValidator,
    PolicySet,
    SudoPolicy,
    ValidatorMode,
    ValueLimitPolicy,
    to_permission_validator,
    to_sudo_policy,
)

__version__ = "0.1.0"

__all__ = [
    # Account
    "AccountInitArgs",
    "AccountModel",
    "DeployState",
    "custom_nonce_key_from_string",
    "derive_address",
    "generate_init_code",
    "is_deployed",
    "parse_factory_init_code",
    "KernelAccount",
    "create_kernel_account",
    "KernelAccountClient",
    # Encoding
    "Call",
    "CallBatch",
    "CallKind",
    "decode_call_data",
    "decode_multi_send",
    "encode_call_data",
    "is_6492_signature",
    "unwrap_signature_6492",
    "wrap_signature_6492",
    # Validators
    "EnableApproval",
    "EnableData",
    "KernelPluginManager",
    "PluginState",
    "decode_enable_signature",
    "encode_enable_signature",
    "ValidatorMode",
    "ECDSAValidator",
    "MultiChainValidator",
    "PermissionValidator",
    "CallPermission",
    "CallPolicy",
    "PolicySet",
    "SudoPolicy",
    "ValueLimitPolicy",
    "to_permission_validator",
    "to_sudo_policy",
    # Multi-chain
    "ChainUserOperation",
    "MultiChainLeaf",
    "MultiChainProof",
    "sign_user_ops",
    "sign_user_ops_with_enable",
    "verify_multi_chain_proof",
    # Approvals
    "Approval",
    "deserialize_approval",
    "serialize_approval",
    "serialize_multi_chain_permission_accounts",
    "serialize_permission_account",
    # Signers
    "EmptyAccountSigner",
    "LocalAccountSigner",
    "SmartAccountSigner",
    "address_to_empty_account",
    # Chain
    "ChainClientPort",
    "ExecutionDetail",
    "JsonRpcChainClient",
    # Config
    "AccountConfig",
    "FactoryConfig",
    "KernelAddresses",
    "SardisKernelConfig",
    "SigningConfig",
    "get_config",
    "set_config",
    # Errors
    "SardisKernelError",
    "ConfigurationError",
    "SignTransactionNotSupported",
    "EncodingError",
    "InvalidCallKind",
    "DuplicateChainInBatch",
    "InvalidSignatureEnvelope",
    "ApprovalFormatError",
    "ValidatorStateError",
    "ValidatorNotEnabled",
    "ApprovalMismatch",
    "PolicyDenied",
    "SigningRefused",
    "AdapterError",
    "RPCError",
    "BundlerError",
    "PaymasterError",
]
