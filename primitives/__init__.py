"""
Cryptographic primitives for the voting protocol: Poseidon, Baby Jubjub,
ECDH, duplex-sponge encryption, EdDSA-Poseidon and command packing.
"""

from .context import CryptoContext
from .errors import (
    CryptoError,
    FieldRangeError,
    InvalidPublicKeyError,
    MalformedCiphertextError,
    AuthenticationError,
    SignatureError,
    CommandPackingError,
)
from .field import SNARK_FIELD_SIZE
from .keys import Keypair, PublicKey, derive_private_key, shared_key
from .eddsa import Signature
from .command import Command, build_key_change, build_vote, decrypt_message
from .structures import (
    ABSTAIN,
    AGAINST,
    BLANK_STATE_LEAF,
    FOR,
    VOTE_OPTIONS,
    Ballot,
    Message,
    StateLeaf,
)
from .merkle import QuinaryTree, compute_root

__all__ = [
    'CryptoContext',
    'CryptoError',
    'FieldRangeError',
    'InvalidPublicKeyError',
    'MalformedCiphertextError',
    'AuthenticationError',
    'SignatureError',
    'CommandPackingError',
    'SNARK_FIELD_SIZE',
    'Keypair',
    'PublicKey',
    'derive_private_key',
    'shared_key',
    'Signature',
    'Command',
    'build_vote',
    'build_key_change',
    'decrypt_message',
    'AGAINST',
    'FOR',
    'ABSTAIN',
    'VOTE_OPTIONS',
    'BLANK_STATE_LEAF',
    'Ballot',
    'Message',
    'StateLeaf',
    'QuinaryTree',
    'compute_root',
]
