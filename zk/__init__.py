"""
Zero-Knowledge Proof Module for the Voting Coordinator
Groth16 proof shapes, witness layouts and the snarkjs prover/verifier
"""

from .zk_proofs import (
    # Core classes
    CircuitConfig,
    Groth16Proof,
    VerifyingKey,
    ProofArtifact,
    ProofType,
    ProcessMessagesWitness,
    TallyVotesWitness,
    SnarkjsProver,
    SnarkjsVerifier,
    Prover,
    Verifier,

    # Public inputs
    compute_public_input_hash,
    process_public_input_hash,
    tally_public_input_hash,

    # Exceptions
    ZKError,
    ProofGenerationError,
    VerificationKeyError,
)

__version__ = "1.0.0"

__all__ = [
    # Classes
    'CircuitConfig',
    'Groth16Proof',
    'VerifyingKey',
    'ProofArtifact',
    'ProofType',
    'ProcessMessagesWitness',
    'TallyVotesWitness',
    'SnarkjsProver',
    'SnarkjsVerifier',
    'Prover',
    'Verifier',

    # Public inputs
    'compute_public_input_hash',
    'process_public_input_hash',
    'tally_public_input_hash',

    # Exceptions
    'ZKError',
    'ProofGenerationError',
    'VerificationKeyError',
]
