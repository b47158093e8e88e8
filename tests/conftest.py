"""
Shared fixtures: one crypto context per session, an in-process ledger on a
manual clock, and a prover/verifier pair that stands in for snarkjs.

The prover re-derives every commitment from the witness and refuses to
"prove" an inconsistent one; the verifier accepts a proof only when it is
bound to the exact public input hash the ledger computes.
"""

import asyncio
import time

import pytest

from config.config import ProtocolConfig
from primitives.context import CryptoContext
from primitives.keys import Keypair
from voting_round import VotingRound
from zk.zk_proofs import (
    Groth16Proof,
    ProofArtifact,
    ProofGenerationError,
    ProofType,
    VerifyingKey,
    tally_public_input_hash,
)

G1 = ["1", "2", "1"]
G2 = [["1", "0"], ["2", "0"], ["1", "0"]]


def fake_vk_json(n_public: int = 1):
    return {
        'protocol': 'groth16',
        'curve': 'bn128',
        'nPublic': n_public,
        'vk_alpha_1': G1,
        'vk_beta_2': G2,
        'vk_gamma_2': G2,
        'vk_delta_2': G2,
        'IC': [G1] * (n_public + 1),
    }


class WitnessCheckingProver:
    """Proves nothing; checks the witness and binds the proof to its input hash"""

    def __init__(self, ctx):
        self.ctx = ctx
        self.calls = []

    def _check(self, proof_type: ProofType, witness):
        h = self.ctx.hash
        if proof_type is ProofType.PROCESS_MESSAGES:
            if witness.current_state_commitment != h([witness.input_state_root, witness.input_ballot_root]):
                raise ProofGenerationError("current state commitment does not open")
            if witness.new_state_commitment != h([witness.output_state_root, witness.output_ballot_root]):
                raise ProofGenerationError("new state commitment does not open")
        else:
            if witness.new_tally_commitment != h([
                    witness.new_tally_results_root,
                    witness.new_total_spent,
                    witness.new_per_option_spent_root]):
                raise ProofGenerationError("new tally commitment does not open")
            expected = tally_public_input_hash(
                witness.state_commitment, witness.tally_commitment, witness.new_tally_commitment,
                witness.batch_start_index, witness.num_sign_ups)
            if expected != witness.input_hash:
                raise ProofGenerationError("tally input hash does not match")

    async def prove(self, proof_type: ProofType, witness) -> ProofArtifact:
        self._check(proof_type, witness)
        self.calls.append(proof_type)
        await asyncio.sleep(0)
        return ProofArtifact(
            proof=Groth16Proof(pi_a=[witness.input_hash, 0], pi_b=[[0, 0], [0, 0]], pi_c=[0, 0]),
            public_signals=witness.public_signals(),
            proof_type=proof_type,
            generation_time=0.0,
            timestamp=time.time(),
        )


class BindingVerifier:
    """Accepts a proof whose first element equals the single public input"""

    def __init__(self):
        self.calls = 0

    def verify(self, vk, public_signals, proof) -> bool:
        self.calls += 1
        return len(public_signals) == vk.n_public and proof.pi_a[0] == public_signals[0]


@pytest.fixture(scope="session")
def ctx():
    return CryptoContext()


@pytest.fixture(scope="session")
def coordinator_keypair(ctx):
    return Keypair.from_seed(ctx, b"coordinator")


@pytest.fixture
def protocol():
    return ProtocolConfig()


@pytest.fixture
def prover(ctx):
    return WitnessCheckingProver(ctx)


@pytest.fixture
def verifier():
    return BindingVerifier()


@pytest.fixture
def verifying_keys():
    return VerifyingKey.from_json(fake_vk_json()), VerifyingKey.from_json(fake_vk_json())


@pytest.fixture
def voting_round(ctx, protocol, prover, verifier, verifying_keys, coordinator_keypair):
    process_vk, tally_vk = verifying_keys
    return VotingRound(ctx, protocol, prover, verifier, process_vk, tally_vk,
                       coordinator_keypair=coordinator_keypair)
