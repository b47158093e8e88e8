"""
Zero-Knowledge Proof Boundary for the Voting Coordinator
Groth16 proof / verifying-key shapes, circuit witness layouts, SHA256
public-input compression, and the snarkjs-backed prover and verifier.
"""

import asyncio
import hashlib
import json
import logging
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence

logger = logging.getLogger(__name__)

PUBLIC_INPUT_BITS = 253
PUBLIC_INPUT_MASK = (1 << PUBLIC_INPUT_BITS) - 1
PACK_SLOT_BITS = 50

# ============================================================================
# ERRORS
# ============================================================================


class ZKError(Exception):
    """Base exception for ZK operations"""
    pass


class ProofGenerationError(ZKError):
    """Witness generation or proving failed"""
    pass


class VerificationKeyError(ZKError):
    """Verifying key is missing or malformed"""
    pass


# ============================================================================
# PROOF AND KEY SHAPES
# ============================================================================


class ProofType(Enum):
    """Circuits the coordinator proves against"""
    PROCESS_MESSAGES = "process_messages"
    TALLY_VOTES = "tally_votes"


@dataclass
class Groth16Proof:
    """Affine Groth16 proof over BN254 (decimal coordinates as ints)"""
    pi_a: List[int]
    pi_b: List[List[int]]
    pi_c: List[int]
    protocol: str = "groth16"
    curve: str = "bn128"

    @classmethod
    def from_snarkjs(cls, proof: Dict[str, Any]) -> "Groth16Proof":
        """Drop the projective z coordinate snarkjs emits"""
        if proof.get('protocol', 'groth16') != 'groth16':
            raise ZKError(f"Invalid protocol: {proof.get('protocol')}")
        return cls(
            pi_a=[int(v) for v in proof['pi_a'][:2]],
            pi_b=[[int(v) for v in pair] for pair in proof['pi_b'][:2]],
            pi_c=[int(v) for v in proof['pi_c'][:2]],
            protocol=proof.get('protocol', 'groth16'),
            curve=proof.get('curve', 'bn128'),
        )

    def to_snarkjs(self) -> Dict[str, Any]:
        return {
            'pi_a': [str(v) for v in self.pi_a] + ['1'],
            'pi_b': [[str(v) for v in pair] for pair in self.pi_b] + [['1', '0']],
            'pi_c': [str(v) for v in self.pi_c] + ['1'],
            'protocol': self.protocol,
            'curve': self.curve,
        }

    def ledger_args(self) -> Dict[str, Any]:
        """(pA, pB, pC) as a Solidity verifier expects them: pB limbs swapped"""
        return {
            'pA': list(self.pi_a),
            'pB': [[self.pi_b[0][1], self.pi_b[0][0]], [self.pi_b[1][1], self.pi_b[1][0]]],
            'pC': list(self.pi_c),
        }


@dataclass
class VerifyingKey:
    """snarkjs verification_key.json"""
    protocol: str
    curve: str
    n_public: int
    vk_alpha_1: List[Any]
    vk_beta_2: List[Any]
    vk_gamma_2: List[Any]
    vk_delta_2: List[Any]
    ic: List[Any]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VerifyingKey":
        try:
            vk = cls(
                protocol=data['protocol'],
                curve=data['curve'],
                n_public=int(data['nPublic']),
                vk_alpha_1=data['vk_alpha_1'],
                vk_beta_2=data['vk_beta_2'],
                vk_gamma_2=data['vk_gamma_2'],
                vk_delta_2=data['vk_delta_2'],
                ic=data['IC'],
            )
        except KeyError as e:
            raise VerificationKeyError(f"Verifying key missing field {e}") from e
        if vk.protocol != 'groth16':
            raise VerificationKeyError(f"Unsupported protocol: {vk.protocol}")
        if len(vk.ic) != vk.n_public + 1:
            raise VerificationKeyError(
                f"IC has {len(vk.ic)} points for {vk.n_public} public inputs")
        return vk

    @classmethod
    def load(cls, path: Path) -> "VerifyingKey":
        path = Path(path)
        if not path.exists():
            raise VerificationKeyError(f"Verifying key not found: {path}")
        return cls.from_json(json.loads(path.read_text()))

    def to_json(self) -> Dict[str, Any]:
        return {
            'protocol': self.protocol,
            'curve': self.curve,
            'nPublic': self.n_public,
            'vk_alpha_1': self.vk_alpha_1,
            'vk_beta_2': self.vk_beta_2,
            'vk_gamma_2': self.vk_gamma_2,
            'vk_delta_2': self.vk_delta_2,
            'IC': self.ic,
        }

    def fingerprint(self) -> str:
        return hashlib.sha256(json.dumps(self.to_json(), sort_keys=True).encode()).hexdigest()


@dataclass
class ProofArtifact:
    """Container for proof and metadata"""
    proof: Groth16Proof
    public_signals: List[int]
    proof_type: ProofType
    generation_time: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class CircuitConfig:
    """Compiled circuit artifacts for one proof type"""
    name: str
    build_dir: Path

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)

    @property
    def wasm_file(self) -> Path:
        return self.build_dir / f"{self.name}_js" / f"{self.name}.wasm"

    @property
    def witness_generator(self) -> Path:
        return self.build_dir / f"{self.name}_js" / "generate_witness.js"

    @property
    def zkey_file(self) -> Path:
        return self.build_dir / f"{self.name}.zkey"

    @property
    def vkey_file(self) -> Path:
        return self.build_dir / f"{self.name}_vkey.json"

    def missing_files(self) -> List[Path]:
        return [p for p in (self.wasm_file, self.witness_generator, self.zkey_file) if not p.exists()]


# ============================================================================
# PUBLIC INPUT COMPRESSION
# ============================================================================


def compute_public_input_hash(values: Sequence[int]) -> int:
    """sha256 over 32-byte big-endian words, truncated to 253 bits"""
    digest = hashlib.sha256()
    for value in values:
        digest.update(int(value).to_bytes(32, 'big'))
    return int.from_bytes(digest.digest(), 'big') & PUBLIC_INPUT_MASK


def pack_values(*values: int) -> int:
    packed = 0
    for slot, value in enumerate(values):
        if not 0 <= value < (1 << PACK_SLOT_BITS):
            raise ValueError(f"Value {value} does not fit a {PACK_SLOT_BITS}-bit slot")
        packed |= int(value) << (slot * PACK_SLOT_BITS)
    return packed


def process_public_input_hash(current_state_commitment: int, new_state_commitment: int,
                              message_root: int, coordinator_pub_key_hash: int,
                              batch_start_index: int, batch_end_index: int,
                              num_sign_ups: int, max_vote_options: int) -> int:
    packed = pack_values(max_vote_options, num_sign_ups, batch_start_index, batch_end_index)
    return compute_public_input_hash([
        packed,
        coordinator_pub_key_hash,
        message_root,
        current_state_commitment,
        new_state_commitment,
    ])


def tally_public_input_hash(state_commitment: int, current_tally_commitment: int,
                            new_tally_commitment: int, batch_start_index: int,
                            num_sign_ups: int) -> int:
    return compute_public_input_hash([
        pack_values(batch_start_index, num_sign_ups),
        state_commitment,
        current_tally_commitment,
        new_tally_commitment,
    ])


# ============================================================================
# WITNESS LAYOUTS
# ============================================================================


def _stringify(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_stringify(v) for v in value]
    return str(int(value))


@dataclass
class ProcessMessagesWitness:
    """Inputs of the message-processing circuit for one batch"""
    input_hash: int
    current_state_commitment: int
    new_state_commitment: int
    input_state_root: int
    output_state_root: int
    input_ballot_root: int
    output_ballot_root: int
    input_message_root: int
    coordinator_pub_key_hash: int
    batch_start_index: int
    batch_end_index: int
    num_sign_ups: int
    coordinator_sk: int
    messages: List[List[int]]            # [batch][10]
    enc_pub_keys: List[List[int]]        # [batch][2]
    msg_nonces: List[int]                # [batch]
    state_leaves: List[List[int]]        # [batch][4]
    ballots: List[List[int]]             # [batch][2]
    ballot_vote_weights: List[int]       # [batch]
    state_proofs: List[List[List[int]]]  # [batch][depth][4]
    state_path_indices: List[List[int]]  # [batch][depth]
    ballot_proofs: List[List[List[int]]]
    ballot_path_indices: List[List[int]]
    msg_proofs: List[List[List[int]]]    # [batch][msgDepth][4]
    msg_path_indices: List[List[int]]

    def public_signals(self) -> List[int]:
        return [self.input_hash]

    def to_circuit_inputs(self) -> Dict[str, Any]:
        """Signal names of MessageProcessor.circom"""
        return {
            'inputHash': _stringify(self.input_hash),
            'currentStateCommitment': _stringify(self.current_state_commitment),
            'newStateCommitment': _stringify(self.new_state_commitment),
            'inputStateRoot': _stringify(self.input_state_root),
            'outputStateRoot': _stringify(self.output_state_root),
            'inputBallotRoot': _stringify(self.input_ballot_root),
            'outputBallotRoot': _stringify(self.output_ballot_root),
            'inputMessageRoot': _stringify(self.input_message_root),
            'coordinatorPubKeyHash': _stringify(self.coordinator_pub_key_hash),
            'batchStartIndex': _stringify(self.batch_start_index),
            'batchEndIndex': _stringify(self.batch_end_index),
            'numSignUps': _stringify(self.num_sign_ups),
            'coordinatorSk': _stringify(self.coordinator_sk),
            'messages': _stringify(self.messages),
            'encPubKeys': _stringify(self.enc_pub_keys),
            'msgNonces': _stringify(self.msg_nonces),
            'stateLeaves': _stringify(self.state_leaves),
            'ballots': _stringify(self.ballots),
            'ballotVoteWeights': _stringify(self.ballot_vote_weights),
            'stateProofs': _stringify(self.state_proofs),
            'statePathIndices': _stringify(self.state_path_indices),
            'ballotProofs': _stringify(self.ballot_proofs),
            'ballotPathIndices': _stringify(self.ballot_path_indices),
            'msgProofs': _stringify(self.msg_proofs),
            'msgPathIndices': _stringify(self.msg_path_indices),
        }


@dataclass
class TallyVotesWitness:
    """Inputs of the tally circuit for one batch of state leaves"""
    input_hash: int
    state_commitment: int
    tally_commitment: int
    new_tally_commitment: int
    batch_start_index: int
    num_sign_ups: int
    state_root: int
    ballot_root: int
    state_leaves: List[List[int]]        # [batch][4]
    ballot_nonces: List[int]             # [batch]
    vote_weights: List[List[int]]        # [batch][numVoteOptions]
    vote_option_roots: List[int]         # [batch]
    state_proofs: List[List[List[int]]]  # [batch][depth][4]
    state_path_indices: List[List[int]]
    current_tally: List[int]
    new_tally: List[int]
    current_total_spent: int
    new_total_spent: int
    current_per_option_spent: List[int]
    new_per_option_spent: List[int]
    current_tally_results_root: int
    new_tally_results_root: int
    current_per_option_spent_root: int
    new_per_option_spent_root: int

    def public_signals(self) -> List[int]:
        return [self.input_hash]

    def to_circuit_inputs(self) -> Dict[str, Any]:
        """Signal names of TallyVotes.circom"""
        return {
            'inputHash': _stringify(self.input_hash),
            'stateCommitment': _stringify(self.state_commitment),
            'tallyCommitment': _stringify(self.tally_commitment),
            'newTallyCommitment': _stringify(self.new_tally_commitment),
            'batchStartIndex': _stringify(self.batch_start_index),
            'numSignUps': _stringify(self.num_sign_ups),
            'stateRoot': _stringify(self.state_root),
            'ballotRoot': _stringify(self.ballot_root),
            'stateLeaves': _stringify(self.state_leaves),
            'ballotNonces': _stringify(self.ballot_nonces),
            'voteWeights': _stringify(self.vote_weights),
            'voteOptionRoots': _stringify(self.vote_option_roots),
            'stateProofs': _stringify(self.state_proofs),
            'statePathIndices': _stringify(self.state_path_indices),
            'currentTally': _stringify(self.current_tally),
            'newTally': _stringify(self.new_tally),
            'currentTotalSpent': _stringify(self.current_total_spent),
            'newTotalSpent': _stringify(self.new_total_spent),
            'currentPerOptionSpent': _stringify(self.current_per_option_spent),
            'newPerOptionSpent': _stringify(self.new_per_option_spent),
            'currentTallyResultsRoot': _stringify(self.current_tally_results_root),
            'newTallyResultsRoot': _stringify(self.new_tally_results_root),
            'currentPerOptionSpentRoot': _stringify(self.current_per_option_spent_root),
            'newPerOptionSpentRoot': _stringify(self.new_per_option_spent_root),
        }


# ============================================================================
# PROVER / VERIFIER BOUNDARY
# ============================================================================


class Prover(Protocol):
    async def prove(self, proof_type: ProofType, witness: Any) -> ProofArtifact:
        ...


class Verifier(Protocol):
    def verify(self, vk: VerifyingKey, public_signals: Sequence[int], proof: Groth16Proof) -> bool:
        ...


class SnarkjsProver:
    """Witness generation with the circuit's wasm, Groth16 proving with snarkjs"""

    def __init__(self, circuits: Dict[ProofType, CircuitConfig], node_bin: str = "node",
                 snarkjs_bin: str = "snarkjs", proof_timeout: int = 600, max_concurrent: int = 1):
        self.circuits = circuits
        self.node_bin = node_bin
        self.snarkjs_bin = snarkjs_bin
        self.proof_timeout = proof_timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def prove(self, proof_type: ProofType, witness: Any) -> ProofArtifact:
        circuit = self.circuits.get(proof_type)
        if circuit is None:
            raise ProofGenerationError(f"No circuit configured for {proof_type.value}")
        missing = circuit.missing_files()
        if missing:
            raise ProofGenerationError(
                f"Circuit artifacts missing for {circuit.name}: {', '.join(map(str, missing))}")

        async with self.semaphore:
            start_time = time.time()
            loop = asyncio.get_running_loop()
            proof, public_signals = await loop.run_in_executor(
                None, self._prove_sync, circuit, witness.to_circuit_inputs())
            generation_time = time.time() - start_time

        expected = witness.public_signals()
        if public_signals != expected:
            raise ProofGenerationError(
                f"Public signals {public_signals} do not match expected {expected}")

        logger.info(f"Generated {proof_type.value} proof in {generation_time:.2f}s")
        return ProofArtifact(
            proof=Groth16Proof.from_snarkjs(proof),
            public_signals=public_signals,
            proof_type=proof_type,
            generation_time=generation_time,
        )

    def _run(self, cmd: List[str], stage: str):
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.proof_timeout)
        except subprocess.TimeoutExpired as e:
            raise ProofGenerationError(f"{stage} timed out after {self.proof_timeout}s") from e
        except FileNotFoundError as e:
            raise ProofGenerationError(f"{stage} failed: {e}") from e
        if result.returncode != 0:
            raise ProofGenerationError(f"{stage} failed: {result.stderr}")
        return result

    def _prove_sync(self, circuit: CircuitConfig, inputs: Dict[str, Any]):
        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)

            input_file = temp_path / "input.json"
            input_file.write_text(json.dumps(inputs))

            wtns_file = temp_path / "witness.wtns"
            self._run([
                self.node_bin, str(circuit.witness_generator),
                str(circuit.wasm_file), str(input_file), str(wtns_file),
            ], "Witness generation")

            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            self._run([
                self.snarkjs_bin, 'groth16', 'prove',
                str(circuit.zkey_file), str(wtns_file), str(proof_file), str(public_file),
            ], "Proof generation")

            proof = json.loads(proof_file.read_text())
            public_signals = [int(v) for v in json.loads(public_file.read_text())]
            return proof, public_signals


class SnarkjsVerifier:
    """Groth16 verification through ``snarkjs groth16 verify``"""

    def __init__(self, snarkjs_bin: str = "snarkjs", timeout: int = 120):
        self.snarkjs_bin = snarkjs_bin
        self.timeout = timeout

    def verify(self, vk: VerifyingKey, public_signals: Sequence[int], proof: Groth16Proof) -> bool:
        start_time = time.time()
        if len(public_signals) != vk.n_public:
            logger.warning(
                f"Got {len(public_signals)} public signals for a key expecting {vk.n_public}")
            return False

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            vkey_file = temp_path / "vkey.json"
            public_file = temp_path / "public.json"
            proof_file = temp_path / "proof.json"
            vkey_file.write_text(json.dumps(vk.to_json()))
            public_file.write_text(json.dumps([str(v) for v in public_signals]))
            proof_file.write_text(json.dumps(proof.to_snarkjs()))

            cmd = [self.snarkjs_bin, 'groth16', 'verify',
                   str(vkey_file), str(public_file), str(proof_file)]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except (subprocess.TimeoutExpired, FileNotFoundError) as e:
                raise ZKError(f"snarkjs verification could not run: {e}") from e

        is_valid = result.returncode == 0 and "OK!" in result.stdout
        logger.info(
            f"Verified proof in {time.time() - start_time:.3f}s: {'valid' if is_valid else 'invalid'}")
        return is_valid
