import pytest

from primitives import eddsa, sponge
from primitives.babyjub import BabyJubJub
from primitives.command import Command, build_vote, decrypt_message, pack, unpack
from primitives.errors import (
    AuthenticationError,
    CommandPackingError,
    FieldRangeError,
    InvalidPublicKeyError,
    MalformedCiphertextError,
    SignatureError,
)
from primitives.field import SNARK_FIELD_SIZE
from primitives.keys import Keypair, PublicKey, derive_private_key, shared_key
from primitives.merkle import QuinaryTree, compute_root, root_from_path
from primitives.structures import FOR, Message


class TestPoseidon:

    def test_two_inputs(self, ctx):
        assert ctx.hash([1, 2]) == 0x115cc0f5e7d690413df64c6b9662e9cf2a3617f2743245519e19607a4417189a

    def test_four_inputs(self, ctx):
        assert ctx.hash([1, 2, 3, 4]) == 0x299c867db6c1fdd79dcefa40e4510b9837e60ebb1ce0663dbaa525df65250465

    def test_first_round_constant(self, ctx):
        constant = ctx.poseidon(3).round_constants[0]
        assert constant == 0x0ee9a592ba9a9518d05986d656f40c2114c4993c11bb29938d21d47304cd8e6e

    def test_input_count_limits(self, ctx):
        with pytest.raises(ValueError):
            ctx.hash([])
        with pytest.raises(ValueError):
            ctx.hash(list(range(9)))

    def test_field_array_rejects_out_of_range(self, ctx):
        with pytest.raises(FieldRangeError):
            ctx.elements([1, SNARK_FIELD_SIZE])


class TestKeys:

    def test_derivation_is_deterministic(self, ctx):
        assert Keypair.from_seed(ctx, b"seed") == Keypair.from_seed(ctx, b"seed")
        assert derive_private_key(b"a") != derive_private_key(b"b")

    def test_public_key_is_in_subgroup(self, ctx):
        keypair = Keypair.from_seed(ctx, b"voter")
        assert ctx.babyjub.is_valid_public_key(keypair.public_key.as_tuple())

    def test_serialization(self, ctx):
        keypair = Keypair.from_seed(ctx, b"voter")
        text = keypair.serialize_private_key()
        assert text.startswith("macisk.")
        assert Keypair.deserialize(ctx, text) == keypair
        assert PublicKey.deserialize(keypair.public_key.serialize()) == keypair.public_key

    def test_ecdh_is_symmetric(self, ctx):
        alice = Keypair.from_seed(ctx, b"alice")
        bob = Keypair.from_seed(ctx, b"bob")
        assert shared_key(ctx, alice.private_key, bob.public_key) == \
            shared_key(ctx, bob.private_key, alice.public_key)

    def test_ecdh_rejects_identity_and_off_curve(self, ctx):
        alice = Keypair.from_seed(ctx, b"alice")
        with pytest.raises(InvalidPublicKeyError):
            shared_key(ctx, alice.private_key, BabyJubJub.IDENTITY)
        with pytest.raises(InvalidPublicKeyError):
            shared_key(ctx, alice.private_key, (1, 2))

    def test_zero_private_key_rejected(self, ctx):
        with pytest.raises(ValueError):
            Keypair.from_private_key(ctx, 0)


class TestEdDSA:

    def test_sign_and_verify(self, ctx):
        keypair = Keypair.from_seed(ctx, b"signer")
        signature = eddsa.sign(ctx, keypair.private_key, 12345)
        assert eddsa.verify(ctx, 12345, signature, keypair.public_key)

    def test_wrong_message_or_key_fails(self, ctx):
        keypair = Keypair.from_seed(ctx, b"signer")
        other = Keypair.from_seed(ctx, b"other")
        signature = eddsa.sign(ctx, keypair.private_key, 12345)
        assert not eddsa.verify(ctx, 12344, signature, keypair.public_key)
        assert not eddsa.verify(ctx, 12345, signature, other.public_key)

    def test_tampered_scalar_fails(self, ctx):
        keypair = Keypair.from_seed(ctx, b"signer")
        signature = eddsa.sign(ctx, keypair.private_key, 7)
        flipped = eddsa.Signature(signature.r8, signature.s ^ 1)
        assert not eddsa.verify(ctx, 7, flipped, keypair.public_key)

    def test_tampered_r8_fails(self, ctx):
        keypair = Keypair.from_seed(ctx, b"signer")
        signature = eddsa.sign(ctx, keypair.private_key, 7)
        other_point = ctx.babyjub.add(signature.r8, BabyJubJub.BASE8)
        assert not eddsa.verify(ctx, 7, eddsa.Signature(other_point, signature.s), keypair.public_key)
        off_curve = (signature.r8[0] ^ 1, signature.r8[1])
        assert not eddsa.verify(ctx, 7, eddsa.Signature(off_curve, signature.s), keypair.public_key)

    def test_sign_rejects_out_of_range_message(self, ctx):
        keypair = Keypair.from_seed(ctx, b"signer")
        with pytest.raises(FieldRangeError):
            eddsa.sign(ctx, keypair.private_key, SNARK_FIELD_SIZE + 7)


class TestSponge:

    @pytest.fixture
    def key(self, ctx):
        return shared_key(ctx, Keypair.from_seed(ctx, b"a").private_key,
                          Keypair.from_seed(ctx, b"b").public_key)

    def test_ciphertext_shape(self, ctx, key):
        assert len(sponge.encrypt(ctx, list(range(7)), key, 0)) == 10
        assert len(sponge.encrypt(ctx, [1, 2, 3], key, 0)) == 4

    def test_decrypt_recovers_plaintext(self, ctx, key):
        ciphertext = sponge.encrypt(ctx, [5, 6, 7, 8], key, 3)
        assert [int(v) for v in sponge.decrypt(ctx, ciphertext, key, 3, 4)] == [5, 6, 7, 8]

    def test_tampered_ciphertext_fails_authentication(self, ctx, key):
        ciphertext = [int(v) for v in sponge.encrypt(ctx, list(range(7)), key, 0)]
        ciphertext[2] = (ciphertext[2] + 1) % SNARK_FIELD_SIZE
        with pytest.raises(AuthenticationError):
            sponge.decrypt(ctx, ciphertext, key, 0, 7)

    def test_wrong_nonce_fails_authentication(self, ctx, key):
        ciphertext = sponge.encrypt(ctx, list(range(7)), key, 0)
        assert not sponge.verify_tag(ctx, ciphertext, key, 1, 7)

    def test_wrong_length_is_malformed(self, ctx, key):
        ciphertext = sponge.encrypt(ctx, list(range(7)), key, 0)
        with pytest.raises(MalformedCiphertextError):
            sponge.decrypt(ctx, ciphertext, key, 0, 4)

    def test_nonzero_padding_is_malformed(self, ctx, key):
        # same duplex as encrypt, but the eighth slot carries 9 instead of 0
        state = [0, key[0], key[1], 7 * 2 ** 128]
        values = list(range(1, 8)) + [9, 0]
        ciphertext = []
        for i in range(0, len(values), 3):
            state = ctx.permute(state)
            state[1:4] = [(s + v) % SNARK_FIELD_SIZE for s, v in zip(state[1:4], values[i:i + 3])]
            ciphertext.extend(state[1:4])
        ciphertext.append(ctx.permute(state)[1])

        with pytest.raises(MalformedCiphertextError):
            sponge.decrypt(ctx, ciphertext, key, 0, 7)


class TestCommand:

    def test_pack_layout(self):
        packed = pack(1, 2, 3, 4, 5)
        assert packed == 1 | 2 << 50 | 3 << 100 | 4 << 150 | 5 << 200
        assert unpack(packed) == (1, 2, 3, 4, 5)

    def test_pack_overflow(self):
        with pytest.raises(CommandPackingError):
            pack(1 << 50, 0, 0, 0, 0)
        with pytest.raises(CommandPackingError):
            unpack(1 << 250)

    def test_vote_round_trip_through_coordinator(self, ctx, coordinator_keypair):
        voter = Keypair.from_seed(ctx, b"voter")
        message = build_vote(ctx, voter, coordinator_keypair.public_key, 1, FOR, 3, 1, 0)
        command, signature = decrypt_message(ctx, message, coordinator_keypair)
        assert (command.state_index, command.vote_option_index, command.new_vote_weight,
                command.nonce, command.poll_id) == (1, FOR, 3, 1, 0)
        assert command.new_pub_key == voter.public_key
        assert command.verify_signature(ctx, signature, voter.public_key)

    def test_other_key_cannot_decrypt(self, ctx, coordinator_keypair):
        voter = Keypair.from_seed(ctx, b"voter")
        message = build_vote(ctx, voter, coordinator_keypair.public_key, 1, FOR, 1, 1, 0)
        with pytest.raises(AuthenticationError):
            decrypt_message(ctx, message, Keypair.from_seed(ctx, b"eavesdropper"))

    def test_padding_message_never_decrypts(self, ctx, coordinator_keypair):
        with pytest.raises((AuthenticationError, MalformedCiphertextError)):
            decrypt_message(ctx, Message.padding(), coordinator_keypair)

    def test_signature_covers_salt(self, ctx):
        voter = Keypair.from_seed(ctx, b"voter")
        command = Command.create(1, 0, 1, 1, 0, voter.public_key, salt=11)
        signature = command.sign(ctx, voter.private_key)
        resalted = Command.create(1, 0, 1, 1, 0, voter.public_key, salt=12)
        assert not resalted.verify_signature(ctx, signature, voter.public_key)


class TestQuinaryTree:

    def test_root_matches_compute_root(self, ctx):
        tree = QuinaryTree(ctx, 2)
        for leaf in range(1, 8):
            tree.insert(leaf)
        assert tree.root == compute_root(ctx, list(range(1, 8)), 2)

    def test_path_reproduces_root(self, ctx):
        tree = QuinaryTree(ctx, 2)
        for leaf in range(1, 8):
            tree.insert(leaf)
        proof = tree.path(6)
        assert root_from_path(ctx, tree.leaf(6), proof) == tree.root

    def test_capacity(self, ctx):
        tree = QuinaryTree(ctx, 1)
        with pytest.raises(IndexError):
            tree.update(5, 1)


def test_keypair_from_wallet_signature(ctx):
    signature = "0x" + "ab" * 65
    assert Keypair.from_signature(ctx, signature) == Keypair.from_signature(ctx, bytes.fromhex("ab" * 65))


def test_malformed_signature_list():
    with pytest.raises(SignatureError):
        eddsa.Signature.from_list([1, 2])


def test_message_wire_format(ctx, coordinator_keypair):
    message = build_vote(ctx, Keypair.from_seed(ctx, b"voter"), coordinator_keypair.public_key,
                         1, FOR, 1, 1, 0)
    wire = message.as_wire()
    assert len(wire) == 12
    assert Message.from_wire(wire) == message
    with pytest.raises(FieldRangeError):
        Message.from_wire(wire[:-1] + [SNARK_FIELD_SIZE])
