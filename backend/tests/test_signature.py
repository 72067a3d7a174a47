import base58
import pytest
from nacl.signing import SigningKey

from auth.signature import (
    decode_signature,
    decode_ss58,
    encode_ss58,
    verify,
    verify_signature,
)
from core.exceptions import SignatureError
from fakes import User

# Generic substrate address from the protocol examples
KNOWN_ADDRESS = "5Ebm13cUeSEFyAfC3oSwZaVuXKodbd79W8FHbXaPiG458hfJ"


def test_decode_known_generic_address():
    prefix, public_key = decode_ss58(KNOWN_ADDRESS)
    assert prefix == 42
    assert len(public_key) == 32


@pytest.mark.parametrize("prefix", [0, 2, 42, 63, 64, 255, 1284])
def test_encode_decode_preserves_prefix_and_key(prefix):
    key = bytes(SigningKey.generate().verify_key)
    assert decode_ss58(encode_ss58(key, prefix)) == (prefix, key)


def test_generic_addresses_start_with_5():
    key = bytes(SigningKey.generate().verify_key)
    assert encode_ss58(key).startswith("5")


def test_decode_rejects_bad_checksum():
    raw = bytearray(base58.b58decode(KNOWN_ADDRESS))
    raw[-1] ^= 0xFF
    with pytest.raises(SignatureError, match="checksum"):
        decode_ss58(base58.b58encode(bytes(raw)).decode())


@pytest.mark.parametrize("address", ["", "0OIl", "5Ebm13c", KNOWN_ADDRESS + "1"])
def test_decode_rejects_malformed_addresses(address):
    with pytest.raises(SignatureError):
        decode_ss58(address)


def test_verify_accepts_signature_from_address_owner():
    user = User()
    assert verify_signature(user.address, "7", user.sign(7)) is True


def test_verify_rejects_signature_over_other_message():
    user = User()
    assert verify_signature(user.address, "8", user.sign(7)) is False


def test_verify_rejects_signature_from_other_key():
    owner, intruder = User(), User()
    assert verify_signature(owner.address, "1", intruder.sign(1)) is False


def test_verify_enforces_expected_prefix():
    user = User(prefix=2)
    sig = decode_signature(user.sign(1))
    assert verify(user.address, b"1", sig, expected_prefix=2) is True
    with pytest.raises(SignatureError, match="prefix"):
        verify(user.address, b"1", sig, expected_prefix=42)


@pytest.mark.parametrize("signature", [
    "0xzz",
    "0x" + "ab" * 63,
    "not-hex",
    "",
    "0x" + " ".join(["ab"] * 64),
    "0x" + "ab" * 64 + "\n",
])
def test_decode_signature_rejects_malformed(signature):
    with pytest.raises(SignatureError):
        decode_signature(signature)


def test_decode_signature_accepts_missing_0x():
    assert decode_signature("ab" * 64) == bytes.fromhex("ab" * 64)
