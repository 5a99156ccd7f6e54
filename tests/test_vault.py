"""Tests for vault encryption."""

import pytest

from envbuddel import vault
from envbuddel.exceptions import AuthenticationFailedError
from envbuddel.vault import NONCE_SIZE, TAG_SIZE, VAULT_MAGIC, Vault


def test_seal_open_round_trip(test_key):
    """Test opening a sealed vault recovers the plaintext."""
    sealed = vault.seal(b"secret tree", test_key)
    assert vault.open_vault(sealed, test_key) == b"secret tree"


def test_empty_plaintext(test_key):
    """Test empty plaintext is legal."""
    sealed = vault.seal(b"", test_key)
    assert sealed.ciphertext == b""
    assert vault.open_vault(sealed, test_key) == b""


def test_binary_layout(test_key):
    """Test magic, nonce, ciphertext and tag order and widths."""
    plaintext = b"x" * 10
    data = vault.seal(plaintext, test_key).to_bytes()
    assert data.startswith(VAULT_MAGIC)
    assert len(data) == len(VAULT_MAGIC) + NONCE_SIZE + len(plaintext) + TAG_SIZE
    assert NONCE_SIZE == 12


def test_fresh_nonce_every_seal(test_key):
    """Test identical inputs never produce identical vaults."""
    first = vault.seal(b"same", test_key)
    second = vault.seal(b"same", test_key)
    assert first.nonce != second.nonce
    assert first.to_bytes() != second.to_bytes()


def test_wrong_key(test_key, other_key):
    """Test a different key fails authentication."""
    sealed = vault.seal(b"secret", test_key)
    with pytest.raises(AuthenticationFailedError):
        vault.open_vault(sealed, other_key)


def test_every_byte_flip_detected(test_key):
    """Test flipping any single byte of the vault fails authentication."""
    data = vault.encrypt(b"secret content", test_key)
    for i in range(len(data)):
        tampered = bytearray(data)
        tampered[i] ^= 0x01
        with pytest.raises(AuthenticationFailedError):
            vault.decrypt(bytes(tampered), test_key)


def test_truncated_vault(test_key):
    """Test truncation fails authentication."""
    data = vault.encrypt(b"secret content", test_key)
    with pytest.raises(AuthenticationFailedError):
        vault.decrypt(data[:-1], test_key)


@pytest.mark.parametrize(
    "data",
    [b"", b"garbage", VAULT_MAGIC, b"\x00" * 64, b"ENVBUDDEL_VAULT_V1:\n!!!\n"],
)
def test_garbage_indistinguishable_from_wrong_key(data, test_key, other_key):
    """Test malformed vaults fail exactly like a wrong key."""
    with pytest.raises(AuthenticationFailedError) as garbage:
        vault.decrypt(data, test_key)

    sealed = vault.encrypt(b"secret", other_key)
    with pytest.raises(AuthenticationFailedError) as wrong_key:
        vault.decrypt(sealed, test_key)

    assert str(garbage.value) == str(wrong_key.value)


def test_armor_round_trip(test_key):
    """Test the armored text form decrypts."""
    data = vault.encrypt(b"secret" * 50, test_key, armor=True)
    text = data.decode("ascii")
    lines = text.splitlines()
    assert lines[0] == vault.ARMOR_HEADER
    assert all(len(line) <= vault.ARMOR_WIDTH for line in lines[1:])
    assert vault.decrypt(data, test_key) == b"secret" * 50


def test_armor_tolerates_crlf(test_key):
    """Test armored vaults survive CRLF line endings."""
    data = vault.encrypt(b"secret", test_key, armor=True)
    crlf = data.replace(b"\n", b"\r\n")
    assert vault.decrypt(crlf, test_key) == b"secret"


def test_armor_tampered(test_key):
    """Test a modified armored vault fails authentication."""
    sealed = vault.seal(b"secret", test_key)
    raw = bytearray(sealed.to_bytes())
    raw[-1] ^= 0xFF
    tampered = Vault.from_bytes(bytes(raw)).to_armor()
    with pytest.raises(AuthenticationFailedError):
        vault.decrypt(tampered, test_key)


def test_is_vault(test_key):
    """Test header detection for both forms."""
    assert vault.is_vault(vault.encrypt(b"x", test_key))
    assert vault.is_vault(vault.encrypt(b"x", test_key, armor=True))
    assert not vault.is_vault(b"KEY=value\n")


def test_associated_data_binds_magic(test_key):
    """Test the header is authenticated together with the ciphertext."""
    from cryptography.exceptions import InvalidTag
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    sealed = vault.seal(b"secret", test_key)
    aesgcm = AESGCM(test_key.raw)
    with pytest.raises(InvalidTag):
        aesgcm.decrypt(sealed.nonce, sealed.ciphertext + sealed.tag, None)
    assert (
        aesgcm.decrypt(sealed.nonce, sealed.ciphertext + sealed.tag, VAULT_MAGIC)
        == b"secret"
    )
