import pytest

from inbox_hub.utils.encryption import EncryptionError, TokenCipher, verify_hub_signature
from tests.factories import APP_SECRET, sign


BODY = b'{"object":"page","entry":[]}'


def test_valid_signature_verifies():
    assert verify_hub_signature(BODY, APP_SECRET, sign(BODY))


def test_uppercase_hex_digest_verifies():
    header = sign(BODY)
    assert verify_hub_signature(BODY, APP_SECRET, "sha256=" + header[len("sha256="):].upper())


@pytest.mark.parametrize("header", [
    None,
    "",
    "sha1=abcdef",
    "sha256=",
    "sha256=deadbeef",
])
def test_bad_headers_never_verify(header):
    assert not verify_hub_signature(BODY, APP_SECRET, header)


def test_signature_over_other_bytes_fails():
    # re-serialized JSON no longer matches what Meta signed
    assert not verify_hub_signature(b'{"object": "page", "entry": []}', APP_SECRET, sign(BODY))


def test_wrong_secret_fails():
    assert not verify_hub_signature(BODY, APP_SECRET, sign(BODY, secret="other-secret"))


def test_empty_secret_never_verifies():
    assert not verify_hub_signature(BODY, "", sign(BODY, secret=""))


def test_token_cipher_roundtrip_and_passthrough():
    cipher = TokenCipher(TokenCipher.generate_key())
    encrypted = cipher.encrypt("EAAB-token")
    assert encrypted != "EAAB-token"
    assert cipher.decrypt(encrypted) == "EAAB-token"

    plain = TokenCipher()
    assert not plain.enabled
    assert plain.encrypt("EAAB-token") == "EAAB-token"


def test_token_cipher_rejects_foreign_ciphertext():
    encrypted = TokenCipher(TokenCipher.generate_key()).encrypt("EAAB-token")
    with pytest.raises(EncryptionError):
        TokenCipher(TokenCipher.generate_key()).decrypt(encrypted)
