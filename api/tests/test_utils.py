import pytest
from cryptography.exceptions import InvalidTag

from dealflow.crypto import dec_field, decrypt_bytes, enc_field, encrypt_bytes
from dealflow.utils import create_file_token_name, format_money, format_roman, is_download_token


@pytest.mark.parametrize(
    "content_type, filename",
    [
        ("application/pdf", "de_ppm.pdf"),
        ("image/png", "de_ppm.png"),
        ("application/octet-stream", "de_ppm"),
        ("", "de_ppm"),
    ],
)
def test_file_token_name(content_type, filename):
    token, name = create_file_token_name("de_ppm", content_type)
    assert is_download_token(token)
    assert name == filename


def test_tokens_are_unique():
    tokens = {create_file_token_name("x", "")[0] for _ in range(50)}
    assert len(tokens) == 50
    assert not is_download_token("A" * 64)
    assert not is_download_token("a" * 63)


def test_encrypted_fields():
    sealed = enc_field("021000021")
    assert sealed != "021000021"
    assert enc_field("021000021") != sealed
    assert dec_field(sealed) == "021000021"
    assert enc_field("") == "" and dec_field("") == ""


def test_tampered_blob_rejected():
    blob = bytearray(encrypt_bytes(b"signed document"))
    blob[-1] ^= 0x01
    with pytest.raises(InvalidTag):
        decrypt_bytes(bytes(blob))
    with pytest.raises(ValueError):
        encrypt_bytes(b"x", secret="abcd")


def test_formatting():
    assert [format_roman(n) for n in (1, 4, 9, 14, 2024)] == ["I", "IV", "IX", "XIV", "MMXXIV"]
    assert format_money(1234567.4) == "$1,234,567"
