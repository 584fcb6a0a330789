import json
import string
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import ServiceUnavailable
from google.auth.exceptions import DefaultCredentialsError, RefreshError

from envcrypt.cipher_util import CipherUtil
from envcrypt.crypto import wire
from envcrypt.crypto.engine import CryptoEngine
from envcrypt.crypto.keys import KeyMaterial
from envcrypt.errors import CryptoFailure, ProviderInitFailure, RemoteProviderFailure
from envcrypt.kms.google_kms import GoogleCipher, LazyClient
from envcrypt.kms.provider import ProviderType

PROPERTIES = {
    "projectId": "test-project",
    "locationId": "global",
    "keyRingId": "test-ring",
    "keyId": "test-key",
}
KEY_NAME = "projects/test-project/locations/global/keyRings/test-ring/cryptoKeys/test-key"


def echo_client():
    """KMS client whose Encrypt/Decrypt return their input unchanged."""
    client = MagicMock()
    client.encrypt.side_effect = lambda request: SimpleNamespace(ciphertext=request["plaintext"])
    client.decrypt.side_effect = lambda request: SimpleNamespace(plaintext=request["ciphertext"])
    return client


@pytest.fixture
def kms_client():
    return echo_client()


@pytest.fixture
def google_cipher(kms_client):
    return GoogleCipher(CryptoEngine(), PROPERTIES, kms_client=kms_client)


def test_key_name(google_cipher):
    assert google_cipher.key_name == KEY_NAME


def test_decrypt_with_fixed_data_key(google_cipher, kms_client):
    data_key = KeyMaterial.from_printable(CipherUtil.generate_new_key("AES"))
    google_cipher.set_data_key(data_key)

    wrapped = google_cipher.encrypt(b"Hello World")
    assert google_cipher.decrypt(wrapped) == b"Hello World"

    request = kms_client.encrypt.call_args.kwargs["request"]
    assert request["name"] == KEY_NAME
    assert request["plaintext"] == data_key.to_printable().encode()


def test_roundtrip_with_fresh_data_keys(google_cipher):
    first = google_cipher.encrypt(b"Hello World")
    second = google_cipher.encrypt(b"Hello World")
    assert first.wrapped_data_key != second.wrapped_data_key
    assert google_cipher.decrypt(first) == b"Hello World"
    assert google_cipher.decrypt(second) == b"Hello World"


def test_repeated_decrypts_unwrap_once(google_cipher, kms_client):
    text = wire.render(google_cipher.encrypt(b"Hello World"))
    with ThreadPoolExecutor(max_workers=3) as pool:
        results = list(pool.map(lambda t: google_cipher.decrypt(wire.parse(t)), [text] * 3))
    assert results == [b"Hello World"] * 3
    assert kms_client.decrypt.call_count == 1
    assert kms_client.decrypt.call_args.kwargs["request"]["name"] == KEY_NAME


def test_remote_encrypt_failure(google_cipher, kms_client):
    kms_client.encrypt.side_effect = ServiceUnavailable("kms down")
    with pytest.raises(RemoteProviderFailure) as exc:
        google_cipher.encrypt(b"Hello World")
    assert isinstance(exc.value.__cause__, ServiceUnavailable)


def test_remote_decrypt_failure_is_not_cached(google_cipher, kms_client):
    wrapped = google_cipher.encrypt(b"Hello World")
    echo = kms_client.decrypt.side_effect
    kms_client.decrypt.side_effect = ServiceUnavailable("kms down")
    with pytest.raises(RemoteProviderFailure):
        google_cipher.decrypt(wrapped)

    kms_client.decrypt.side_effect = echo
    assert google_cipher.decrypt(wrapped) == b"Hello World"
    assert kms_client.decrypt.call_count == 2


def test_unwrapped_garbage_is_crypto_failure(google_cipher, kms_client):
    wrapped = google_cipher.encrypt(b"Hello World")
    kms_client.decrypt.side_effect = lambda request: SimpleNamespace(plaintext=b"\xff\xfe")
    with pytest.raises(CryptoFailure):
        google_cipher.decrypt(wrapped)


def test_client_created_lazily_once():
    client = echo_client()
    with patch("envcrypt.kms.google_kms.create_kms_client", return_value=client) as factory:
        cipher = GoogleCipher(CryptoEngine(), PROPERTIES)
        assert factory.call_count == 0
        assert not cipher.client.ready

        wrapped = cipher.encrypt(b"Hello World")
        cipher.encrypt(b"again")
        assert cipher.decrypt(wrapped) == b"Hello World"
        assert factory.call_count == 1
        assert cipher.client.ready


def test_lazy_client_concurrent_get():
    factory = MagicMock(return_value=object())
    lazy = LazyClient(factory)
    with ThreadPoolExecutor(max_workers=8) as pool:
        clients = list(pool.map(lambda _: lazy.get(), range(32)))
    assert factory.call_count == 1
    assert all(c is clients[0] for c in clients)


def test_client_creation_failure():
    cipher = GoogleCipher(CryptoEngine(), PROPERTIES)
    with patch("envcrypt.kms.google_kms.kms.KeyManagementServiceClient",
               side_effect=DefaultCredentialsError("no credentials")):
        with pytest.raises(ProviderInitFailure):
            cipher.encrypt(b"Hello World")


def test_missing_credential_file(tmp_path):
    properties = dict(PROPERTIES, credentialFile=str(tmp_path / "missing.json"))
    cipher = GoogleCipher(CryptoEngine(), properties)
    with pytest.raises(ProviderInitFailure):
        cipher.encrypt(b"Hello World")


def test_credential_file_is_used(tmp_path):
    properties = dict(PROPERTIES, credentialFile=str(tmp_path / "sa.json"))
    credentials = object()
    cipher = GoogleCipher(CryptoEngine(), properties)
    with patch("envcrypt.kms.google_kms.service_account.Credentials.from_service_account_file",
               return_value=credentials) as loader, \
            patch("envcrypt.kms.google_kms.kms.KeyManagementServiceClient",
                  return_value=echo_client()) as client_cls:
        cipher.encrypt(b"Hello World")
    loader.assert_called_once_with(properties["credentialFile"])
    client_cls.assert_called_once_with(credentials=credentials)


def test_hash(google_cipher):
    salt = CipherUtil.generate_new_salt()
    assert google_cipher.hash("Hello World", salt) == google_cipher.hash("Hello World", salt)
    assert google_cipher.hash("Hello World", salt) != google_cipher.hash("Hello World", CipherUtil.generate_new_salt())


def test_provider_type_and_master_key_info(google_cipher):
    assert google_cipher.provider_type() == ProviderType.GOOGLE_KMS
    assert json.loads(google_cipher.master_key_info()) == {
        "provider": "GOOGLE_KMS",
        "projectId": "test-project",
        "keyId": "test-key",
        "keyRingId": "test-ring",
        "locationId": "global",
    }


def _tail_variants(segment: str):
    for c in string.ascii_letters + string.digits + "-_+/=":
        if c != segment[-1]:
            yield segment[:-1] + c
    yield segment + "="


@pytest.mark.parametrize("payload", [b"Hello World", b"Hello World!"])
def test_last_character_edits_fail(google_cipher, payload):
    wrapped = google_cipher.encrypt(payload)
    for variant in _tail_variants(wrapped.ciphertext):
        with pytest.raises(CryptoFailure):
            google_cipher.decrypt(wire.WrappedCipherText(wrapped.wrapped_data_key, variant))
    for variant in _tail_variants(wrapped.wrapped_data_key):
        with pytest.raises(CryptoFailure):
            google_cipher.decrypt(wire.WrappedCipherText(variant, wrapped.ciphertext))
    assert google_cipher.decrypt(wrapped) == payload


@pytest.mark.parametrize("missing", ["projectId", "locationId", "keyRingId", "keyId"])
def test_missing_key_identity(missing):
    properties = {k: v for k, v in PROPERTIES.items() if k != missing}
    with pytest.raises(ProviderInitFailure, match=missing):
        GoogleCipher(CryptoEngine(), properties, kms_client=echo_client())


def test_auth_error_during_remote_call(google_cipher, kms_client):
    wrapped = google_cipher.encrypt(b"Hello World")
    kms_client.encrypt.side_effect = RefreshError("token expired")
    kms_client.decrypt.side_effect = RefreshError("token expired")
    with pytest.raises(RemoteProviderFailure) as exc:
        google_cipher.encrypt(b"Hello World")
    assert isinstance(exc.value.__cause__, RefreshError)
    with pytest.raises(RemoteProviderFailure):
        google_cipher.decrypt(wrapped)
