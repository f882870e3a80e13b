import pathlib

import pytest

import sopswatch.sops
from sopswatch.classify import Classification, Classifier
from sopswatch.sops import Sops
from sopswatch.utils import FileIOError, ToolInvocationError, ToolNotFound

from conftest import CIPHERTEXT, PLAINTEXT


def test_locate(fake_sops, monkeypatch):
    monkeypatch.setenv('PATH', str(fake_sops.parent))
    assert Sops.locate().binary == fake_sops


def test_locate_missing(tmp_path, monkeypatch):
    monkeypatch.setenv('PATH', str(tmp_path))
    with pytest.raises(ToolNotFound):
        Sops.locate()


def test_decrypt(sops, secret, calls):
    assert sops.decrypt(secret) == PLAINTEXT
    assert secret.read_bytes() == PLAINTEXT
    assert calls() == ['decrypt secrets.sops.yaml']


def test_decrypt_preserves_mode(sops, secret):
    secret.chmod(0o600)
    sops.decrypt(secret)
    assert secret.stat().st_mode & 0o777 == 0o600


def test_decrypt_plaintext(sops, secret, calls):
    secret.write_bytes(PLAINTEXT)
    assert sops.decrypt(secret) == PLAINTEXT
    assert calls() == []


def test_decrypt_failure(sops, secret, calls, fail):
    fail('decrypt')
    with pytest.raises(ToolInvocationError) as info:
        sops.decrypt(secret)
    assert info.value.verb == 'decrypt'
    assert info.value.invocation.status == 1
    assert 'no matching creation rule' in info.value.stderr
    assert secret.read_bytes() == CIPHERTEXT


def test_decrypt_missing(sops, workspace):
    with pytest.raises(FileIOError):
        sops.decrypt(workspace / 'missing.sops.yaml')


def test_contents_is_repeatable(sops, secret):
    assert sops.contents(secret) == sops.contents(secret) == PLAINTEXT
    assert secret.read_bytes() == CIPHERTEXT


def test_encrypt(sops, secret, calls):
    secret.write_bytes(PLAINTEXT)
    sops.encrypt(secret)
    assert secret.read_bytes() == CIPHERTEXT
    assert calls() == ['encrypt secrets.sops.yaml']


def test_encrypt_ciphertext(sops, secret, calls):
    sops.encrypt(secret)
    sops.encrypt(secret)
    assert secret.read_bytes() == CIPHERTEXT
    assert calls() == []


def test_encrypt_failure(sops, secret, fail):
    secret.write_bytes(PLAINTEXT)
    fail('encrypt')
    with pytest.raises(ToolInvocationError):
        sops.encrypt(secret)
    assert secret.read_bytes() == PLAINTEXT


def test_encrypt_failure_rolls_back(sops, secret, fail):
    secret.write_bytes(PLAINTEXT)
    fail('encrypt', corrupt=True)
    with pytest.raises(ToolInvocationError):
        sops.encrypt(secret)
    assert secret.read_bytes() == PLAINTEXT


def test_encrypt_rolls_back_when_result_is_unreadable(sops, secret, monkeypatch):
    secret.write_bytes(PLAINTEXT)
    reads = []

    def read_bytes(path):
        reads.append(path)
        if len(reads) > 1:
            raise FileIOError(path, "Permission denied")
        return path.read_bytes()

    monkeypatch.setattr(sopswatch.sops, 'read_bytes', read_bytes)
    with pytest.raises(FileIOError):
        sops.encrypt(secret)
    assert secret.read_bytes() == PLAINTEXT


def test_encrypt_checks_result(tmp_path, secret):
    # A binary that succeeds without encrypting anything.
    binary = tmp_path / 'true-sops'
    binary.write_text('#!/bin/sh\nexit 0\n')
    binary.chmod(0o755)
    secret.write_bytes(PLAINTEXT)
    with pytest.raises(ToolInvocationError):
        Sops(binary).encrypt(secret)
    assert secret.read_bytes() == PLAINTEXT


def test_round_trip(sops, secret):
    sops.decrypt(secret)
    sops.encrypt(secret)
    assert Classifier().classify(secret) is Classification.CIPHERTEXT


def test_timeout(fake_sops, secret, monkeypatch):
    monkeypatch.setenv('FAKE_SOPS_SLEEP', '5')
    with pytest.raises(ToolInvocationError) as info:
        Sops(fake_sops, timeout=0.5).contents(secret)
    assert info.value.invocation.status is None
    assert 'timed out' in info.value.stderr


def test_unrunnable_binary(tmp_path, secret):
    with pytest.raises(ToolInvocationError):
        Sops(tmp_path / 'missing').contents(secret)
    assert secret.read_bytes() == CIPHERTEXT


def test_binary_path_conversion(fake_sops):
    assert Sops(str(fake_sops)).binary == pathlib.Path(fake_sops)
