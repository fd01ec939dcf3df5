import pytest

import ad_verification
from ad_verification import AdSignatureError


def test_without_secret_every_report_is_accepted(monkeypatch):
    monkeypatch.delenv("AD_CALLBACK_SECRET", raising=False)
    ad_verification.verify("alice", None, None)


def test_valid_signature_is_accepted():
    signature = ad_verification.sign("alice", "n-1", secret="s3cret")
    ad_verification.verify("alice", "n-1", signature.upper(), secret="s3cret")


def test_signature_is_bound_to_learner():
    signature = ad_verification.sign("alice", "n-1", secret="s3cret")
    with pytest.raises(AdSignatureError):
        ad_verification.verify("mallory", "n-1", signature, secret="s3cret")


def test_missing_signature_is_rejected_when_secret_set(monkeypatch):
    monkeypatch.setenv("AD_CALLBACK_SECRET", "s3cret")
    with pytest.raises(AdSignatureError):
        ad_verification.verify("alice", "n-1", None)


def test_sign_requires_secret(monkeypatch):
    monkeypatch.delenv("AD_CALLBACK_SECRET", raising=False)
    with pytest.raises(ValueError):
        ad_verification.sign("alice", "n-1")
