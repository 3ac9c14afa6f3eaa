"""Signed upload link tokens"""

import time

import pytest

from utils import upload_token


def test_issue_and_verify_returns_grant():
    token = upload_token.issue("kb-1", "report.pdf")

    grant = upload_token.verify(token)

    assert grant.knowledge_base_id == "kb-1"
    assert grant.file_name == "report.pdf"
    assert grant.expires_at > time.time()


def test_tampered_payload_is_rejected():
    token = upload_token.issue("kb-1", "report.pdf")
    other = upload_token.issue("kb-2", "report.pdf")
    forged = other.split(".")[0] + "." + token.split(".")[1]

    with pytest.raises(ValueError):
        upload_token.verify(forged)


def test_token_signed_with_another_secret_is_rejected():
    token = upload_token.issue("kb-1", "report.pdf", secret="other-secret")

    with pytest.raises(ValueError):
        upload_token.verify(token)


def test_expired_token_is_rejected():
    token = upload_token.issue("kb-1", "a.txt", ttl_seconds=60)

    assert upload_token.verify(token, now=time.time() + 30).file_name == "a.txt"
    with pytest.raises(ValueError, match="expired"):
        upload_token.verify(token, now=time.time() + 120)


@pytest.mark.parametrize("token", ["", "garbage", "a.", ".b", "a.b", "a.b.c", "!!!.???"])
def test_malformed_token_is_rejected(token):
    with pytest.raises(ValueError):
        upload_token.verify(token)
