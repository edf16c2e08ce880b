"""
Tests for the renewal scheduler, including one end-to-end scenario against a
mocked ZeroSSL API.
"""
from __future__ import annotations

import stat
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import responses as resp_lib

from authority import crypto
from authority.issuer import IssuedCertificate, make_issuer
from authority.models import CertificateBundle
from errors import CancelledError, IssuanceFailedError, NotRunningError, TransportError
from outcome import SoftFailure
from renewal.scheduler import RenewalScheduler
from renewal.store import CertificateStore
from tests.conftest import API_URL, SUBJECT_IP, key_pem, zerossl_request

CHAIN = "-----BEGIN CERTIFICATE-----\nINTERMEDIATE\n-----END CERTIFICATE-----\n"


@pytest.fixture
def store(settings):
    return CertificateStore(settings.IPSSL_SSL_DIR)


@pytest.fixture
def issued(cert_factory, rsa_key):
    leaf = cert_factory(timedelta(days=90))
    return IssuedCertificate("abc123", CertificateBundle(leaf, CHAIN), key_pem(rsa_key))


@pytest.fixture
def issuer(issued):
    mock = MagicMock()
    mock.request_certificate.return_value = issued
    return mock


@pytest.fixture
def reloader():
    return MagicMock()


@pytest.fixture
def scheduler(settings, issuer, store, reloader):
    return RenewalScheduler(settings, issuer=issuer, store=store, reloader=reloader)


# ─── run_once ─────────────────────────────────────────────────────────────────

def test_valid_certificate_is_left_alone(scheduler, store, cert_factory, rsa_key, issuer, reloader):
    store.persist(cert_factory(timedelta(days=60)), key_pem(rsa_key))

    result = scheduler.run_once()

    assert result.skipped and not result.renewed and result.ok
    issuer.request_certificate.assert_not_called()
    reloader.reload.assert_not_called()


def test_missing_certificate_is_renewed_and_reloaded(scheduler, store, issuer, reloader, issued):
    result = scheduler.run_once()

    assert result.renewed and result.ok
    assert result.warnings == []
    issuer.request_certificate.assert_called_once_with(SUBJECT_IP)
    assert store.cert_path.read_text() == issued.bundle.full_chain
    assert store.key_path.read_bytes() == issued.key_pem
    reloader.reload.assert_called_once_with("caddy-1")


def test_expiring_certificate_is_renewed(scheduler, store, cert_factory, rsa_key, issuer):
    store.persist(cert_factory(timedelta(days=3)), key_pem(rsa_key))
    assert scheduler.run_once().renewed
    issuer.request_certificate.assert_called_once()


def test_issuance_failure_is_captured_not_raised(scheduler, store, issuer, reloader):
    issuer.request_certificate.side_effect = IssuanceFailedError("abc123", "cancelled")

    result = scheduler.run_once()

    assert not result.renewed
    assert isinstance(result.error, IssuanceFailedError)
    assert not store.exists()
    reloader.reload.assert_not_called()


def test_unexpected_error_is_captured(scheduler, issuer):
    issuer.request_certificate.side_effect = RuntimeError("bug")
    result = scheduler.run_once()
    assert isinstance(result.error, RuntimeError)


def test_reload_failure_is_soft(scheduler, store, reloader):
    reloader.reload.side_effect = NotRunningError("container caddy-1 is not running")

    result = scheduler.run_once()

    assert result.renewed and result.ok
    assert result.warnings == [SoftFailure("reload", "container caddy-1 is not running")]
    assert store.is_valid(timedelta(days=30))


def test_issuer_warnings_are_forwarded(scheduler, issued):
    issued.warnings.append(SoftFailure("trigger_validation", "HTTP 500"))
    result = scheduler.run_once()
    assert [w.action for w in result.warnings] == ["trigger_validation"]


def test_reload_disabled(settings, issuer, store):
    no_reload = settings.model_copy(update={"IPSSL_CONTAINER_NAME": ""})
    result = RenewalScheduler(no_reload, issuer=issuer, store=store, reloader=None).run_once()
    assert result.renewed
    assert result.warnings == []


def test_run_once_after_cancel_does_nothing(scheduler, issuer):
    scheduler.stop()
    result = scheduler.run_once()
    assert isinstance(result.error, CancelledError)
    issuer.request_certificate.assert_not_called()


# ─── run ──────────────────────────────────────────────────────────────────────

def _run_in_thread(scheduler) -> threading.Thread:
    thread = threading.Thread(target=scheduler.run, daemon=True)
    thread.start()
    return thread


def test_run_checks_immediately_and_stops_promptly(scheduler, issuer, validation_dir):
    thread = _run_in_thread(scheduler)
    time.sleep(0.3)
    start = time.monotonic()
    scheduler.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert time.monotonic() - start < 2
    issuer.request_certificate.assert_called_once()
    assert (validation_dir / ".well-known" / "pki-validation").is_dir()


def test_failed_attempt_is_retried_on_next_tick(settings, issuer, store, reloader):
    fast = settings.model_copy(update={"RENEWAL_INTERVAL": timedelta(seconds=1)})
    issuer.request_certificate.side_effect = TransportError("ZeroSSL unreachable")
    scheduler = RenewalScheduler(fast, issuer=issuer, store=store, reloader=reloader)

    thread = _run_in_thread(scheduler)
    time.sleep(2.5)
    scheduler.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert issuer.request_certificate.call_count >= 2


# ─── end-to-end ───────────────────────────────────────────────────────────────

@resp_lib.activate
def test_ip_certificate_scenario(settings, store, reloader, monkeypatch, rsa_key, cert_factory, validation_dir):
    """
    203.0.113.7, no existing request → new request abc123 → validation file
    written → issued after a few polls → cert.pem is leaf + chain, key.pem 0600.
    """
    monkeypatch.setattr(crypto, "generate_rsa_key", lambda key_size=2048: rsa_key)
    leaf = cert_factory(timedelta(days=90))
    base = f"{API_URL}/certificates"
    resp_lib.add(resp_lib.GET, base, json={"total_count": 0, "results": []})
    resp_lib.add(resp_lib.POST, base, json=zerossl_request("abc123", status="draft"))
    resp_lib.add(resp_lib.POST, f"{base}/abc123/challenges", json=zerossl_request())
    resp_lib.add(resp_lib.GET, f"{base}/abc123", json=zerossl_request(content=["abc", "def"], filename="XYZ123"))
    resp_lib.add(resp_lib.GET, f"{base}/abc123", json=zerossl_request(status="draft"))
    resp_lib.add(resp_lib.GET, f"{base}/abc123", json=zerossl_request(status="pending_validation"))
    resp_lib.add(resp_lib.GET, f"{base}/abc123", json=zerossl_request(status="issued"))
    resp_lib.add(
        resp_lib.GET, f"{base}/abc123/download/return",
        json={"certificate.crt": leaf, "ca_bundle.crt": CHAIN},
    )

    scheduler = RenewalScheduler(
        settings, issuer=make_issuer(settings), store=store, reloader=reloader
    )
    result = scheduler.run_once()

    assert result.renewed and result.ok, result.error
    assert (validation_dir / ".well-known" / "pki-validation" / "XYZ123").read_text() == "abc\ndef"
    assert store.cert_path.read_text() == leaf + "\n" + CHAIN
    assert stat.S_IMODE(store.key_path.stat().st_mode) == 0o600
    assert store.key_path.read_bytes() == key_pem(rsa_key)
    assert store.is_valid(timedelta(days=30))
    reloader.reload.assert_called_once_with("caddy-1")
