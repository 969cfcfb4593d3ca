import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sealdesk.core.locks import EnvelopeLockRegistry
from sealdesk.core.db import init_db
from sealdesk.workflow.services import EnvelopeService
from test.config import SIGNER_A, SIGNER_B, SIGNER_C
from test.utils import build_envelope, signature_data_url


@pytest.fixture
def file_sessionmaker(tmp_path):
    """Sessions on a file database so every thread gets its own connection"""
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'sealdesk.db'}", connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


def test_parallel_signers_complete_exactly_once(file_sessionmaker, storage, notifier, registry, recorder, clock):
    setup = file_sessionmaker()
    service = EnvelopeService(setup, storage, notifier, integrations=registry, clock=clock)
    envelope = service.create_envelope(
        build_envelope([SIGNER_A, SIGNER_B, SIGNER_C], signing_order="parallel")
    )
    envelope = service.send_envelope(envelope.id)
    envelope_id = envelope.id
    jobs = [(s.signing_token, f"sig-{s.order - 1}") for s in envelope.signers]
    setup.close()

    barrier = threading.Barrier(len(jobs))
    results, errors = [], []

    def sign(token, field_id):
        db = file_sessionmaker()
        try:
            worker = EnvelopeService(db, storage, notifier, integrations=registry, clock=clock)
            barrier.wait()
            results.append(worker.sign(token, {field_id: signature_data_url()}))
        except Exception as e:  # pylint: disable=broad-except
            errors.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=sign, args=job) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert errors == []
    assert len(results) == 3
    assert [r.is_complete for r in results].count(True) == 1

    check = file_sessionmaker()
    try:
        service = EnvelopeService(check, storage, notifier, integrations=registry, clock=clock)
        envelope = service.get_envelope(envelope_id)
        assert envelope.status == "completed"
        assert all(s.status == "signed" for s in envelope.signers)

        counts = service.audit.counts_by_type(envelope_id)
        assert counts["completed"] == 1
        assert counts["signed"] == 3
        assert service.audit.verify_chain(envelope_id).chain_intact is True
    finally:
        check.close()

    assert recorder.names().count("envelope_completed") == 1
    assert recorder.names().count("signer_completed") == 3


def test_forgotten_lock_still_excludes_waiting_threads():
    locks = EnvelopeLockRegistry()
    inside, overlaps = [], []
    first_in, release_first = threading.Event(), threading.Event()

    def critical(name):
        with locks.hold("env-1"):
            if inside:
                overlaps.append((inside[0], name))
            inside.append(name)
            if name == "first":
                first_in.set()
                release_first.wait(timeout=10)
            inside.remove(name)

    first = threading.Thread(target=critical, args=("first",))
    first.start()
    assert first_in.wait(timeout=10)

    locks.forget("env-1")
    assert len(locks) == 1

    late = threading.Thread(target=critical, args=("late",))
    late.start()
    late.join(timeout=0.2)
    assert late.is_alive()

    release_first.set()
    first.join(timeout=10)
    late.join(timeout=10)

    assert overlaps == []
    assert len(locks) == 0


def test_idle_lock_is_dropped_on_forget():
    locks = EnvelopeLockRegistry()
    with locks.hold("env-1"):
        with locks.hold("env-1"):
            pass
    assert len(locks) == 1

    locks.forget("env-1")
    locks.forget("env-unknown")
    assert len(locks) == 0
