import asyncio

from fotomultas.infrastructure.blockchain.integrity import IntegrityVerifier
from fotomultas.schemas.fine import ALL_CHECKS_PASSED, FineState
from tests.fakes import FakeChain, make_gateway, seed_fine


def _verify(chain, fine_id, page_size=100):
    return asyncio.run(IntegrityVerifier(make_gateway(chain), page_size=page_size).verify(fine_id))


def test_fresh_fine_without_history_is_valid():
    chain = FakeChain()
    fine_id = seed_fine(chain)

    report = asyncio.run(make_gateway(chain).verify_blockchain_integrity(fine_id))

    assert report.is_valid
    assert report.violations == [ALL_CHECKS_PASSED]
    assert report.registration_block == 101
    assert report.registration_timestamp == chain.fines[0][4]
    assert report.status_history_length == 0
    assert report.last_status_update == 0


def test_consistent_history_is_valid():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.append_status(fine_id, FineState.APPEALED, "Appeal filed")
    chain.append_status(fine_id, FineState.CANCELLED, "Appeal granted")

    report = _verify(chain, fine_id)

    assert report.is_valid
    assert report.status_history_length == 2
    assert report.last_status_update == chain.histories[fine_id][-1][0]


def test_status_mismatch_with_last_update():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.append_status(fine_id, FineState.PAID, "Paid")
    chain.fines[0][8] = int(FineState.APPEALED)

    report = _verify(chain, fine_id)

    assert not report.is_valid
    assert any("does not match" in v for v in report.violations)


def test_zero_registration_timestamp():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.registrations[fine_id] = (101, 0)

    report = _verify(chain, fine_id)

    assert not report.is_valid
    assert "Registration timestamp is zero" in report.violations


def test_status_without_history():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.fines[0][8] = int(FineState.PAID)

    report = _verify(chain, fine_id)

    assert not report.is_valid
    assert any("without history" in v for v in report.violations)


def test_broken_chain_of_old_states():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.append_status(fine_id, FineState.APPEALED, "Appeal filed")
    chain.append_status(fine_id, FineState.RESOLVED_APPEAL, "Resolved")
    ts, _, new, reason, sender = chain.histories[fine_id][1]
    chain.histories[fine_id][1] = (ts, int(FineState.PENDING), new, reason, sender)

    report = _verify(chain, fine_id)

    assert not report.is_valid
    assert any("Status update 2" in v for v in report.violations)


def test_long_history_checks_newest_entry_on_last_page():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.append_status(fine_id, FineState.APPEALED, "Appeal filed")
    chain.append_status(fine_id, FineState.RESOLVED_APPEAL, "Resolved")
    chain.append_status(fine_id, FineState.PAID, "Paid")

    report = _verify(chain, fine_id, page_size=2)

    assert report.is_valid
    assert report.status_history_length == 3
    assert report.last_status_update == chain.histories[fine_id][-1][0]


def test_missing_fine_becomes_invalid_report():
    report = _verify(FakeChain(), 42)

    assert not report.is_valid
    assert len(report.violations) == 1
    assert "42" in report.violations[0]


def test_node_failure_becomes_invalid_report():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.fail_reads = True

    report = _verify(chain, fine_id)

    assert not report.is_valid
    assert len(report.violations) == 1
    assert report.violations[0].startswith("Integrity verification failed")
