import asyncio
from datetime import timezone

from fotomultas.schemas.fine import FineState
from fotomultas.services.history_aggregator import HistoryAggregator
from tests.fakes import FakeChain, make_gateway, seed_fine


def _feed(chain):
    return asyncio.run(HistoryAggregator(make_gateway(chain)).recent_history())


def test_empty_ledger_yields_empty_feed():
    assert _feed(FakeChain()) == []


def test_registration_event_is_synthesized():
    chain = FakeChain()
    seed_fine(chain, location="Calle 26", infraction="SEMAFORO_ROJO")

    feed = _feed(chain)

    assert len(feed) == 1
    assert feed[0].status == 0
    assert feed[0].reason == "Fine registered for SEMAFORO_ROJO at Calle 26"
    assert feed[0].timestamp.tzinfo == timezone.utc
    assert int(feed[0].timestamp.timestamp()) == chain.fines[0][4]


def test_feed_is_capped_and_sorted_newest_first():
    chain = FakeChain()
    for plate in ("AAA111", "BBB222", "CCC333", "DDD444"):
        fine_id = seed_fine(chain, plate)
        chain.append_status(fine_id, FineState.APPEALED, "Appeal filed")
        chain.append_status(fine_id, FineState.CANCELLED, "Appeal granted")

    feed = _feed(chain)

    assert len(feed) == 10
    stamps = [e.timestamp for e in feed]
    assert stamps == sorted(stamps, reverse=True)
    assert feed[0].plate_number == "DDD444"
    assert feed[0].status == FineState.CANCELLED


def test_feed_mixes_updates_across_fines():
    chain = FakeChain()
    first = seed_fine(chain, "AAA111")
    seed_fine(chain, "BBB222")
    chain.append_status(first, FineState.PAID, "Paid late")

    feed = _feed(chain)

    assert [(e.plate_number, e.status) for e in feed] == [
        ("AAA111", int(FineState.PAID)),
        ("BBB222", 0),
        ("AAA111", 0),
    ]


def test_update_outranks_registration_in_the_same_second():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.now -= 60
    chain.append_status(fine_id, FineState.PAID, "Paid at the roadside")
    assert chain.histories[fine_id][0][0] == chain.fines[0][4]

    feed = _feed(chain)

    assert [e.status for e in feed] == [int(FineState.PAID), 0]
