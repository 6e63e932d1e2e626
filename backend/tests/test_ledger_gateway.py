import asyncio
import re

import pytest
from web3.exceptions import ContractLogicError

from fotomultas.core.errors import LedgerReadError, LedgerWriteError, NotFound, ValidationError
from fotomultas.infrastructure.blockchain.ledger_gateway import FALLBACK_GAS_LIMIT, _canonical_type
from fotomultas.schemas.fine import (
    DerivedFromCount,
    FineRegistration,
    FineState,
    Found,
)
from tests.fakes import OPERATOR, VALID_CID, FakeChain, FakeContractCall, make_gateway, seed_fine

TX_HASH = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _registration(plate="ABC123"):
    return FineRegistration(
        plate_number=plate,
        location="Calle 80 con Carrera 30",
        infraction_type="EXCESO_VELOCIDAD",
        cost=500_000,
        owner_identifier="CC-1020304050",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION / ID DERIVATION
# ═══════════════════════════════════════════════════════════════════════════════

def test_register_reads_id_from_event():
    chain = FakeChain()
    gateway = make_gateway(chain)

    result = asyncio.run(gateway.register_fine(_registration(), VALID_CID))

    assert result.fine_id == 1
    assert result.derivation == Found(1)
    assert TX_HASH.match(result.tx_hash)
    assert chain.fines[0][1] == "ABC123"
    assert chain.fines[0][2] == VALID_CID


def test_register_builds_signed_transaction_with_headroom():
    chain = FakeChain()
    asyncio.run(make_gateway(chain).register_fine(_registration(), VALID_CID))

    tx = chain.sent[0]
    assert tx["from"] == OPERATOR
    assert tx["chainId"] == 31337
    assert tx["gas"] == int(150_000 * 1.2)
    assert tx["nonce"] == 0
    assert tx["fn"][0] == "registerFine"


def test_register_falls_back_to_fine_count_without_event():
    chain = FakeChain()
    seed_fine(chain, "XYZ789")
    chain.emit_events = False

    result = asyncio.run(make_gateway(chain).register_fine(_registration(), VALID_CID))

    assert result.derivation == DerivedFromCount(2)
    assert result.fine_id == 2


def test_count_fallback_races_with_concurrent_registration():
    # Another registration confirms between our receipt and the count read:
    # the derived id is the other fine's id, not ours.
    chain = FakeChain()
    chain.emit_events = False
    chain.after_receipt = lambda: seed_fine(chain, "ZZZ999")

    result = asyncio.run(make_gateway(chain).register_fine(_registration(), VALID_CID))

    assert isinstance(result.derivation, DerivedFromCount)
    assert result.fine_id == 2
    assert chain.fines[0][1] == "ABC123"
    assert chain.fines[1][1] == "ZZZ999"


def test_register_fails_when_no_id_can_be_derived():
    chain = FakeChain()
    chain.emit_events = False
    gateway = make_gateway(chain)
    chain.after_receipt = lambda: chain.fines.clear()

    with pytest.raises(LedgerWriteError):
        asyncio.run(gateway.register_fine(_registration(), VALID_CID))


def test_register_rejects_malformed_cid_before_submitting():
    chain = FakeChain()
    with pytest.raises(ValidationError):
        asyncio.run(make_gateway(chain).register_fine(_registration(), "Qm-nope"))
    assert chain.sent == []


def test_register_without_gas_funds_is_a_write_error():
    chain = FakeChain()
    chain.balance = 0
    with pytest.raises(LedgerWriteError) as exc:
        asyncio.run(make_gateway(chain).register_fine(_registration(), VALID_CID))
    assert exc.value.reason == "INSUFFICIENT_FUNDS"
    assert chain.sent == []


def test_reverted_receipt_is_a_write_error():
    chain = FakeChain()
    chain.revert_on_chain = True
    with pytest.raises(LedgerWriteError) as exc:
        asyncio.run(make_gateway(chain).register_fine(_registration(), VALID_CID))
    assert "reverted" in exc.value.message


def test_gas_estimation_failure_uses_fallback_limit(monkeypatch):
    chain = FakeChain()
    gateway = make_gateway(chain)

    from tests.fakes import FakeContractCall

    async def broken_estimate(self, tx):
        raise TimeoutError("node did not answer")

    monkeypatch.setattr(FakeContractCall, "estimate_gas", broken_estimate)
    asyncio.run(gateway.register_fine(_registration(), VALID_CID))
    assert chain.sent[0]["gas"] == FALLBACK_GAS_LIMIT


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS UPDATES
# ═══════════════════════════════════════════════════════════════════════════════

def test_update_status_appends_to_history():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    gateway = make_gateway(chain)

    before = asyncio.run(gateway.get_fine_status_history(fine_id))
    tx_hash = asyncio.run(gateway.update_fine_status(fine_id, FineState.PAID, "Paid at Banco de Bogotá"))
    after = asyncio.run(gateway.get_fine_status_history(fine_id))

    assert TX_HASH.match(tx_hash)
    assert after.total_count == before.total_count + 1
    assert after.updates[-1].new_state == FineState.PAID
    assert after.updates[-1].old_state == FineState.PENDING
    assert after.updates[-1].reason == "Paid at Banco de Bogotá"


def test_update_status_surfaces_revert_reason():
    chain = FakeChain()
    fine_id = seed_fine(chain)

    with pytest.raises(LedgerWriteError) as exc:
        asyncio.run(make_gateway(chain).update_fine_status(fine_id, FineState.PENDING, "no-op"))

    assert exc.value.reason == "New state must be different from current state"
    assert chain.sent == []


def test_update_status_does_not_consult_state_machine():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.append_status(fine_id, FineState.CANCELLED, "Duplicate")

    asyncio.run(make_gateway(chain).update_fine_status(fine_id, FineState.PAID, "forced"))
    assert chain.fines[0][8] == FineState.PAID


# ═══════════════════════════════════════════════════════════════════════════════
# READS
# ═══════════════════════════════════════════════════════════════════════════════

def test_get_fine_details_maps_tuple():
    chain = FakeChain()
    fine_id = seed_fine(chain, external_id="SIMIT-9")

    fine = asyncio.run(make_gateway(chain).get_fine_details(fine_id))

    assert fine.id == 1
    assert fine.plate_number == "ABC123"
    assert fine.evidence_cid == VALID_CID
    assert fine.cost == 500_000
    assert fine.current_state == FineState.PENDING
    assert fine.registered_by == OPERATOR
    assert fine.external_system_id == "SIMIT-9"


@pytest.mark.parametrize("fine_id", [0, -1, 3])
def test_get_fine_details_outside_bounds_is_not_found(fine_id):
    chain = FakeChain()
    seed_fine(chain)
    seed_fine(chain, "XYZ789")
    with pytest.raises(NotFound):
        asyncio.run(make_gateway(chain).get_fine_details(fine_id))


def test_get_fine_details_at_upper_bound():
    chain = FakeChain()
    seed_fine(chain)
    seed_fine(chain, "XYZ789")
    fine = asyncio.run(make_gateway(chain).get_fine_details(2))
    assert fine.plate_number == "XYZ789"


def test_read_failure_is_a_ledger_read_error():
    chain = FakeChain()
    chain.fail_reads = True
    with pytest.raises(LedgerReadError) as exc:
        asyncio.run(make_gateway(chain).get_total_fines())
    assert "getAllFineCount" in exc.value.message


def test_paginated_fines_on_empty_ledger():
    assert asyncio.run(make_gateway(FakeChain()).get_fines_details(1, 10)) == []


def test_paginated_fines_clamps_page_size_to_total():
    chain = FakeChain()
    for plate in ("AAA111", "BBB222", "CCC333"):
        seed_fine(chain, plate)

    fines = asyncio.run(make_gateway(chain).get_fines_details(1, 50))
    assert [f.plate_number for f in fines] == ["AAA111", "BBB222", "CCC333"]


def test_paginated_fines_second_page():
    chain = FakeChain()
    for plate in ("AAA111", "BBB222", "CCC333"):
        seed_fine(chain, plate)

    fines = asyncio.run(make_gateway(chain).get_fines_details(2, 2))
    assert [f.id for f in fines] == [3]


@pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (-1, 5)])
def test_paginated_fines_rejects_bad_pagination(page, page_size):
    with pytest.raises(ValidationError):
        asyncio.run(make_gateway(FakeChain()).get_fines_details(page, page_size))


def test_fines_by_plate_returns_raw_ids():
    chain = FakeChain()
    seed_fine(chain, "ABC123")
    seed_fine(chain, "XYZ789")
    seed_fine(chain, "ABC123")

    assert asyncio.run(make_gateway(chain).get_fines_by_plate("abc123")) == [1, 3]


def test_registration_details():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    block, ts = asyncio.run(make_gateway(chain).get_registration_details(fine_id))
    assert block == 101
    assert ts == chain.fines[0][4]


# ═══════════════════════════════════════════════════════════════════════════════
# STATUS HISTORY (typed and raw paths)
# ═══════════════════════════════════════════════════════════════════════════════

def _fine_with_history(chain):
    fine_id = seed_fine(chain)
    chain.append_status(fine_id, FineState.APPEALED, "Driver disputes radar calibration")
    chain.append_status(fine_id, FineState.RESOLVED_APPEAL, "Calibration certificate valid")
    chain.append_status(fine_id, FineState.PAID, "Paid online")
    return fine_id


def test_raw_history_path_matches_typed_path():
    chain = FakeChain()
    fine_id = _fine_with_history(chain)
    gateway = make_gateway(chain)

    typed = asyncio.run(gateway.get_fine_status_history(fine_id, 1, 10))
    chain.fail_typed_history = True
    raw = asyncio.run(gateway.get_fine_status_history(fine_id, 1, 10))

    assert raw.total_count == typed.total_count == 3
    assert [u.new_state for u in raw.updates] == [u.new_state for u in typed.updates]
    assert [u.reason for u in raw.updates] == [u.reason for u in typed.updates]
    assert [u.timestamp for u in raw.updates] == [u.timestamp for u in typed.updates]
    assert raw.updates[0].updated_by.lower() == typed.updates[0].updated_by.lower()


def test_history_fails_when_both_paths_fail():
    chain = FakeChain()
    fine_id = _fine_with_history(chain)
    chain.fail_typed_history = True
    chain.fail_raw_history = True

    with pytest.raises(LedgerReadError):
        asyncio.run(make_gateway(chain).get_fine_status_history(fine_id))


@pytest.mark.parametrize("fine_id", [0, 2, 99])
def test_history_for_unknown_fine_is_not_found(fine_id):
    chain = FakeChain()
    seed_fine(chain)
    chain.fail_typed_history = True
    chain.fail_raw_history = True

    with pytest.raises(NotFound):
        asyncio.run(make_gateway(chain).get_fine_status_history(fine_id))


def test_history_revert_is_not_retried_through_raw_path(monkeypatch):
    chain = FakeChain()
    fine_id = _fine_with_history(chain)
    chain.fail_raw_history = True

    async def reverting_call(self):
        raise ContractLogicError("execution reverted: Fine does not exist")

    monkeypatch.setattr(FakeContractCall, "call", reverting_call)

    with pytest.raises(LedgerReadError) as excinfo:
        asyncio.run(make_gateway(chain).get_fine_status_history(fine_id))
    assert excinfo.value.reason == "Fine does not exist"


def test_history_with_unknown_state_byte_is_a_read_error():
    chain = FakeChain()
    fine_id = seed_fine(chain)
    chain.histories[fine_id].append((chain.now, 0, 9, "Corrupted entry", OPERATOR))

    with pytest.raises(LedgerReadError, match="Malformed status update"):
        asyncio.run(make_gateway(chain).get_fine_status_history(fine_id))


def test_raw_path_without_abi_entry_reports_missing_function():
    chain = FakeChain()
    fine_id = _fine_with_history(chain)
    chain.fail_typed_history = True
    gateway = make_gateway(chain)
    gateway.contract.abi = []

    with pytest.raises(LedgerReadError) as excinfo:
        asyncio.run(gateway.get_fine_status_history(fine_id))
    assert excinfo.value.message == "getFineStatusHistory not present in contract ABI"


def test_history_pagination():
    chain = FakeChain()
    fine_id = _fine_with_history(chain)
    page = asyncio.run(make_gateway(chain).get_fine_status_history(fine_id, 2, 2))
    assert page.total_count == 3
    assert [u.new_state for u in page.updates] == [FineState.PAID]


def test_full_history_walks_all_pages():
    chain = FakeChain()
    fine_id = _fine_with_history(chain)
    updates = asyncio.run(make_gateway(chain).get_full_status_history(fine_id, page_size=2))
    assert [u.new_state for u in updates] == [FineState.APPEALED, FineState.RESOLVED_APPEAL, FineState.PAID]


def test_canonical_type_expands_tuple_arrays():
    param = {
        "type": "tuple[]",
        "components": [{"type": "uint256"}, {"type": "uint8"}, {"type": "string"}],
    }
    assert _canonical_type(param) == "(uint256,uint8,string)[]"
    assert _canonical_type({"type": "uint256"}) == "uint256"


def test_is_connected_reflects_node():
    chain = FakeChain()
    gateway = make_gateway(chain)
    assert asyncio.run(gateway.is_connected())
    chain.connected = False
    assert not asyncio.run(gateway.is_connected())


def test_aclose_disconnects_provider():
    gateway = make_gateway(FakeChain())
    asyncio.run(gateway.aclose())
    assert gateway.w3.provider.disconnected
