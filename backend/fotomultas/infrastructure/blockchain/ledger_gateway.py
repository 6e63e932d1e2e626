"""
LedgerGateway — FineManagement contract client.

Hides transaction mechanics behind a fine-shaped interface. Every mutating
call goes through one write path:

    balance check → gas estimate (+20%) → build → sign (local account)
        → send raw → wait for receipt → status == 1

Identifier recovery after registerFine:
    (a) Found            : first argument of the FineRegistered event.
    (b) DerivedFromCount : getAllFineCount() right after confirmation, used
                           only when the receipt carries no FineRegistered
                           log. Racy: two registrations confirming in the
                           same window can both observe the later count.

Status history has two read paths: the typed contract binding, and a raw
path (selector + ABI-encoded args via eth_call, decoded with eth_abi) used
when the typed call fails. Both produce the same StatusHistoryPage.
"""

import json
import logging
from importlib import resources
from typing import Any, List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from pydantic import ValidationError as SchemaError
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD

from fotomultas.core.config import Settings, settings
from fotomultas.core.errors import (
    LedgerError,
    LedgerReadError,
    LedgerWriteError,
    NotFound,
    ValidationError,
)
from fotomultas.domain.ports import FineReader
from fotomultas.infrastructure.blockchain.integrity import IntegrityVerifier
from fotomultas.schemas.evidence import validate_cid
from fotomultas.schemas.fine import (
    DerivedFromCount,
    Fine,
    FineRegistration,
    FineState,
    Found,
    IdDerivation,
    IntegrityReport,
    Registration,
    StatusHistoryPage,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

CONTRACT_ARTIFACT = "contracts/FineManagement.json"
GAS_HEADROOM = 1.2
FALLBACK_GAS_LIMIT = 2_000_000
REVERT_PREFIX = "execution reverted: "


def load_contract_abi() -> List[dict]:
    """Load the FineManagement ABI shipped with the package."""
    artifact = resources.files(__package__).joinpath(CONTRACT_ARTIFACT)
    with artifact.open("r", encoding="utf-8") as f:
        return json.load(f)["abi"]


def _revert_reason(error: Exception) -> str:
    message = getattr(error, "message", None) or str(error)
    if message.startswith(REVERT_PREFIX):
        return message[len(REVERT_PREFIX):]
    return message


def _canonical_type(param: dict) -> str:
    """ABI output entry → eth_abi type string, expanding tuple components."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


# ═══════════════════════════════════════════════════════════════════════════════
# LEDGER GATEWAY
# ═══════════════════════════════════════════════════════════════════════════════

class LedgerGateway(FineReader):
    """
    Single logical ledger client: one signing account, one connection.

    Concurrent calls interleave but each one is confirmed independently;
    nothing is queued and nonces are read per transaction, so callers that
    issue concurrent writes must serialize them.
    """

    def __init__(self, w3: AsyncWeb3, contract: Any, account: Any) -> None:
        self.w3 = w3
        self.contract = contract
        self.account = account

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "LedgerGateway":
        if not cfg.FINE_CONTRACT_ADDRESS or not cfg.OPERATOR_PRIVATE_KEY:
            raise LedgerError("FINE_CONTRACT_ADDRESS and OPERATOR_PRIVATE_KEY must be set")

        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(cfg.LEDGER_RPC_URL))
        if cfg.LEDGER_POA_CHAIN:
            from web3.middleware import ExtraDataToPOAMiddleware
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        contract = w3.eth.contract(
            address=Web3.to_checksum_address(cfg.FINE_CONTRACT_ADDRESS),
            abi=load_contract_abi(),
        )
        account = w3.eth.account.from_key(cfg.OPERATOR_PRIVATE_KEY)
        logger.info(
            f"[LEDGER] Gateway configured, rpc={cfg.LEDGER_RPC_URL} "
            f"contract={contract.address} operator={account.address}"
        )
        return cls(w3, contract, account)

    async def is_connected(self) -> bool:
        try:
            return bool(await self.w3.is_connected())
        except Exception as e:
            logger.warning(f"[LEDGER] Connectivity probe failed: {e}")
            return False

    # ── Write path ──

    async def _transact(self, func: Any, label: str) -> Tuple[str, Any]:
        """Sign, submit and confirm a contract call. Returns (tx_hash, receipt)."""
        sender = self.account.address

        try:
            balance = await self.w3.eth.get_balance(sender)
        except Exception as e:
            logger.warning(f"[LEDGER] Could not check balance: {e}")
            balance = None
        if balance == 0:
            logger.error(f"[LEDGER] Operator account {sender} has 0 funds for gas")
            raise LedgerWriteError(
                f"{label}: operator account has no funds for gas", reason="INSUFFICIENT_FUNDS"
            )

        try:
            gas_estimate = await func.estimate_gas({"from": sender})
            gas_limit = int(gas_estimate * GAS_HEADROOM)
        except ContractLogicError as e:
            reason = _revert_reason(e)
            logger.error(f"[LEDGER] {label} rejected during gas estimation: {reason}")
            raise LedgerWriteError(f"{label} would revert: {reason}", reason=reason) from e
        except Exception as e:
            logger.warning(f"[LEDGER] Gas estimation failed, using fallback: {e}")
            gas_limit = FALLBACK_GAS_LIMIT

        try:
            tx_data = await func.build_transaction({
                "from": sender,
                "chainId": await self.w3.eth.chain_id,
                "gas": gas_limit,
                "gasPrice": await self.w3.eth.gas_price,
                "nonce": await self.w3.eth.get_transaction_count(sender, "pending"),
            })
            signed_tx = self.account.sign_transaction(tx_data)
            tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            logger.info(f"[LEDGER] {label} TX sent: {Web3.to_hex(tx_hash)}")
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
        except ContractLogicError as e:
            reason = _revert_reason(e)
            logger.error(f"[LEDGER] {label} reverted: {reason}")
            raise LedgerWriteError(f"{label} reverted: {reason}", reason=reason) from e
        except Exception as e:
            logger.error(f"[LEDGER] {label} failed: {e}")
            raise LedgerWriteError(f"{label} failed: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            logger.error(f"[LEDGER] {label} reverted on-chain, tx={tx_hex}")
            raise LedgerWriteError(f"{label} reverted on-chain (tx={tx_hex})")
        return tx_hex, receipt

    async def register_fine(self, registration: FineRegistration, evidence_cid: str) -> Registration:
        """
        Submit registerFine and recover the ledger-assigned id.

        Raises:
            LedgerWriteError: on revert, or when neither the event nor the
                fine count yields a positive id.
        """
        validate_cid(evidence_cid)
        func = self.contract.functions.registerFine(
            registration.plate_number,
            evidence_cid,
            registration.location,
            registration.infraction_type.value,
            registration.cost,
            registration.owner_identifier,
            registration.external_system_id or "",
        )
        tx_hash, receipt = await self._transact(func, "registerFine")
        derivation = await self._derive_fine_id(receipt, tx_hash)
        logger.info(
            f"[LEDGER] Fine #{derivation.fine_id} registered "
            f"({type(derivation).__name__}), tx={tx_hash}"
        )
        return Registration(fine_id=derivation.fine_id, tx_hash=tx_hash, derivation=derivation)

    async def _derive_fine_id(self, receipt: Any, tx_hash: str) -> IdDerivation:
        events = self.contract.events.FineRegistered().process_receipt(receipt, errors=DISCARD)
        for event in events:
            fine_id = int(event["args"]["fineId"])
            if fine_id > 0:
                return Found(fine_id)

        logger.warning(
            f"[LEDGER] No FineRegistered log in tx={tx_hash}; deriving id from fine count "
            f"(unsafe under concurrent registrations)"
        )
        try:
            count = await self.get_total_fines()
        except LedgerReadError as e:
            raise LedgerWriteError(f"Fine id could not be derived for tx={tx_hash}: {e}") from e
        if count <= 0:
            raise LedgerWriteError(f"Fine id could not be derived for tx={tx_hash}")
        return DerivedFromCount(count)

    async def update_fine_status(self, fine_id: int, new_state: FineState, reason: str) -> str:
        """
        Submit updateFineStatus. The transition table is NOT checked here;
        validate with the state machine before calling.
        """
        func = self.contract.functions.updateFineStatus(fine_id, int(new_state), reason)
        tx_hash, _ = await self._transact(func, "updateFineStatus")
        logger.info(f"[LEDGER] Fine #{fine_id} → {FineState(new_state).name}, tx={tx_hash}")
        return tx_hash

    # ── Read path ──

    async def _call(self, fn_name: str, *args: Any) -> Any:
        try:
            return await getattr(self.contract.functions, fn_name)(*args).call()
        except ContractLogicError as e:
            reason = _revert_reason(e)
            raise LedgerReadError(f"{fn_name} reverted: {reason}", reason=reason) from e
        except Exception as e:
            logger.error(f"[LEDGER] {fn_name} call failed: {e}")
            raise LedgerReadError(f"{fn_name} call failed: {e}") from e

    @staticmethod
    def _to_fine(raw: Optional[Sequence[Any]]) -> Optional[Fine]:
        """Contract Fine tuple → Fine. Returns None for empty / zero-id slots."""
        if not raw or int(raw[0]) == 0:
            return None
        try:
            return Fine(
                id=int(raw[0]),
                plate_number=raw[1],
                evidence_cid=raw[2],
                location=raw[3],
                timestamp=int(raw[4]),
                infraction_type=raw[5],
                cost=int(raw[6]),
                owner_identifier=raw[7],
                current_state=FineState(int(raw[8])),
                registered_by=str(raw[9]),
                external_system_id=raw[10],
            )
        except (SchemaError, ValueError) as e:
            raise LedgerReadError(f"Malformed fine record for id {raw[0]}: {e}") from e

    @staticmethod
    def _to_status_update(fine_id: int, raw: Sequence[Any]) -> StatusUpdate:
        try:
            return StatusUpdate(
                fine_id=fine_id,
                timestamp=int(raw[0]),
                old_state=FineState(int(raw[1])),
                new_state=FineState(int(raw[2])),
                reason=raw[3],
                updated_by=str(raw[4]),
            )
        except (SchemaError, ValueError) as e:
            raise LedgerReadError(f"Malformed status update for fine {fine_id}: {e}") from e

    async def get_total_fines(self) -> int:
        return int(await self._call("getAllFineCount"))

    async def get_fine_details(self, fine_id: int) -> Fine:
        """
        Raises:
            NotFound: unless 0 < fine_id <= current fine count.
        """
        total = await self.get_total_fines()
        if fine_id <= 0 or fine_id > total:
            raise NotFound(f"Fine {fine_id} does not exist. Total fines: {total}")

        fine = self._to_fine(await self._call("getFineDetails", fine_id))
        if fine is None:
            raise NotFound(f"Fine {fine_id} not found")
        return fine

    async def get_fines_details(self, page: int = 1, page_size: int = 10) -> List[Fine]:
        if page < 1 or page_size < 1:
            raise ValidationError(f"Invalid pagination parameters: page={page}, page_size={page_size}")

        total = await self.get_total_fines()
        if total == 0:
            return []

        adjusted_page_size = min(page_size, total)
        raw_fines = await self._call("getPaginatedFines", page, adjusted_page_size)
        fines = [self._to_fine(raw) for raw in raw_fines or []]
        return [f for f in fines if f is not None]

    async def get_fines_by_plate(self, plate_number: str) -> List[int]:
        """Raw ids only; resolving each id is left to the caller."""
        plate = (plate_number or "").strip().upper()
        return [int(fine_id) for fine_id in await self._call("getFinesByPlate", plate)]

    async def get_registration_details(self, fine_id: int) -> Tuple[int, int]:
        """Returns (block_number, timestamp) of the registration."""
        block_number, timestamp = await self._call("getFineRegistrationDetails", fine_id)
        return int(block_number), int(timestamp)

    async def get_fine_status_history(
        self, fine_id: int, page: int = 1, page_size: int = 10,
    ) -> StatusHistoryPage:
        """
        Page of the append-only status log, oldest entry first.

        Raises:
            NotFound: unless 0 < fine_id <= current fine count.
        """
        if page < 1 or page_size < 1:
            raise ValidationError(f"Invalid pagination parameters: page={page}, page_size={page_size}")

        total_fines = await self.get_total_fines()
        if fine_id <= 0 or fine_id > total_fines:
            raise NotFound(f"Fine {fine_id} does not exist. Total fines: {total_fines}")

        try:
            raw_updates, total = await self.contract.functions.getFineStatusHistory(
                fine_id, page, page_size
            ).call()
            logger.debug(f"[LEDGER] Status history for fine #{fine_id} read through typed binding")
        except ContractLogicError as e:
            reason = _revert_reason(e)
            raise LedgerReadError(f"getFineStatusHistory reverted: {reason}", reason=reason) from e
        except Exception as e:
            logger.warning(
                f"[LEDGER] Typed getFineStatusHistory failed for fine #{fine_id} ({e}); "
                f"retrying through raw ABI call"
            )
            raw_updates, total = await self._raw_status_history(fine_id, page, page_size)

        return StatusHistoryPage(
            updates=[self._to_status_update(fine_id, u) for u in raw_updates],
            total_count=int(total),
        )

    async def _raw_status_history(self, fine_id: int, page: int, page_size: int) -> Tuple[Any, int]:
        """eth_call with hand-encoded calldata, decoded against the ABI outputs."""
        fn_name = "getFineStatusHistory"
        output_types = self._output_types(fn_name)
        try:
            data = self.contract.encode_abi(fn_name, args=[fine_id, page, page_size])
            result = await self.w3.eth.call({"to": self.contract.address, "data": data})
            raw_updates, total = abi_decode(output_types, bytes(result))
        except ContractLogicError as e:
            reason = _revert_reason(e)
            raise LedgerReadError(f"{fn_name} reverted: {reason}", reason=reason) from e
        except Exception as e:
            logger.error(f"[LEDGER] Raw {fn_name} call failed: {e}")
            raise LedgerReadError(f"{fn_name} call failed: {e}") from e
        return raw_updates, total

    def _output_types(self, fn_name: str) -> List[str]:
        for entry in self.contract.abi:
            if entry.get("type") == "function" and entry.get("name") == fn_name:
                return [_canonical_type(o) for o in entry["outputs"]]
        raise LedgerReadError(f"{fn_name} not present in contract ABI")

    async def aclose(self) -> None:
        """Release the provider's HTTP session."""
        await self.w3.provider.disconnect()
        logger.info("[LEDGER] Provider disconnected")

    # ── Integrity ──

    async def verify_blockchain_integrity(self, fine_id: int) -> IntegrityReport:
        return await IntegrityVerifier(self).verify(fine_id)
