"""
Source Reader.

Reads collection size and per-token encoded records from an ERC-721
contract over JSON-RPC eth_call, in fixed windows with a delay between
windows to stay under upstream rate limits. FileSource serves the same
records from a directory of pre-extracted uri/{id}.txt files.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Union

import requests

from runtime.errors import FetchError, StagePrecondition
from runtime.windows import Settled, run_windows

logger = logging.getLogger(__name__)

# Function selectors (first 4 bytes of keccak256 of the signature)
TOTAL_SUPPLY_SELECTOR = "0x18160ddd"   # totalSupply()
TOKEN_URI_SELECTOR = "0xc87b56dd"      # tokenURI(uint256)


def encode_token_uri_call(token_id: int) -> str:
    if token_id < 0:
        raise ValueError("token_id must be non-negative")
    return TOKEN_URI_SELECTOR + format(token_id, "x").rjust(64, "0")


def decode_abi_string(result_hex: str) -> str:
    """Decode an ABI-encoded dynamic `string` return value."""
    raw = bytes.fromhex(result_hex[2:] if result_hex.startswith("0x") else result_hex)
    if len(raw) < 64:
        raise ValueError(f"ABI string too short ({len(raw)} bytes)")
    offset = int.from_bytes(raw[0:32], "big")
    if offset + 32 > len(raw):
        raise ValueError("ABI string offset out of range")
    length = int.from_bytes(raw[offset:offset + 32], "big")
    start = offset + 32
    if start + length > len(raw):
        raise ValueError("ABI string length out of range")
    return raw[start:start + length].decode("utf-8")


class ChainClient:
    """Minimal read-only ERC-721 client: totalSupply() and tokenURI(id)."""

    def __init__(self, rpc_url: str, contract_address: str, timeout: float = 30.0, session=None):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = timeout
        self.session = session or requests.Session()

    def _rpc_call(self, method: str, params: list, token_id: Optional[int] = None):
        try:
            resp = self.session.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": 1},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise FetchError(token_id, e) from e

        if body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else err
            raise FetchError(token_id, f"rpc error: {message}")
        return body.get("result")

    def _eth_call(self, data: str, token_id: Optional[int] = None) -> str:
        result = self._rpc_call(
            "eth_call", [{"to": self.contract_address, "data": data}, "latest"], token_id
        )
        if not result or result == "0x":
            raise FetchError(token_id, "empty eth_call result")
        return result

    def total_supply(self) -> int:
        result = self._eth_call(TOTAL_SUPPLY_SELECTOR)
        try:
            return int(result, 16)
        except ValueError as e:
            raise FetchError(None, f"bad totalSupply result {result!r}") from e

    def token_uri(self, token_id: int) -> str:
        result = self._eth_call(encode_token_uri_call(token_id), token_id)
        try:
            return decode_abi_string(result)
        except (ValueError, UnicodeDecodeError) as e:
            raise FetchError(token_id, f"bad tokenURI result: {e}") from e


@dataclass
class FetchOutcome:
    token_id: int
    encoded: str


class SourceReader:
    """Windowed, failure-isolated tokenURI reads."""

    def __init__(
        self,
        client: ChainClient,
        batch_size: int = 10,
        batch_delay_sec: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.batch_size = batch_size
        self.batch_delay_sec = batch_delay_sec
        self._sleep = sleep

    def resolve_supply(self, max_tokens: int) -> int:
        """totalSupply(), or max_tokens when the probe fails."""
        try:
            supply = self.client.total_supply()
            logger.info("Total supply: %d", supply)
            return supply
        except FetchError as e:
            logger.warning("Failed to get total supply (%s); using MAX_TOKENS=%d", e.cause, max_tokens)
            return max_tokens

    def fetch(self, token_id: int) -> FetchOutcome:
        return FetchOutcome(token_id=token_id, encoded=self.client.token_uri(token_id))

    def windows(self, token_ids: Sequence[int], fn: Callable[[int, int], object]) -> Iterator[List[Settled]]:
        return run_windows(token_ids, self.batch_size, fn, delay_sec=self.batch_delay_sec, sleep=self._sleep)


class FileSource:
    """
    Encoded records already extracted to disk, one uri/{id}.txt per token.
    Same fetch/windows surface as SourceReader; no rate limiting needed.
    """

    def __init__(self, uri_dir: Union[str, Path], batch_size: int = 10):
        self.uri_dir = Path(uri_dir)
        self.batch_size = batch_size

    def token_ids(self) -> List[int]:
        if not self.uri_dir.is_dir():
            raise StagePrecondition(f"No uri/ directory found at {self.uri_dir}")
        ids = []
        for entry in self.uri_dir.glob("*.txt"):
            if entry.stem.isdigit():
                ids.append(int(entry.stem))
        return sorted(ids)

    def resolve_supply(self, max_tokens: int) -> int:
        ids = self.token_ids()
        return ids[-1] + 1 if ids else 0

    def fetch(self, token_id: int) -> FetchOutcome:
        path = self.uri_dir / f"{token_id}.txt"
        try:
            return FetchOutcome(token_id=token_id, encoded=path.read_text(encoding="utf-8").strip())
        except OSError as e:
            raise FetchError(token_id, e) from e

    def windows(self, token_ids: Sequence[int], fn: Callable[[int, int], object]) -> Iterator[List[Settled]]:
        return run_windows(token_ids, self.batch_size, fn)
