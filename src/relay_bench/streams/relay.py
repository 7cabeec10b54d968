"""
Primary relay feed over JSON-RPC ``eth_subscribe`` websockets.

Subscriptions:
- newPendingTransactions (full objects): transaction observations
- newHeads: block observations
- newHeads + eth_getBlockByHash: ground-truth confirmations, one batch per
  block listing every included transaction hash

Several endpoints can be given; each gets its own connection and all feed one
channel, so the reconciler's first-arrival-wins dedup picks the fastest path.
"""

from __future__ import annotations

import itertools
import json
import logging

from relay_bench.models import ConfirmationBatch, Observation, StreamKind
from relay_bench.streams.base import ObservationChannel
from relay_bench.streams.websocket import (
    WebsocketSource,
    WebsocketSubscription,
    normalize_hash,
)

log = logging.getLogger("rb.streams.relay")

SUBSCRIBE_TXS = {"jsonrpc": "2.0", "id": 1, "method": "eth_subscribe", "params": ["newPendingTransactions", True]}
SUBSCRIBE_HEADS = {"jsonrpc": "2.0", "id": 1, "method": "eth_subscribe", "params": ["newHeads"]}

# Request ids for block lookups start above the subscription request id
_BLOCK_REQUEST_BASE = 1000


def _subscription_result(msg: dict):
    if msg.get("method") != "eth_subscription":
        return None
    params = msg.get("params")
    if not isinstance(params, dict):
        return None
    return params.get("result")


def _hex_int(value, default: int = 0) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16)
        except ValueError:
            return default
    return default


def parse_pending_transaction(msg: dict, ts: int) -> Observation | None:
    """Pending tx notification -> Observation. Accepts hash-only results too."""
    result = _subscription_result(msg)
    if isinstance(result, str):
        h = normalize_hash(result)
        return Observation(hash=h, timestamp=ts) if h else None
    if not isinstance(result, dict):
        return None

    h = normalize_hash(result.get("hash"))
    if h is None:
        return None
    data = result.get("input") or "0x"
    return Observation(
        hash=h,
        timestamp=ts,
        sender=(result.get("from") or "").lower(),
        recipient=(result.get("to") or "").lower(),
        size=max(len(data) - 2, 0) // 2,
    )


def parse_new_head(msg: dict, ts: int) -> Observation | None:
    result = _subscription_result(msg)
    if not isinstance(result, dict):
        return None
    h = normalize_hash(result.get("hash"))
    if h is None:
        return None
    txs = result.get("transactions")
    return Observation(hash=h, timestamp=ts, size=len(txs) if isinstance(txs, list) else 0)


def parse_block_response(msg: dict) -> ConfirmationBatch | None:
    """eth_getBlockByHash reply -> batch of included transaction hashes."""
    result = msg.get("result")
    if not isinstance(result, dict):
        return None
    hashes = []
    for tx in result.get("transactions") or []:
        h = normalize_hash(tx.get("hash") if isinstance(tx, dict) else tx)
        if h is not None:
            hashes.append(h)
    return ConfirmationBatch(block_number=_hex_int(result.get("number")), hashes=tuple(hashes))


class RelaySource(WebsocketSource):
    def __init__(
        self,
        endpoints: list[str],
        api_key: str = "",
        name: str = "relay",
        buffer_size: int = 8192,
    ):
        super().__init__(api_key=api_key, buffer_size=buffer_size)
        if not endpoints:
            raise ValueError("RelaySource needs at least one endpoint")
        self.endpoints = list(endpoints)
        self.name = name
        self._request_ids = itertools.count(_BLOCK_REQUEST_BASE)

    def subscribe_observations(self, kind: StreamKind) -> ObservationChannel[Observation]:
        channel: ObservationChannel[Observation] = ObservationChannel(
            f"{self.name}.{kind.value}", self.buffer_size
        )
        if kind == StreamKind.TRANSACTIONS:
            request, parse = SUBSCRIBE_TXS, parse_pending_transaction
        else:
            request, parse = SUBSCRIBE_HEADS, parse_new_head

        async def handle(ws, msg: dict, ts: int) -> None:
            obs = parse(msg, ts)
            if obs is not None:
                channel.offer(obs)

        for i, endpoint in enumerate(self.endpoints):
            sub = WebsocketSubscription(
                name=f"{self.name}[{i}].{kind.value}",
                endpoint=endpoint,
                subscribe_request=request,
                handler=handle,
                headers=self.headers,
            )
            self._register(sub, channel)
        return channel

    def subscribe_confirmations(self) -> ObservationChannel[ConfirmationBatch]:
        """Ground truth from the first endpoint: every tx of every new block."""
        channel: ObservationChannel[ConfirmationBatch] = ObservationChannel(
            f"{self.name}.confirmations", self.buffer_size
        )

        async def handle(ws, msg: dict, ts: int) -> None:
            head = parse_new_head(msg, ts)
            if head is not None:
                await ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": next(self._request_ids),
                    "method": "eth_getBlockByHash",
                    "params": [head.hash, False],
                }))
                return
            if isinstance(msg.get("id"), int) and msg["id"] >= _BLOCK_REQUEST_BASE:
                batch = parse_block_response(msg)
                if batch is not None:
                    log.debug("BLOCK_CONFIRMED │ number=%d txs=%d", batch.block_number, len(batch.hashes))
                    channel.offer(batch)

        sub = WebsocketSubscription(
            name=f"{self.name}.confirmations",
            endpoint=self.endpoints[0],
            subscribe_request=SUBSCRIBE_HEADS,
            handler=handle,
            headers=self.headers,
        )
        self._register(sub, channel)
        return channel
