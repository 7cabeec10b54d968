"""
bloXroute broadcast-network feed.

Subscriptions (JSON-RPC over websocket, key in the Authorization header):
- newTxs with tx_hash + tx_contents: transaction observations
- bdnBlocks with hash + transactions: block observations
"""

from __future__ import annotations

import logging

from relay_bench.models import Observation, StreamKind
from relay_bench.streams.base import ObservationChannel
from relay_bench.streams.websocket import (
    WebsocketSource,
    WebsocketSubscription,
    normalize_hash,
)

log = logging.getLogger("rb.streams.bloxroute")

SUBSCRIBE_TXS = {"id": 1, "method": "subscribe", "params": ["newTxs", {"include": ["tx_hash", "tx_contents"]}]}
SUBSCRIBE_BLOCKS = {"id": 1, "method": "subscribe", "params": ["bdnBlocks", {"include": ["hash", "header", "transactions"]}]}


def _result(msg: dict) -> dict | None:
    params = msg.get("params")
    if not isinstance(params, dict):
        return None
    result = params.get("result")
    return result if isinstance(result, dict) else None


def parse_transaction(msg: dict, ts: int) -> Observation | None:
    result = _result(msg)
    if result is None:
        return None
    h = normalize_hash(result.get("txHash"))
    if h is None:
        return None

    contents = result.get("txContents")
    if not isinstance(contents, dict):
        return Observation(hash=h, timestamp=ts)
    data = contents.get("input") or "0x"
    return Observation(
        hash=h,
        timestamp=ts,
        sender=(contents.get("from") or "").lower(),
        recipient=(contents.get("to") or "").lower(),
        size=max(len(data) - 2, 0) // 2,
    )


def parse_block(msg: dict, ts: int) -> Observation | None:
    result = _result(msg)
    if result is None:
        return None
    h = normalize_hash(result.get("hash"))
    if h is None:
        return None
    txs = result.get("transactions")
    return Observation(hash=h, timestamp=ts, size=len(txs) if isinstance(txs, list) else 0)


class BloxrouteSource(WebsocketSource):
    name = "bloxroute"

    def __init__(self, endpoint: str, api_key: str, buffer_size: int = 8192):
        super().__init__(api_key=api_key, buffer_size=buffer_size)
        self.endpoint = endpoint

    def subscribe_observations(self, kind: StreamKind) -> ObservationChannel[Observation]:
        channel: ObservationChannel[Observation] = ObservationChannel(
            f"{self.name}.{kind.value}", self.buffer_size
        )
        if kind == StreamKind.TRANSACTIONS:
            request, parse = SUBSCRIBE_TXS, parse_transaction
        else:
            request, parse = SUBSCRIBE_BLOCKS, parse_block

        async def handle(ws, msg: dict, ts: int) -> None:
            obs = parse(msg, ts)
            if obs is not None:
                channel.offer(obs)
            elif "params" in msg:
                log.debug("DROPPED │ unparseable %s message", kind.value)

        self._register(
            WebsocketSubscription(
                name=f"{self.name}.{kind.value}",
                endpoint=self.endpoint,
                subscribe_request=request,
                handler=handle,
                headers=self.headers,
            ),
            channel,
        )
        return channel
