"""Ref Finance swap quotes on NEAR.

Quotes come from the Ref smart router when one is configured; otherwise, or when
the router has no route, from the single-pool ``get_return`` view call over NEAR RPC.
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Dict, FrozenSet, Mapping, Optional

import requests

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.fixed_number import FixedNumber
from src.models.errors import SwapOracleError

JsonDict = Dict[str, Any]
PairKey = FrozenSet[str]


def pair_key(token_a: str, token_b: str) -> PairKey:
    return frozenset((token_a, token_b))


class RefSwapOracle:
    def __init__(
        self,
        *,
        rpc_url: str,
        contract_id: str,
        pools: Mapping[PairKey, int],
        smart_router_url: Optional[str] = None,
        path_depth: int = 3,
        slippage: float = 0.005,
        timeout_sec: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._logger = get_logger("ref")
        self._rpc_url = rpc_url
        self._contract_id = contract_id
        self._pools = dict(pools)
        self._router_url = smart_router_url
        self._path_depth = path_depth
        self._slippage = slippage
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    # ---- NEAR RPC ----
    def _view(self, method_name: str, args: JsonDict) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": "query",
            "params": {
                "request_type": "call_function",
                "finality": "final",
                "account_id": self._contract_id,
                "method_name": method_name,
                "args_base64": base64.b64encode(json.dumps(args).encode("utf-8")).decode("ascii"),
            },
        }
        try:
            resp = self._session.post(self._rpc_url, json=body, timeout=self._timeout)
        except requests.RequestException as e:
            raise SwapOracleError(f"NEAR RPC request failed: {e}") from e
        if not resp.ok:
            raise SwapOracleError(f"NEAR RPC HTTP error: [{resp.status_code}] {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise SwapOracleError(f"NEAR RPC returned invalid JSON: {e}") from e
        if data.get("error"):
            raise SwapOracleError(f"NEAR RPC error: {data['error']}")
        result = (data.get("result") or {}).get("result")
        if result is None:
            raise SwapOracleError(f"{method_name} returned no result")
        try:
            return json.loads(bytes(result).decode("utf-8"))
        except (TypeError, ValueError) as e:
            raise SwapOracleError(f"{method_name} returned an undecodable result: {e}") from e

    def _get_return(self, pool_id: int, token_in: str, amount_in: FixedNumber, token_out: str) -> str:
        out = self._view(
            "get_return",
            {
                "pool_id": pool_id,
                "token_in": token_in,
                "amount_in": amount_in.to_u128(),
                "token_out": token_out,
            },
        )
        return str(out)

    # ---- smart router ----
    def _find_path(self, token_in: str, amount_in: FixedNumber, token_out: str) -> str:
        params = {
            "amountIn": amount_in.to_u128(),
            "tokenIn": token_in,
            "tokenOut": token_out,
            "pathDeep": self._path_depth,
            "slippage": self._slippage,
        }
        try:
            resp = self._session.get(self._router_url, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            raise SwapOracleError(f"smart router request failed: {e}") from e
        if not resp.ok:
            raise SwapOracleError(f"smart router HTTP error: [{resp.status_code}] {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise SwapOracleError(f"smart router returned invalid JSON: {e}") from e
        amount_out = (data.get("result_data") or {}).get("amount_out")
        if data.get("result_code") not in (0, "0", None) or not amount_out:
            raise SwapOracleError(f"smart router found no route: {data.get('result_message', data)}")
        return str(amount_out)

    async def quote(self, token_in: str, amount_in: FixedNumber, token_out: str, decimals_out: int) -> FixedNumber:
        """Expected output (in token_out base units) of swapping amount_in."""
        if amount_in.is_zero():
            return FixedNumber(0, decimals_out)

        if self._router_url:
            try:
                units = await asyncio.to_thread(self._find_path, token_in, amount_in, token_out)
                return self._result(units, decimals_out, source="smart_router", token_in=token_in, token_out=token_out)
            except SwapOracleError as e:
                self._logger.warning("smart_router_failed", token_in=token_in, token_out=token_out, error=str(e))

        pool_id = self._pools.get(pair_key(token_in, token_out))
        if pool_id is None:
            raise SwapOracleError(f"no pool configured for {token_in} -> {token_out}")
        units = await asyncio.to_thread(self._get_return, pool_id, token_in, amount_in, token_out)
        return self._result(units, decimals_out, source=f"pool:{pool_id}", token_in=token_in, token_out=token_out)

    def _result(self, units: str, decimals: int, *, source: str, token_in: str, token_out: str) -> FixedNumber:
        try:
            out = FixedNumber.from_units(units, decimals)
        except ValueError as e:
            raise SwapOracleError(f"quote is not an integer amount: {units!r}") from e
        self._logger.info("quote", source=source, token_in=token_in, token_out=token_out, amount_out=out.to_float())
        return out
