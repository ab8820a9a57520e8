"""Flat-load healthcheck against a gateway router."""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from ..script import Counter, check, http, sleep
from ..workload import Workload
from .registry import scenario

HEALTHCHECK_URL = os.environ.get(
    "GATEWAY_HEALTHCHECK_URL",
    "http://jarvis-gateway-beta-router-lb.cs-router.tsuru.globoi.com/healthcheck",
)
BODY_MARKER = "Feel free to browse"

requests = Counter("healthcheck_requests")


@scenario("gateway_healthcheck")
def gateway_healthcheck(
    url: str = HEALTHCHECK_URL,
    vus: int = 800,
    duration: Any = "15m",
    max_requests: Optional[int] = None,
    think_time: float = 1.0,
    **options: Any,
) -> Workload:
    """`max_requests` enables a `count<N` threshold on the healthcheck counter."""

    async def default() -> None:
        res = await http.get(url)
        requests.add(1)
        await sleep(think_time)
        check(
            res,
            {
                "status is 200": lambda r: r.status == 200,
                "response body": lambda r: BODY_MARKER in r.body,
            },
        )

    opts: Dict[str, Any] = {"vus": vus, "duration": duration}
    if max_requests is not None:
        opts["thresholds"] = {"healthcheck_requests": [f"count<{max_requests}"]}
    opts.update(options)
    return Workload(name="gateway_healthcheck", default=default, options=opts)
