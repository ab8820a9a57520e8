"""
Crocodile CRUD workload.

Registers and logs in a user once in setup, then every iteration:
- fetches four public crocodiles in one parallel batch and checks their ages
- creates, updates and deletes a private crocodile, each in its own group,
  aborting the iteration as soon as one step fails so the dependent steps
  never run
"""

from __future__ import annotations

import os
import random
import string
from typing import Any, Dict, List, Mapping, Optional

from ..script import check, fail, group, http, sleep
from ..workload import Workload
from .registry import scenario

BASE_URL = os.environ.get("CROCODILE_BASE_URL", "https://test-api.loadimpact.com")
PASSWORD = "superCroc2019"

DEFAULT_STAGES: List[Dict[str, Any]] = [
    {"target": 50, "duration": "25s"},
    {"target": 50, "duration": "5s"},
]

DEFAULT_THRESHOLDS: Dict[str, List[str]] = {
    "http_req_duration": ["p(95)<500", "p(99)<1500"],
    "http_req_duration{name:PublicCrocs}": ["avg<400"],
    "http_req_duration{name:Create}": ["avg<600", "max>1000"],
}


def random_string(length: int) -> str:
    return "".join(random.choice(string.ascii_lowercase) for _ in range(length))


def _private(token: str, name: str) -> Dict[str, Any]:
    return {"headers": {"Authorization": f"Bearer {token}"}, "tags": {"name": name}}


@scenario("crocodile_crud")
def crocodile_crud(
    base_url: str = BASE_URL,
    stages: Optional[List[Mapping[str, Any]]] = None,
    thresholds: Optional[Mapping[str, List[str]]] = None,
    think_time: float = 1.0,
    **options: Any,
) -> Workload:
    base_url = base_url.rstrip("/")
    username = f"{random_string(10)}@example.com"

    async def setup() -> str:
        res = await http.post(
            f"{base_url}/user/register/",
            {
                "first_name": "Crocodile",
                "last_name": "Owner",
                "username": username,
                "password": PASSWORD,
            },
        )
        if not check(res, {"created user": lambda r: r.status == 201}):
            fail(f"Unable to register user {res.status} {res.body}")

        login = await http.post(
            f"{base_url}/auth/token/login/", {"username": username, "password": PASSWORD}
        )
        token = login.json("access") if login.ok else None
        if not check(token, {"logged in successfully": lambda t: bool(t)}):
            fail(f"Unable to log in {login.status} {login.body}")
        return token

    async def default(token: str) -> None:
        async with group("Public endpoints"):
            responses = await http.batch(
                [
                    ("GET", f"{base_url}/public/crocodiles/{i}/", None, {"tags": {"name": "PublicCrocs"}})
                    for i in range(1, 5)
                ]
            )
            ages = [r.json("age") if r.ok else None for r in responses]
            check(ages, {"Crocs are older than 5 years of age": lambda a: min(a) > 5})

        async with group("Create and modify crocs"):
            url = f"{base_url}/my/crocodiles/"

            async with group("Create crocs"):
                payload = {
                    "name": f"Name {random_string(10)}",
                    "sex": "M",
                    "date_of_birth": "2001-01-01",
                }
                res = await http.post(url, payload, **_private(token, "Create"))
                if check(res, {"croc created": lambda r: r.status == 201}):
                    url = f"{url}{res.json('id')}/"
                else:
                    fail(f"Unable to create a Croc {res.status} {res.body}")

            async with group("Update croc"):
                res = await http.patch(url, {"name": "New name"}, **_private(token, "Update"))
                updated = check(
                    res,
                    {
                        "resp correct": lambda r: r.status == 200,
                        "croc updated": lambda r: r.json("name") == "New name",
                    },
                )
                if not updated:
                    fail(f"Unable to update the croc {res.status} {res.body}")

            async with group("Delete croc"):
                res = await http.delete(url, None, **_private(token, "Delete"))
                get_res = await http.get(url, **_private(token, "RetrieveDeleted"))
                deleted = check(
                    res,
                    {
                        "croc deleted": lambda r: r.status == 204,
                        "croc not found": lambda _: get_res.status == 404,
                    },
                )
                if not deleted:
                    fail("Croc was not deleted properly")

        await sleep(think_time)

    opts: Dict[str, Any] = {
        "stages": list(stages) if stages is not None else list(DEFAULT_STAGES),
        "thresholds": dict(thresholds) if thresholds is not None else dict(DEFAULT_THRESHOLDS),
    }
    opts.update(options)
    return Workload(name="crocodile_crud", default=default, options=opts, setup=setup)
