"""
Directus CMS client and an in-memory stand-in for tests and local runs.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

import requests

from blog_backend.config import Settings
from blog_backend.errors import ConfigurationError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

# A field is either a column name or {relation: [nested fields]}.
FieldSpec = Union[str, dict]


def flatten_fields(fields: list[FieldSpec], parent: str = "") -> list[str]:
    """Turn nested relational field specs into Directus dotted paths."""
    flat: list[str] = []
    for spec in fields:
        if isinstance(spec, dict):
            for relation, nested in spec.items():
                flat.extend(flatten_fields(nested, f"{parent}{relation}."))
        else:
            flat.append(f"{parent}{spec}")
    return flat


@dataclass
class ItemQuery:
    filter: Optional[dict] = None
    fields: Optional[list[FieldSpec]] = None
    sort: Optional[list[str]] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.filter:
            params["filter"] = json.dumps(self.filter, separators=(",", ":"))
        if self.fields:
            params["fields"] = ",".join(flatten_fields(self.fields))
        if self.sort:
            params["sort"] = ",".join(self.sort)
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.offset:
            params["offset"] = str(self.offset)
        return params


class CmsClient(Protocol):
    """Operations the backend needs from the CMS."""

    def read_items(self, collection: str, query: Optional[ItemQuery] = None) -> list[dict]:
        ...

    def read_item(
        self, collection: str, item_id: Any, fields: Optional[list[FieldSpec]] = None
    ) -> Optional[dict]:
        ...

    def create_item(self, collection: str, payload: dict) -> dict:
        ...

    def read_roles(self, fields: Optional[list[str]] = None) -> list[dict]:
        ...

    def read_users(self, query: Optional[ItemQuery] = None) -> list[dict]:
        ...

    def read_me(self, session_token: str) -> Optional[dict]:
        ...


class DirectusClient:
    """
    Thin client for the Directus REST API.

    With a token every request is sent as ``Authorization: Bearer <token>``;
    without one, requests are anonymous and only public collections resolve.
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        headers: Optional[dict] = None,
        allow_not_found: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Directus request failed: {method} {path}: {exc}") from exc

        if allow_not_found and response.status_code in (401, 403, 404):
            return None
        if response.status_code == 400 and method != "GET":
            raise ValidationError(f"Directus rejected {method} {path}: {response.text[:200]}")
        if not response.ok:
            raise UpstreamError(
                f"Directus returned {response.status_code} for {method} {path}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Directus returned a non-JSON body for {method} {path}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise UpstreamError(f"Directus returned an unexpected body for {method} {path}")
        return body.get("data")

    def read_items(self, collection: str, query: Optional[ItemQuery] = None) -> list[dict]:
        params = (query or ItemQuery()).to_params()
        return self._request("GET", f"/items/{collection}", params=params) or []

    def read_item(
        self, collection: str, item_id: Any, fields: Optional[list[FieldSpec]] = None
    ) -> Optional[dict]:
        params = ItemQuery(fields=fields).to_params()
        return self._request(
            "GET", f"/items/{collection}/{item_id}", params=params, allow_not_found=True
        )

    def create_item(self, collection: str, payload: dict) -> dict:
        check_payload(payload)
        return self._request("POST", f"/items/{collection}", payload=payload)

    def read_roles(self, fields: Optional[list[str]] = None) -> list[dict]:
        params = ItemQuery(fields=fields).to_params()
        return self._request("GET", "/roles", params=params) or []

    def read_users(self, query: Optional[ItemQuery] = None) -> list[dict]:
        params = (query or ItemQuery()).to_params()
        return self._request("GET", "/users", params=params) or []

    def read_me(self, session_token: str) -> Optional[dict]:
        # The session token replaces the static token for this one call.
        return self._request(
            "GET",
            "/users/me",
            headers={"Authorization": f"Bearer {session_token}"},
            allow_not_found=True,
        )


def check_payload(payload: dict) -> None:
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("Item payload must be a non-empty object")


def build_cms_client(settings: Settings) -> DirectusClient:
    if not settings.directus_url:
        raise ConfigurationError(
            "DIRECTUS_URL or NEXT_PUBLIC_DIRECTUS_URL environment variable is required"
        )
    client = DirectusClient(
        settings.directus_url,
        token=settings.directus_api_token,
        timeout=settings.directus_timeout,
    )
    logger.info(
        "Directus client for %s (%s)",
        client.base_url,
        "authenticated" if client.authenticated else "anonymous",
    )
    return client


def _lookup(item: dict, path: str) -> Any:
    value: Any = item
    parts = path.split(".")
    for index, part in enumerate(parts):
        if isinstance(value, list):
            rest = ".".join(parts[index:])
            values = [_lookup(v, rest) for v in value if isinstance(v, dict)]
            return next((v for v in values if v is not None), None)
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    # Relations compare by primary key.
    if isinstance(value, dict) and "id" in value:
        return value["id"]
    return value


def _matches(item: dict, flt: dict) -> bool:
    for key, condition in flt.items():
        if key == "_or":
            if not any(_matches(item, sub) for sub in condition):
                return False
            continue
        if key == "_and":
            if not all(_matches(item, sub) for sub in condition):
                return False
            continue
        value = _lookup(item, key)
        for op, expected in condition.items():
            if op == "_eq" and value != expected:
                return False
            if op == "_neq" and value == expected:
                return False
            if op == "_contains" and (value is None or str(expected) not in str(value)):
                return False
            if op == "_icontains" and (
                value is None or str(expected).lower() not in str(value).lower()
            ):
                return False
            if op == "_null" and (value is None) != bool(expected):
                return False
    return True


def _sorted(items: list[dict], sort: list[str]) -> list[dict]:
    ordered = list(items)
    for spec in reversed(sort):
        descending = spec.startswith("-")
        name = spec.lstrip("-")
        present = [i for i in ordered if _lookup(i, name) is not None]
        missing = [i for i in ordered if _lookup(i, name) is None]
        present.sort(key=lambda i: _lookup(i, name), reverse=descending)
        ordered = present + missing
    return ordered


@dataclass
class InMemoryDirectusClient:
    """Test double evaluating the Directus query model over local lists."""

    collections: dict[str, list[dict]] = field(default_factory=dict)
    roles: list[dict] = field(default_factory=list)
    users: list[dict] = field(default_factory=list)
    sessions: dict[str, dict] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def read_items(self, collection: str, query: Optional[ItemQuery] = None) -> list[dict]:
        query = query or ItemQuery()
        self.calls.append(("read_items", collection))
        items = self.collections.get(collection, [])
        if query.filter:
            items = [item for item in items if _matches(item, query.filter)]
        if query.sort:
            items = _sorted(items, query.sort)
        start = query.offset or 0
        end = start + query.limit if query.limit is not None else None
        return copy.deepcopy(items[start:end])

    def read_item(
        self, collection: str, item_id: Any, fields: Optional[list[FieldSpec]] = None
    ) -> Optional[dict]:
        self.calls.append(("read_item", collection))
        for item in self.collections.get(collection, []):
            if str(item.get("id")) == str(item_id):
                return copy.deepcopy(item)
        return None

    def create_item(self, collection: str, payload: dict) -> dict:
        check_payload(payload)
        self.calls.append(("create_item", collection))
        items = self.collections.setdefault(collection, [])
        next_id = max((int(i.get("id", 0)) for i in items), default=0) + 1
        created = {"id": next_id, **payload}
        items.append(created)
        return copy.deepcopy(created)

    def read_roles(self, fields: Optional[list[str]] = None) -> list[dict]:
        self.calls.append(("read_roles", "roles"))
        return copy.deepcopy(self.roles)

    def read_users(self, query: Optional[ItemQuery] = None) -> list[dict]:
        self.calls.append(("read_users", "users"))
        return copy.deepcopy(self.users)

    def read_me(self, session_token: str) -> Optional[dict]:
        self.calls.append(("read_me", "users"))
        user = self.sessions.get(session_token)
        return copy.deepcopy(user) if user else None
