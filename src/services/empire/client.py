from __future__ import annotations

import json
import uuid
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from .models import ApiRoutes


class EmpireClient:
    def __init__(
        self,
        *,
        api_base: str,
        api_key: str,
        routes: ApiRoutes,
        timeout: float = 10.0,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.routes = routes
        self.timeout = timeout
        self.session = requests.Session()
        adapter = HTTPAdapter(pool_connections=30, pool_maxsize=30, max_retries=0)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update(
            {
                "accept": "application/json",
                "authorization": f"Bearer {api_key}",
                "content-type": "application/json",
            }
        )

    def _path(self, path: str, **kwargs: Any) -> str:
        rendered = path.format(**kwargs)
        if rendered.startswith("http://") or rendered.startswith("https://"):
            return rendered
        if not rendered.startswith("/"):
            rendered = "/" + rendered
        return f"{self.api_base}{rendered}"

    def _request_id_headers(self) -> Dict[str, str]:
        return {"x-request-id": str(uuid.uuid4())}

    def _raise_for_error(self, response: requests.Response) -> None:
        if response.status_code < 400:
            return
        message = response.text
        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("message"):
                message = str(payload["message"])
            else:
                message = json.dumps(payload, ensure_ascii=False)
        except ValueError:
            pass
        raise RuntimeError(f"HTTP {response.status_code}: {message}")

    def _json_or_none(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self.session.get(
            self._path(path),
            params=params or {},
            headers=self._request_id_headers(),
            timeout=self.timeout,
        )
        self._raise_for_error(response)
        return self._json_or_none(response)

    def place_bid(self, item_id: int, bid_value: int) -> Dict[str, Any]:
        """Submit one bid and return the marketplace verdict.

        Rejections arrive as ``{"success": false, ...}`` bodies, sometimes with
        a 4xx status; those are returned as-is. Anything else that is not a
        2xx JSON object raises ``RuntimeError``.
        """
        response = self.session.post(
            self._path(self.routes.place_bid, item_id=item_id),
            params={"bid_value": int(bid_value)},
            json={},
            headers=self._request_id_headers(),
            timeout=self.timeout,
        )
        payload = self._json_or_none(response)
        if isinstance(payload, dict) and "success" in payload:
            return payload
        self._raise_for_error(response)
        raise RuntimeError(f"Unexpected bid response: {response.text[:200]}")

    def fetch_active_auctions(self) -> Dict[str, Any]:
        payload = self._get(self.routes.active_auctions)
        return payload if isinstance(payload, dict) else {}

    def fetch_socket_metadata(self) -> Dict[str, Any]:
        payload = self._get(self.routes.socket_metadata)
        return payload if isinstance(payload, dict) else {}

    def close(self) -> None:
        self.session.close()
