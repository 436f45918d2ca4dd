import json
import time

import requests


class FFClient:
    def __init__(self, api_url: str, sdk_key: str, timeout: float = 2.0, cache_ttl: float = 30.0):
        self.api_url = api_url.rstrip('/')
        self.sdk_key = sdk_key
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._cache = {}  # context fingerprint -> (flags, ts)

    def _post(self, path: str, body: dict):
        url = f"{self.api_url}{path}"
        r = requests.post(url, json=body, headers={"X-SDK-Key": self.sdk_key}, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def evaluate(self, user_id: str, user_email: str | None = None, attributes: dict | None = None) -> dict:
        body = {"user_id": user_id}
        if user_email is not None:
            body["user_email"] = user_email
        if attributes:
            body["custom_attributes"] = attributes
        fingerprint = json.dumps(body, sort_keys=True)
        now = time.time()
        cached = self._cache.get(fingerprint)
        if cached and (now - cached[1] < self.cache_ttl):
            return cached[0]
        flags = self._post("/sdk/v1/evaluate", body)
        self._cache[fingerprint] = (flags, now)
        return flags

    def is_enabled(self, key: str, user_id: str, user_email: str | None = None, attributes: dict | None = None) -> bool:
        state = self.evaluate(user_id, user_email, attributes).get(key)
        return bool(state and state["enabled"])

    def clear_cache(self):
        self._cache.clear()
