# gs_platform/_http.py
# shared requests helpers: retries with backoff and lenient JSON decoding.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import time
from typing import Any

import requests

__all__ = ["build_session", "safe_json", "request_with_retries", "error_message"]

UA = "GuideSync/1.0"


def build_session(headers: dict[str, str] | None = None, *, verify: bool = True) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": UA, "Accept": "application/json"})
    if headers:
        s.headers.update(headers)
    s.verify = verify
    return s


def safe_json(resp: requests.Response) -> Any:
    try:
        if not (resp.text or "").strip():
            return {}
        ctype = (resp.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            return resp.json()
        return json.loads(resp.text)
    except ValueError:
        return {}


def error_message(resp: requests.Response) -> str:
    body = safe_json(resp)
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error") or body.get("errorMessage")
        if msg:
            return f"HTTP {resp.status_code}: {msg}"
    if isinstance(body, list) and body and isinstance(body[0], dict):
        # *arr validation failures come back as a list of {propertyName, errorMessage}
        msgs = [str(x.get("errorMessage") or "") for x in body if x.get("errorMessage")]
        if msgs:
            return f"HTTP {resp.status_code}: {'; '.join(msgs)}"
    return f"HTTP {resp.status_code}"


def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 10.0,
    max_retries: int = 3,
    retry_on: tuple[int, ...] = (429, 500, 502, 503, 504),
    backoff_base: float = 0.5,
    **kwargs: Any,
) -> requests.Response:
    last: Any = None
    for i in range(max(1, int(max_retries))):
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
            if resp.status_code in retry_on and i < max_retries - 1:
                wait = backoff_base * (2**i)
                if resp.status_code == 429:
                    ra = resp.headers.get("Retry-After")
                    try:
                        if ra:
                            wait = max(wait, float(ra))
                    except ValueError:
                        pass
                time.sleep(wait)
                last = resp
                continue
            return resp
        except requests.RequestException as e:
            last = e
            if i < max_retries - 1:
                time.sleep(backoff_base * (2**i))
            else:
                break
    if isinstance(last, requests.Response):
        return last
    if isinstance(last, requests.RequestException):
        raise last
    raise requests.RequestException(f"request failed after retries: {method} {url}")
