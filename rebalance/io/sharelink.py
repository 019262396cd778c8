"""Share links that store a session remotely and load it back."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

URL_WRITE_SHARELINK = "https://bertiqwerty.com/balance_storage/write.php"
URL_READ_SHARELINK = "https://bertiqwerty.com/balance_storage/read.php"
URL_SHARELINK_BASE = "https://bertiqwerty.com/index.html"


def sessionid_to_link(session_id: str) -> str:
    return f"{URL_SHARELINK_BASE}?session_id={session_id}"


def sessionid_from_link(link: str) -> str | None:
    """Extract the alphanumeric session id following `session_id=`.

    A bare session id without any `session_id=` part is returned as is.
    """
    query = link.split("?")[-1]
    candidate = query.split("session_id=")[-1]
    session_id = ""
    for character in candidate:
        if not character.isalnum():
            break
        session_id += character
    return session_id or None


@dataclass(slots=True)
class ResponsePayload:
    """JSON body of every storage endpoint response."""

    status: int
    message: str
    json_data: Any

    @classmethod
    def from_json(cls, text: str) -> ResponsePayload:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as error:
            msg = f"Share link endpoint returned invalid JSON: {error}"
            raise RuntimeError(msg) from error
        if not isinstance(payload, Mapping):
            msg = "Share link endpoint returned a JSON value that is not an object."
            raise RuntimeError(msg)
        return cls(
            status=int(payload.get("status", 0)),
            message=str(payload.get("message", "")),
            json_data=payload.get("json_data"),
        )


class ShareLinkClient:
    """Write session states to the storage endpoint and read them back."""

    def __init__(
        self,
        write_url: str = URL_WRITE_SHARELINK,
        read_url: str = URL_READ_SHARELINK,
        request_timeout_sec: float = 20.0,
    ) -> None:
        self.write_url = write_url
        self.read_url = read_url
        self.request_timeout_sec = request_timeout_sec

    def write(self, state: Mapping[str, Any]) -> str:
        """Store `state` and return the link that loads it."""
        body = json.dumps({"json_data": state}).encode("utf-8")
        status, text = self._send(url=self.write_url, body=body)
        payload = _checked_payload(status=status, text=text)
        json_data = payload.json_data
        if not isinstance(json_data, Mapping) or "session_id" not in json_data:
            msg = "Share link response does not contain a session id."
            raise RuntimeError(msg)
        return sessionid_to_link(str(json_data["session_id"]))

    def read(self, link: str) -> dict[str, Any]:
        """Load the state stored under the session id of `link`."""
        session_id = sessionid_from_link(link)
        if session_id is None:
            msg = f"invalid link with session id {link}"
            raise ValueError(msg)
        status, text = self._send(url=f"{self.read_url}?session_id={session_id}")
        payload = _checked_payload(status=status, text=text)
        if not isinstance(payload.json_data, Mapping):
            msg = f"No session state stored under {session_id}."
            raise RuntimeError(msg)
        return dict(payload.json_data)

    def _send(self, url: str, body: bytes | None = None) -> tuple[int, str]:
        headers = {"User-Agent": "rebalance/0.1"}
        if body is not None:
            headers["Content-Type"] = "application/json"
        request = Request(
            url=url,
            data=body,
            headers=headers,
            method="POST" if body is not None else "GET",
        )
        try:
            with urlopen(request, timeout=self.request_timeout_sec) as response:
                return int(response.status), response.read().decode("utf-8")
        except HTTPError as error:
            return int(error.code), error.read().decode("utf-8", errors="replace")
        except URLError as error:
            msg = f"Failed to reach share link endpoint {url}."
            raise RuntimeError(msg) from error


def _checked_payload(status: int, text: str) -> ResponsePayload:
    if status != 200:
        try:
            message = ResponsePayload.from_json(text).message
        except RuntimeError:
            message = text.strip()
        msg = f"status {status}, {message}"
        raise RuntimeError(msg)
    return ResponsePayload.from_json(text)
