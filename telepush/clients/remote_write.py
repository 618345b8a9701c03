from __future__ import annotations

import httpx

from telepush.core.errors import RemoteWriteError
from telepush.encoding.remote_write import (
    CONTENT_ENCODING,
    CONTENT_TYPE,
    REMOTE_WRITE_VERSION,
)

USER_AGENT = "telepush/0.1"


class RemoteWriteClient:
    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float,
        username: str | None = None,
        password: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = url
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.Client(
            timeout=timeout_seconds,
            auth=auth,
            transport=transport,
            headers={
                "User-Agent": USER_AGENT,
                "Content-Type": CONTENT_TYPE,
                "Content-Encoding": CONTENT_ENCODING,
                "X-Prometheus-Remote-Write-Version": REMOTE_WRITE_VERSION,
            },
        )

    @property
    def url(self) -> str:
        return self._url

    def close(self) -> None:
        self._client.close()

    def send(self, payload: bytes, *, timeout: float | None = None) -> httpx.Response:
        """POST one encoded write request. Any non-2xx is an error.

        ``timeout`` overrides the client timeout for this request only.
        """
        try:
            resp = self._client.post(
                self._url,
                content=payload,
                timeout=httpx.USE_CLIENT_DEFAULT if timeout is None else timeout,
            )
        except (httpx.HTTPError, httpx.InvalidURL, RuntimeError) as e:
            # RuntimeError covers a closed client and httpx.StreamError.
            raise RemoteWriteError(f"request to {self._url} failed: {e}") from e
        if not resp.is_success:
            body = resp.text
            raise RemoteWriteError(
                f"remote write returned status {resp.status_code}: {body}",
                status_code=resp.status_code,
                body=body,
            )
        return resp
