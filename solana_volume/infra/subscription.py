"""
Push confirmation via Solana websocket signatureSubscribe

The submission engine prefers a push notification for the signature it just
sent and falls back to polling when the socket fails or times out.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Optional

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect

from ..errors import RpcError
from ..types import SignatureStatus

logger = logging.getLogger(__name__)

# recv() slice while a cancellable subscription waits
_CANCEL_CHECK_INTERVAL = 0.5


class SubscriptionHandle:
    """Background subscription created by SignatureSubscriber.subscribe()"""

    def __init__(self, signature: str):
        self.signature = signature
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


class SignatureSubscriber:
    """
    Waits for signatureNotification messages

    Usage:
        subscriber = SignatureSubscriber("wss://api.devnet.solana.com")

        # Blocking wait, None on timeout
        status = subscriber.wait_for_signature(sig, "confirmed", timeout=30)

        # Callback from a background thread
        handle = subscriber.subscribe(sig, on_status)
        subscriber.cancel(handle)
    """

    def __init__(self, ws_url: str, open_timeout: float = 10.0):
        if not ws_url:
            raise RpcError("Websocket URL is required for signature subscriptions")
        self._url = ws_url
        self._open_timeout = open_timeout
        self._request_id = 0
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url

    def _next_request_id(self) -> int:
        with self._lock:
            self._request_id += 1
            return self._request_id

    def _listen(
        self,
        signature: str,
        commitment: str,
        timeout: float,
        cancelled: Optional[threading.Event] = None,
    ) -> Optional[SignatureStatus]:
        deadline = time.monotonic() + timeout
        request_id = self._next_request_id()
        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "signatureSubscribe",
            "params": [signature, {"commitment": commitment}],
        }

        try:
            with connect(self._url, open_timeout=max(min(timeout, self._open_timeout), 0.1)) as ws:
                ws.send(json.dumps(request))
                subscription_id = None

                while True:
                    if cancelled is not None and cancelled.is_set():
                        return None
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if cancelled is None else min(remaining, _CANCEL_CHECK_INTERVAL)
                    try:
                        raw = ws.recv(timeout=wait)
                    except TimeoutError:
                        continue

                    message = json.loads(raw)

                    if message.get("id") == request_id:
                        if "error" in message:
                            raise RpcError(
                                f"signatureSubscribe rejected: {message['error']}",
                                endpoint=self._url,
                            )
                        subscription_id = message.get("result")
                        logger.debug(f"Subscribed to {signature} (subscription {subscription_id})")
                        continue

                    if message.get("method") != "signatureNotification":
                        continue

                    params = message.get("params") or {}
                    if subscription_id is not None and params.get("subscription") != subscription_id:
                        continue

                    result = params.get("result") or {}
                    value = result.get("value")
                    # "receivedSignature" notifications carry a string value
                    if not isinstance(value, dict):
                        continue

                    return SignatureStatus(
                        signature=signature,
                        confirmation_status=commitment,
                        err=value.get("err"),
                        slot=(result.get("context") or {}).get("slot"),
                    )

        except (WebSocketException, OSError) as e:
            raise RpcError.connection_failed(self._url, e) from e
        except ValueError as e:
            raise RpcError.invalid_response(self._url, str(e)) from e

    def wait_for_signature(
        self,
        signature: str,
        commitment: str = "confirmed",
        timeout: float = 60.0,
    ) -> Optional[SignatureStatus]:
        """
        Block until the signature reaches commitment

        Returns:
            SignatureStatus (check .err), or None on timeout

        Raises:
            RpcError: Socket failure or subscription rejected
        """
        return self._listen(signature, commitment, timeout)

    def subscribe(
        self,
        signature: str,
        callback: Callable[[SignatureStatus], None],
        commitment: str = "confirmed",
        timeout: float = 60.0,
    ) -> SubscriptionHandle:
        """Invoke callback from a background thread once the signature lands"""
        handle = SubscriptionHandle(signature)

        def run():
            try:
                status = self._listen(signature, commitment, timeout, handle._cancelled)
            except RpcError as e:
                logger.warning(f"Subscription for {signature} failed: {e}")
                return
            if status is None or handle.cancelled:
                return
            try:
                callback(status)
            except Exception:
                logger.exception(f"Subscription callback failed for {signature}")

        handle._thread = threading.Thread(target=run, name=f"sigsub-{signature[:8]}", daemon=True)
        handle._thread.start()
        return handle

    def cancel(self, handle: SubscriptionHandle, wait: bool = False) -> None:
        handle._cancelled.set()
        if wait:
            handle.join()
