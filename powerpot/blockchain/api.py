import os
import logging
from decimal import Decimal, InvalidOperation
from urllib.parse import urljoin
from dotenv import load_dotenv
import requests
from .sender import TransferResult
from .utils import open_session, get_jwt_token
from typing import Any, Optional, Mapping

logger = logging.getLogger(__name__)

# Statuses the treasury service reports for a transfer that reached consensus.
CONFIRMED_STATUSES = ("confirmed", "finalized")


def format_amount(amount: Decimal) -> str:
    """Render ``amount`` as a plain decimal string with lamport precision."""
    return format(Decimal(amount).quantize(Decimal("0.000000001")), "f")


class ChainClient:
    """HTTP client for the custodial treasury service that moves SOL on-chain.

    Implements :class:`~powerpot.blockchain.sender.PaymentSender`.
    """

    def __init__(self, base_fqdn: Optional[str] = None, timeout: float = 45):
        load_dotenv()
        fqdn = base_fqdn or os.getenv("TREASURY_API_FQDN")
        if not fqdn:
            raise ValueError("Environment variable 'TREASURY_API_FQDN' is not set")

        self.base_url = f"https://{fqdn}".rstrip("/")
        session_info = open_session(timeout=timeout)
        if not session_info or len(session_info) != 2:
            raise ValueError("open_session() must return (session, csrf_token)")
        self.session, self.csrf = session_info
        self.jwt = get_jwt_token(self.session, timeout=timeout)
        self.timeout = timeout

    # -------- headers --------
    @property
    def public_headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json"}

    @property
    def auth_headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json", "Authorization": f"Bearer {self.jwt}"}

    @property
    def auth_csrf_headers(self) -> Mapping[str, str]:
        return {**self.auth_headers, "X-CSRFTOKEN": self.csrf}

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=headers or self.public_headers,
            params=params,
            json=json,
            timeout=timeout if timeout is not None else self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def get_balance(self, account: str) -> Decimal:
        """Return the SOL balance of ``account``."""
        payload = self._request(
            "GET",
            f"/api/v1/wallets/{account}/balance",
            headers=self.auth_headers,
        )
        if not isinstance(payload, dict) or "balance" not in payload:
            raise RuntimeError(f"Unexpected balance response: {payload!r}")
        try:
            return Decimal(str(payload["balance"]))
        except InvalidOperation as exc:
            raise RuntimeError(f"Malformed balance value: {payload['balance']!r}") from exc

    def transfer(
        self,
        from_account: str,
        to_account: str,
        amount: Decimal,
        *,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TransferResult:
        """Send ``amount`` SOL and wait for confirmation.

        Network and HTTP errors are reported as a failed :class:`TransferResult`
        rather than raised. A timeout yields ``timed_out=True`` because the
        transfer may still land on-chain.
        """
        headers = dict(self.auth_csrf_headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        body = {
            "from": from_account,
            "to": to_account,
            "amount": format_amount(amount),
        }
        try:
            payload = self._request(
                "POST",
                "/api/v1/transfers",
                headers=headers,
                json=body,
                timeout=timeout,
            )
        except requests.Timeout as exc:
            logger.warning(f"Transfer to {to_account} timed out; outcome unknown")
            return TransferResult(success=False, error=f"timed out: {exc}", timed_out=True)
        except requests.RequestException as exc:
            return TransferResult(success=False, error=str(exc))

        if not isinstance(payload, dict):
            return TransferResult(
                success=False, error=f"Unexpected transfer response: {payload!r}"
            )
        signature = payload.get("signature")
        status = payload.get("status")
        if status in CONFIRMED_STATUSES and signature:
            return TransferResult(success=True, reference=signature)
        return TransferResult(
            success=False,
            reference=signature,
            error=payload.get("error") or f"Transfer not confirmed (status={status!r})",
        )

    def verify_transaction(self, signature: str) -> dict:
        """Look up ``signature`` and report whether it is confirmed."""
        payload = self._request(
            "GET",
            f"/api/v1/transactions/{signature}",
            headers=self.auth_headers,
        )
        status = (payload or {}).get("confirmation_status")
        return {
            "verified": status in CONFIRMED_STATUSES,
            "status": status,
            "transaction": payload,
        }
