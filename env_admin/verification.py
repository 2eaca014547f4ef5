"""
Credential Verification Client Module

Checks a login/password pair against an integration before it is written to
an environment's credential file. The check runs in an external service; any
non-200 answer or network failure counts as a failed verification.
"""

import httpx
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger("env_admin.verification")


@dataclass
class VerificationResult:
    """Result from the credential verification service"""
    success: bool
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    latency_ms: float = 0.0
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "details": self.details,
            "latencyMs": round(self.latency_ms, 1)
        }


class CredentialVerifier(ABC):
    """External credential check"""
    
    @abstractmethod
    async def verify(self, integration_id: str, login: str, password: str,
                     env_vars: Optional[Dict[str, str]] = None) -> VerificationResult:
        """Check credentials for ``integration_id``"""
        pass
    
    async def close(self):
        pass


class HttpCredentialVerifier(CredentialVerifier):
    """REST client for the credential verification service"""
    
    def __init__(self, url: str, timeout: float = 15.0, api_key: Optional[str] = None):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.AsyncClient(timeout=timeout)
    
    async def verify(self, integration_id: str, login: str, password: str,
                     env_vars: Optional[Dict[str, str]] = None) -> VerificationResult:
        start = time.time()
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        
        try:
            response = await self._client.post(
                self.url,
                json={
                    "banco": integration_id,
                    "login": login,
                    "senha": password,
                    "env": env_vars or {}
                },
                headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"Verification service unreachable for {integration_id}: {e}")
            return VerificationResult(
                success=False,
                message=f"Verification service unavailable: {e}",
                details={"reason": "verification_unavailable"},
                latency_ms=(time.time() - start) * 1000
            )
        
        latency_ms = (time.time() - start) * 1000
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        
        if response.status_code == 200 and data.get("success", True):
            return VerificationResult(
                success=True,
                message=data.get("message", "Credentials accepted"),
                details={k: v for k, v in data.items() if k not in ("success", "message", "token")},
                latency_ms=latency_ms
            )
        
        logger.warning(f"Verification for {integration_id} rejected with {response.status_code}")
        details = {"status": response.status_code}
        if isinstance(data.get("details"), dict):
            details.update(data["details"])
        return VerificationResult(
            success=False,
            message=data.get("error") or data.get("message") or f"HTTP {response.status_code}",
            details=details,
            latency_ms=latency_ms
        )
    
    async def close(self):
        """Close the HTTP client"""
        await self._client.aclose()


class MockCredentialVerifier(CredentialVerifier):
    """Verifier for tests and local runs: accepts a fixed set of passwords"""
    
    def __init__(self, accepted_passwords: Iterable[str] = ("valid",), raise_error: bool = False):
        self.accepted_passwords = set(accepted_passwords)
        self.raise_error = raise_error
        self.calls = []
    
    async def verify(self, integration_id: str, login: str, password: str,
                     env_vars: Optional[Dict[str, str]] = None) -> VerificationResult:
        self.calls.append((integration_id, login, env_vars or {}))
        if self.raise_error:
            raise httpx.ConnectError("verification service unreachable")
        if password in self.accepted_passwords:
            return VerificationResult(True, "Credentials accepted", {"banco": integration_id})
        return VerificationResult(False, "Invalid credentials", {"banco": integration_id})
