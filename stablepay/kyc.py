"""KYC vendors, per-step fallback and the weighted confidence score."""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from stablepay.constants import (
    CASHFREE_API_VERSION,
    CASHFREE_PRODUCTION_URL,
    DEFAULT_HTTP_TIMEOUT,
    KYC_CONSENT_PURPOSE,
    KYC_REJECTION_FLOOR,
    KYC_STEP_WEIGHTS,
    KYC_VERIFIED_THRESHOLDS,
    SUREPASS_DEFAULT_URL,
)
from stablepay.errors import InvalidVerificationLevel, VendorError
from stablepay.models import KycOutcome, KycRequest, KycStepResult

logger = logging.getLogger(__name__)

STATUS_VERIFIED = "verified"
STATUS_PENDING = "pending"
STATUS_REJECTED = "rejected"


class KycProvider(ABC):
    """One verification vendor. Subclasses map step names to vendor calls.

    `verify` returns the vendor payload when the vendor confirms the step and raises
    VendorError otherwise (including transport failures).
    """

    name = "provider"
    endpoints: dict[str, str] = {}

    def __init__(self, base_url: str, *, timeout: int = DEFAULT_HTTP_TIMEOUT, session=None) -> None:
        if session is None:
            import requests

            session = requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session

    def supports(self, step: str) -> bool:
        return step in self.endpoints

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    @abstractmethod
    def payload(self, step: str, request: KycRequest) -> dict[str, Any]:
        """JSON body of the vendor call for `step`."""

    @abstractmethod
    def confirmed(self, step: str, body: dict[str, Any]) -> bool:
        """Whether the vendor response confirms `step`."""

    def verify(self, step: str, request: KycRequest) -> dict[str, Any]:
        if not self.supports(step):
            raise VendorError(self.name, f"step {step!r} not supported")
        url = f"{self.base_url}{self.endpoints[step]}"
        try:
            resp = self.session.post(url, json=self.payload(step, request), headers=self.headers(), timeout=self.timeout)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            raise VendorError(self.name, f"{step} request failed: {ex}") from ex
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not resp.ok:
            message = body.get("message") if isinstance(body, dict) else None
            raise VendorError(self.name, message or f"{step} verification failed: HTTP {resp.status_code}")
        if not isinstance(body, dict) or not self.confirmed(step, body):
            raise VendorError(self.name, f"{step} not confirmed")
        return body


class CashfreeProvider(KycProvider):
    name = "cashfree"
    endpoints = {
        "digilocker": "/v3/digilocker/aadhaar",
        "pan": "/v3/pan/advanced",
        "face_liveness": "/v3/face/liveness",
        "bank": "/v3/bank_account/advanced",
        "upi": "/v3/upi/advanced",
    }

    def __init__(
        self, client_id: str, client_secret: str, *, base_url: str = CASHFREE_PRODUCTION_URL, **kwargs: Any
    ) -> None:
        super().__init__(base_url, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret

    def headers(self) -> dict[str, str]:
        h = super().headers()
        h.update(
            {
                "x-api-version": CASHFREE_API_VERSION,
                "x-client-id": self.client_id,
                "x-client-secret": self.client_secret,
            }
        )
        return h

    def payload(self, step: str, request: KycRequest) -> dict[str, Any]:
        if step == "digilocker":
            return {
                "purpose": KYC_CONSENT_PURPOSE,
                "consent_required": True,
                "fetch_document": True,
                "verify_signature": True,
                "extract_data": True,
            }
        if step == "pan":
            return {
                "pan": request.pan_number,
                "name": request.full_name,
                "consent": "Y",
                "consent_purpose": KYC_CONSENT_PURPOSE,
            }
        if step == "face_liveness":
            return {"liveness_check": True, "face_match": True, "quality_check": True, "consent": "Y"}
        if step == "bank":
            return {"bank_account": request.bank_account, "ifsc": request.ifsc_code, "name": request.full_name}
        return {"vpa": request.upi_id, "name": request.full_name}

    def confirmed(self, step: str, body: dict[str, Any]) -> bool:
        if step in ("digilocker", "face_liveness"):
            return body.get("status") == "success"
        return bool(body.get("valid")) and body.get("name_match") == "Y"


class SurePassProvider(KycProvider):
    name = "surepass"
    endpoints = {
        "digilocker": "/v1/aadhaar-verification",
        "pan": "/v1/pan-verification",
        "bank": "/v1/bank-verification",
        "upi": "/v1/upi-verification",
    }

    def __init__(self, token: str, *, base_url: str = SUREPASS_DEFAULT_URL, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.token = token

    def headers(self) -> dict[str, str]:
        h = super().headers()
        h["Authorization"] = f"Bearer {self.token}"
        return h

    def payload(self, step: str, request: KycRequest) -> dict[str, Any]:
        base = {"name": request.full_name, "consent": "Y", "consent_purpose": KYC_CONSENT_PURPOSE}
        if step == "pan":
            return {"id_number": request.pan_number, **base}
        if step == "bank":
            return {"id_number": request.bank_account, "ifsc": request.ifsc_code, **base}
        if step == "upi":
            return {"upi_id": request.upi_id, **base}
        return base

    def confirmed(self, step: str, body: dict[str, Any]) -> bool:
        result = body.get("result")
        if isinstance(result, dict):
            return bool(result.get("success"))
        return bool(body.get("success"))


def run_step(step: str, providers: Sequence[KycProvider], request: KycRequest) -> KycStepResult:
    """Try `providers` in order and stop at the first that confirms `step`.

    A provider that raises counts as a failure; its error is kept. When every provider fails the
    step is failed but still carries its weight.
    """
    weight = KYC_STEP_WEIGHTS[step]
    errors: list[str] = []
    for provider in providers:
        if not provider.supports(step):
            continue
        try:
            data = provider.verify(step, request)
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.warning("KYC step %s failed at %s: %s", step, provider.name, ex)
            errors.append(str(ex))
            continue
        return KycStepResult(step=step, weight=weight, success=True, provider=provider.name, data=data)
    if not errors:
        errors.append(f"no provider configured for {step}")
    return KycStepResult(step=step, weight=weight, success=False, errors=tuple(errors))


def confidence_score(results: Iterable[KycStepResult]) -> int:
    """Weighted share of steps that passed, 0-100, rounded half up. 0 when nothing was attempted."""
    earned = 0
    attempted = 0
    for r in results:
        attempted += r.weight
        if r.success:
            earned += r.weight
    if attempted == 0:
        return 0
    score = Decimal(100 * earned) / Decimal(attempted)
    return int(score.to_integral_value(rounding=ROUND_HALF_UP))


def kyc_status(confidence: int, level: str) -> str:
    if level not in KYC_VERIFIED_THRESHOLDS:
        raise InvalidVerificationLevel(level)
    if confidence >= KYC_VERIFIED_THRESHOLDS[level]:
        return STATUS_VERIFIED
    if confidence < KYC_REJECTION_FLOOR:
        return STATUS_REJECTED
    return STATUS_PENDING


def steps_for(request: KycRequest) -> list[str]:
    """Steps to run for a request, in the order they are attempted."""
    level = request.verification_level
    if level not in KYC_VERIFIED_THRESHOLDS:
        raise InvalidVerificationLevel(level)
    steps: list[str] = []
    if level == "premium":
        steps.append("digilocker")
    if level in ("enhanced", "premium") and request.pan_number:
        steps.append("pan")
    if level == "premium":
        steps.append("face_liveness")
    if request.bank_account and request.ifsc_code:
        steps.append("bank")
    if request.upi_id:
        steps.append("upi")
    return steps


def perform_comprehensive_kyc(request: KycRequest, providers: Sequence[KycProvider]) -> KycOutcome:
    """Run every step the request qualifies for and aggregate the result."""
    steps = steps_for(request)
    results = tuple(run_step(step, providers, request) for step in steps)
    confidence = confidence_score(results)
    status = kyc_status(confidence, request.verification_level)
    outcome = KycOutcome(
        verification_id=f"kyc_{uuid.uuid4().hex}",
        level=request.verification_level,
        status=status,
        confidence=confidence,
        steps=results,
    )
    logger.info(
        "KYC %s for %s: %s (%d%%, %d/%d steps passed)",
        outcome.verification_id,
        request.user_address,
        status,
        confidence,
        sum(1 for r in results if r.success),
        len(results),
    )
    return outcome


def build_providers(settings) -> list[KycProvider]:
    """Configured providers in fallback order: Cashfree first, then SurePass."""
    providers: list[KycProvider] = []
    if settings.cashfree_client_id and settings.cashfree_client_secret:
        providers.append(
            CashfreeProvider(
                settings.cashfree_client_id,
                settings.cashfree_client_secret,
                base_url=settings.cashfree_base_url,
                timeout=settings.http_timeout,
            )
        )
    if settings.surepass_token:
        providers.append(
            SurePassProvider(settings.surepass_token, base_url=settings.surepass_base_url, timeout=settings.http_timeout)
        )
    if not providers:
        logger.warning("No KYC provider configured; every KYC step will fail")
    return providers
