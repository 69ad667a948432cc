"""Travel-rule compliance tiers and INR withdrawal conversion."""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from stablepay.constants import USDC_UNIT

ENHANCED_THRESHOLD_USD = Decimal(1000)
HIGH_RISK_THRESHOLD_USD = Decimal(10000)

BASIC_FIELDS = ("fullName", "dateOfBirth", "nationalId", "address")
ENHANCED_FIELDS = ("accountNumber", "bankName", "sourceOfFunds", "purposeOfTransaction")
THIRD_PARTY_FIELDS = ("relationshipToBeneficiary", "additionalVerificationMethod")
HIGH_RISK_FIELDS = ("swiftCode", "ownershipDetails", "controllingParty")

COMPLETION_ESTIMATES = {"basic": "5 minutes", "enhanced": "10 minutes", "high_risk": "15 minutes"}
RISK_CATEGORIES = {"basic": "low", "enhanced": "medium", "high_risk": "high"}


@dataclass(frozen=True)
class ComplianceRequirements:
    level: str  # basic | enhanced | high_risk
    required_fields: tuple[str, ...]
    additional_verification_required: bool
    is_third_party: bool

    @property
    def risk_category(self) -> str:
        return RISK_CATEGORIES[self.level]

    def to_json(self) -> dict:
        return {
            "complianceLevel": self.level,
            "requiredFields": list(self.required_fields),
            "additionalVerificationRequired": self.additional_verification_required,
            "isThirdParty": self.is_third_party,
            "riskCategory": self.risk_category,
            "thresholds": {
                "basic": {"min": 0, "max": int(ENHANCED_THRESHOLD_USD)},
                "enhanced": {"min": int(ENHANCED_THRESHOLD_USD), "max": int(HIGH_RISK_THRESHOLD_USD)},
                "high_risk": {"min": int(HIGH_RISK_THRESHOLD_USD), "max": None},
            },
            "estimatedCompletionTime": COMPLETION_ESTIMATES[self.level],
        }


def compliance_requirements(
    amount_usd: Decimal,
    *,
    originator: str | None = None,
    beneficiary: str | None = None,
    high_risk: bool = False,
) -> ComplianceRequirements:
    """Required originator data for a transfer of `amount_usd`.

    Above 1,000 USD the enhanced tier applies (third-party transfers need more), above
    10,000 USD (or when the risk assessment says so) the high-risk tier.
    """
    is_third_party = bool(originator and beneficiary and originator.lower() != beneficiary.lower())
    fields = list(BASIC_FIELDS)
    level = "basic"
    extra = False
    if amount_usd > ENHANCED_THRESHOLD_USD:
        level = "enhanced"
        extra = True
        fields.extend(ENHANCED_FIELDS)
        if is_third_party:
            fields.extend(THIRD_PARTY_FIELDS)
    if amount_usd > HIGH_RISK_THRESHOLD_USD or high_risk:
        level = "high_risk"
        extra = True
        fields.extend(HIGH_RISK_FIELDS)
    return ComplianceRequirements(
        level=level,
        required_fields=tuple(fields),
        additional_verification_required=extra,
        is_third_party=is_third_party,
    )


def usdc_to_inr(usdc_amount: int, exchange_rate: Decimal) -> Decimal:
    """Convert a smallest-unit USDC amount to INR, truncated to paise."""
    inr = Decimal(usdc_amount) / USDC_UNIT * exchange_rate
    return inr.quantize(Decimal("0.01"), rounding=ROUND_DOWN)
