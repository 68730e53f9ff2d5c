"""
Privacy sensitivity check.

Pattern-based detection of personal, financial, medical and credential data.
Content at ``sensitive`` or ``critical`` level must stay on-device.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum


class PrivacyLevel(Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    SENSITIVE = "sensitive"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    PrivacyLevel.PUBLIC: 0,
    PrivacyLevel.PRIVATE: 1,
    PrivacyLevel.SENSITIVE: 2,
    PrivacyLevel.CRITICAL: 3,
}


@dataclass(frozen=True)
class SensitivePattern:
    type: str
    label: str
    level: PrivacyLevel
    patterns: tuple[re.Pattern, ...]
    mask: Callable[[str], str] | None = None


def _default_mask(match: str) -> str:
    if len(match) <= 6:
        return "***"
    return match[:3] + "***" + match[-2:]


SENSITIVE_PATTERNS: tuple[SensitivePattern, ...] = (
    SensitivePattern(
        "pii_ssn",
        "Resident registration number",
        PrivacyLevel.CRITICAL,
        (re.compile(r"\b\d{2}(0[1-9]|1[0-2])(0[1-9]|[12]\d|3[01])[-\s]?[1-4]\d{6}\b"),),
        lambda m: m[:6] + "-*******",
    ),
    SensitivePattern(
        "pii_passport",
        "Passport number",
        PrivacyLevel.CRITICAL,
        (re.compile(r"\b[A-Z]{1,2}\d{7,8}\b"),),
        lambda m: m[:2] + "*****" + m[-2:],
    ),
    SensitivePattern(
        "pii_driver",
        "Driver license",
        PrivacyLevel.CRITICAL,
        (re.compile(r"\b\d{2}-\d{2}-\d{6}-\d{2}\b"),),
        lambda m: m[:5] + "**-******-**",
    ),
    SensitivePattern(
        "financial_card",
        "Card number",
        PrivacyLevel.CRITICAL,
        (re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),),
        lambda m: m[:4] + "-****-****-" + m[-4:],
    ),
    SensitivePattern(
        "financial_account",
        "Bank account",
        PrivacyLevel.SENSITIVE,
        (
            re.compile(r"(계좌|통장|account)\s*(번호|number|no\.?)?\s*:?\s*[\d-]{10,16}", re.IGNORECASE),
            re.compile(r"\b\d{3,4}-\d{2,4}-\d{4,6}\b"),
        ),
        lambda m: m[:4] + "****" + m[-4:],
    ),
    SensitivePattern(
        "financial_transaction",
        "Transaction history",
        PrivacyLevel.SENSITIVE,
        (
            re.compile(r"(이체|송금|입금|출금)\s*(내역|기록|이력)"),
            re.compile(r"거래\s*(내역|기록|명세)"),
            re.compile(r"잔액\s*:?\s*[\d,]+\s*(원|만원|억)"),
        ),
    ),
    SensitivePattern(
        "medical_diagnosis",
        "Medical diagnosis",
        PrivacyLevel.SENSITIVE,
        (
            re.compile(r"진단(서|명|결과)\s*:?\s*.+"),
            re.compile(r"(암|당뇨|고혈압|우울증|불안장애|ADHD|자폐)\s*(진단|판정)"),
            re.compile(r"병명\s*:?\s*.+"),
        ),
    ),
    SensitivePattern(
        "medical_prescription",
        "Prescription",
        PrivacyLevel.SENSITIVE,
        (
            re.compile(r"처방(전|서)\s*:?\s*.+"),
            re.compile(r"(항생제|진통제|수면제|항우울제)\s*(처방|복용)"),
        ),
    ),
    SensitivePattern(
        "medical_record",
        "Health records",
        PrivacyLevel.PRIVATE,
        (
            re.compile(r"건강\s*(기록|검진|결과)"),
            re.compile(r"혈압\s*:?\s*\d+/\d+"),
            re.compile(r"혈당\s*:?\s*\d+"),
        ),
    ),
    SensitivePattern(
        "auth_password",
        "Password",
        PrivacyLevel.CRITICAL,
        (
            re.compile(r"(비밀번호|패스워드)\s*:?\s*\S+"),
            re.compile(r"\b(password|passwd|pw)\s*[:=]\s*\S+", re.IGNORECASE),
        ),
    ),
    SensitivePattern(
        "auth_apikey",
        "API key",
        PrivacyLevel.CRITICAL,
        (
            re.compile(r"api[-_]?key\s*:?\s*[a-zA-Z0-9_-]{20,}", re.IGNORECASE),
            re.compile(r"\bsk[-_][a-zA-Z0-9_-]{20,}"),
            re.compile(r"\bAIza[a-zA-Z0-9_-]{35}"),
        ),
        lambda m: m[:8] + "..." + m[-4:],
    ),
    SensitivePattern(
        "auth_token",
        "Auth token",
        PrivacyLevel.CRITICAL,
        (
            re.compile(r"\btoken\s*:?\s*[a-zA-Z0-9_.-]{20,}", re.IGNORECASE),
            re.compile(r"\bsecret\s*:?\s*[a-zA-Z0-9_-]{20,}", re.IGNORECASE),
            re.compile(r"\bbearer\s+[a-zA-Z0-9_.-]{10,}", re.IGNORECASE),
        ),
    ),
    SensitivePattern(
        "personal_diary",
        "Personal diary",
        PrivacyLevel.PRIVATE,
        (re.compile(r"내\s*일기"), re.compile(r"일기\s*(써|작성|정리)"), re.compile(r"개인\s*메모")),
    ),
    SensitivePattern(
        "personal_photo",
        "Personal photos",
        PrivacyLevel.SENSITIVE,
        (
            re.compile(r"(C:|/Users/|/home/|~/)\S*\.(jpg|jpeg|png|gif|heic)", re.IGNORECASE),
            re.compile(r"셀카|셀피|사적인\s*사진"),
        ),
    ),
    SensitivePattern(
        "personal_location",
        "Location data",
        PrivacyLevel.PRIVATE,
        (re.compile(r"내\s*(현재\s*)?위치"), re.compile(r"집\s*주소\s*:?\s*.+"), re.compile(r"GPS\s*좌표")),
    ),
    SensitivePattern(
        "business_confidential",
        "Confidential business info",
        PrivacyLevel.SENSITIVE,
        (
            re.compile(r"기밀|\bconfidential\b|비밀\s*유지", re.IGNORECASE),
            re.compile(r"영업\s*비밀"),
            re.compile(r"내부\s*문서|사내\s*자료"),
            re.compile(r"\bNDA\b|비밀유지계약"),
        ),
    ),
)


@dataclass
class DetectedPattern:
    type: str
    matched_text: str
    masked: str


@dataclass
class PrivacyResult:
    level: PrivacyLevel
    sensitive_types: list[str] = field(default_factory=list)
    detected: list[DetectedPattern] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    reason: str | None = None

    @property
    def is_private(self) -> bool:
        return self.level != PrivacyLevel.PUBLIC

    @property
    def requires_local(self) -> bool:
        """Sensitive content is never sent to a remote provider without consent."""
        return self.level.rank >= PrivacyLevel.SENSITIVE.rank


def classify_privacy(message: str) -> PrivacyResult:
    """Highest privacy level found in ``message``, with masked matches."""
    level = PrivacyLevel.PUBLIC
    types: list[str] = []
    detected: list[DetectedPattern] = []
    labels: list[str] = []

    for sensitive in SENSITIVE_PATTERNS:
        for pattern in sensitive.patterns:
            match = pattern.search(message)
            if not match:
                continue
            text = match.group(0)
            mask = sensitive.mask or _default_mask
            detected.append(DetectedPattern(type=sensitive.type, matched_text=text, masked=mask(text)))
            types.append(sensitive.type)
            labels.append(sensitive.label)
            if sensitive.level.rank > level.rank:
                level = sensitive.level
            # One match per pattern group
            break

    reason = f"Sensitive data detected: {', '.join(labels)}" if types else None
    return PrivacyResult(
        level=level, sensitive_types=types, detected=detected, labels=labels, reason=reason
    )


def mask_sensitive_data(message: str) -> str:
    """Replace every sensitive match with its masked form."""
    masked = message
    for sensitive in SENSITIVE_PATTERNS:
        mask = sensitive.mask or _default_mask
        for pattern in sensitive.patterns:
            masked = pattern.sub(lambda m, mask=mask: mask(m.group(0)), masked)
    return masked


def privacy_warning(result: PrivacyResult) -> str | None:
    """User-facing notice when content has to stay on-device."""
    if not result.requires_local:
        return None
    labels = ", ".join(result.labels)
    if result.level == PrivacyLevel.CRITICAL:
        return (
            "Highly sensitive information detected.\n\n"
            f"Detected: {labels}\n\n"
            "This content is processed on this device only and is not sent to external servers."
        )
    return (
        "Sensitive information detected.\n\n"
        f"Detected: {labels}\n\n"
        "Local processing is recommended to protect your privacy."
    )
