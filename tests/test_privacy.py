"""Tests for privacy classification."""

from modelgate.gatekeeper.privacy import (
    PrivacyLevel,
    classify_privacy,
    mask_sensitive_data,
    privacy_warning,
)


def test_plain_message_is_public():
    """Ordinary requests carry no privacy flags."""
    for message in ("안녕", "이 글 요약해줘", "what is the capital of France?"):
        result = classify_privacy(message)
        assert result.level == PrivacyLevel.PUBLIC, message
        assert not result.is_private
        assert result.reason is None


def test_password_is_critical():
    """Credentials must stay on-device."""
    result = classify_privacy("my password: hunter2, can you remember it?")
    assert result.level == PrivacyLevel.CRITICAL
    assert result.requires_local
    assert result.sensitive_types == ["auth_password"]


def test_card_number_detected_and_masked():
    """Card numbers are critical and masked in the detection record."""
    result = classify_privacy("charge card 1234-5678-9012-3456 please")
    assert result.level == PrivacyLevel.CRITICAL
    card = next(d for d in result.detected if d.type == "financial_card")
    assert card.masked == "1234-****-****-3456"


def test_health_record_is_private_only():
    """Private data is flagged but may still leave the device."""
    result = classify_privacy("건강 검진 결과 어떻게 봐야 해?")
    assert result.level == PrivacyLevel.PRIVATE
    assert result.is_private
    assert not result.requires_local


def test_confidential_is_sensitive():
    """Confidential business material requires local handling."""
    result = classify_privacy("이 기밀 문서 내용을 정리해줘")
    assert result.level == PrivacyLevel.SENSITIVE
    assert result.requires_local
    assert "Confidential business info" in result.labels


def test_highest_level_wins():
    """Mixed content takes the highest detected level."""
    result = classify_privacy("내 위치 알려주고 비밀번호: abc123 도 저장해")
    assert result.level == PrivacyLevel.CRITICAL
    assert set(result.sensitive_types) == {"auth_password", "personal_location"}


def test_mask_sensitive_data():
    """Masking replaces matches in place."""
    masked = mask_sensitive_data("card 1234-5678-9012-3456 ok")
    assert masked == "card 1234-****-****-3456 ok"


def test_privacy_warning():
    """Warnings only for content that must stay local."""
    assert privacy_warning(classify_privacy("hello")) is None
    assert privacy_warning(classify_privacy("건강 검진 결과")) is None
    assert "Highly sensitive" in privacy_warning(classify_privacy("password=letmein"))
    assert "Sensitive information" in privacy_warning(classify_privacy("confidential roadmap"))
