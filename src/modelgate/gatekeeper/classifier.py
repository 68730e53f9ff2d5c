"""
Gatekeeper classifier.

Decides per request whether a message can be answered on-device or must be
delegated to a remote model. Two implementations share one interface:

- LocalClassifier: asks the small local model for a JSON decision
- RuleBasedClassifier: deterministic pattern scoring, no model needed

Classification never raises. Unparseable or unavailable output degrades to
the conservative decision (medium, cloud).
"""

import json
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from modelgate.core.errors import ClassifierError, ProviderError
from modelgate.core.logging import get_logger
from modelgate.llm.base import LLMConfig, LLMProvider
from modelgate.llm.local import strip_thinking

logger = get_logger("gatekeeper.classifier")


class Category(Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"
    SPECIALIZED = "specialized"


class Target(Enum):
    LOCAL = "local"
    CLOUD = "cloud"


@dataclass
class RoutingDecision:
    """Per-request triage result. Logged, never persisted."""

    category: Category
    target: Target
    confidence: float
    reason: str
    tool_needed: str | None = None

    @property
    def answer_locally(self) -> bool:
        return self.category == Category.SIMPLE and self.target == Target.LOCAL


def conservative_decision(reason: str = "classification fallback") -> RoutingDecision:
    return RoutingDecision(
        category=Category.MEDIUM,
        target=Target.CLOUD,
        confidence=0.5,
        reason=reason,
    )


class Classifier(ABC):
    @abstractmethod
    async def classify(self, message: str) -> RoutingDecision:
        ...


ROUTING_PROMPT = """You are a message router. Classify the user message and respond ONLY with JSON:

{
  "category": "simple|medium|complex|specialized",
  "tool_needed": "calendar|file|search|email|browser|none",
  "target_llm": "local|cloud",
  "confidence": 0.0-1.0,
  "reason": "brief reason"
}

Rules:
- simple: greetings, time, weather, yes/no questions -> local
- medium: schedule, file search, basic lookup -> cloud (needs tool)
- complex: code, analysis, math, translation, long text -> cloud
- specialized: legal, medical, expert domain -> cloud

/no_think"""

JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_object(content: str) -> dict:
    """Pull the single JSON object out of a small model's reply."""
    match = JSON_OBJECT.search(strip_thinking(content))
    if not match:
        raise ClassifierError(f"No JSON object in output: {content[:100]!r}")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ClassifierError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassifierError("JSON output is not an object")
    return data


def parse_routing_decision(content: str) -> RoutingDecision:
    """Parse the local model's JSON reply into a RoutingDecision.

    Raises:
        ClassifierError: output is not a JSON object with a known category
    """
    data = extract_json_object(content)

    try:
        category = Category(str(data.get("category", "")).strip().lower())
    except ValueError as e:
        raise ClassifierError(f"Unknown category: {data.get('category')!r}") from e

    target = Target.LOCAL if str(data.get("target_llm", "")).strip().lower() == "local" else Target.CLOUD

    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5

    tool = data.get("tool_needed")
    if not tool or tool == "none":
        tool = None

    return RoutingDecision(
        category=category,
        target=target,
        confidence=min(1.0, max(0.0, confidence)),
        reason=str(data.get("reason", "")),
        tool_needed=tool,
    )


class LocalClassifier(Classifier):
    """Classification through the on-device model."""

    def __init__(self, provider: LLMProvider, model: str, timeout: float = 15.0):
        self.provider = provider
        self.model = model
        self.timeout = timeout

    async def classify(self, message: str) -> RoutingDecision:
        try:
            response = await self.provider.complete(
                [{"role": "user", "content": message}],
                LLMConfig(
                    model=self.model,
                    max_tokens=256,
                    temperature=0.1,
                    system_prompt=ROUTING_PROMPT,
                    timeout=self.timeout,
                ),
            )
            decision = parse_routing_decision(response.content)
        except (ProviderError, ClassifierError) as e:
            logger.warning(f"Classification failed, routing to cloud: {e}")
            return conservative_decision()

        logger.info(
            f"Classified as {decision.category.value}/{decision.target.value} "
            f"({decision.confidence:.2f}): {decision.reason}"
        )
        return decision


# Rule-based complexity scoring

SIMPLE_PATTERNS = [
    re.compile(r"^(안녕|ㅎㅇ|하이|헬로|hi\b|hello|hey)", re.IGNORECASE),
    re.compile(r"^(네|응|ㅇㅇ|ㅇㅋ|ok\b|okay|yes\b|no\b)", re.IGNORECASE),
    re.compile(r"^(뭐해|뭐하니|뭐해요)"),
    re.compile(r"^(ㅋ+|ㅎ+|lol|haha)", re.IGNORECASE),
    re.compile(r"^(고마워|감사|땡큐|thanks|thx)", re.IGNORECASE),
    re.compile(r"^(잘가|바이|bye)", re.IGNORECASE),
]

ANALYSIS_PATTERNS = [
    re.compile(r"분석|비교|설명"),
    re.compile(r"왜\s*.+(인가|인지|야)"),
    re.compile(r"어떻게\s*.+(하는|해야)"),
    re.compile(r"차이점|차이가|다른\s*점"),
    re.compile(r"장단점|장점.*단점|pros.*cons", re.IGNORECASE),
    re.compile(r"요약|정리해"),
    re.compile(r"평가|리뷰|검토"),
    re.compile(r"\b(analy[sz]e|compare|explain|summari[sz]e|review)\b", re.IGNORECASE),
]

CODE_PATTERNS = [
    re.compile(r"```[\s\S]*```"),
    re.compile(r"function\s+\w+|const\s+\w+|let\s+\w+|var\s+\w+"),
    re.compile(r"class\s+\w+|import\s+.*from"),
    re.compile(r"def\s+\w+|async\s+def"),
    re.compile(r"<\w+>.*</\w+>"),
    re.compile(r"SELECT\s+.*FROM|INSERT\s+INTO", re.IGNORECASE),
    re.compile(r"코드\s*(작성|짜|만들|수정|리팩토링)"),
    re.compile(r"버그\s*(수정|찾|고쳐)"),
    re.compile(r"프로그래밍|개발|구현"),
    re.compile(r"알고리즘|자료구조|시간복잡도"),
    re.compile(r"\b(API|REST|GraphQL|SDK)\b", re.IGNORECASE),
]

CREATIVE_PATTERNS = [
    re.compile(r"글\s*(써|작성|만들)"),
    re.compile(r"시\s*(써|지어|만들)"),
    re.compile(r"소설|이야기|스토리"),
    re.compile(r"에세이|보고서|논문"),
    re.compile(r"대본|시나리오|각본"),
    re.compile(r"노래\s*가사|작사"),
    re.compile(r"블로그|포스트|게시글"),
    re.compile(r"\b(write|draft)\s+(a|an|the)?\s*(story|essay|poem|report|blog)", re.IGNORECASE),
]

EXPERT_DOMAIN_PATTERNS = [
    re.compile(r"법률|법령|조항|판례|소송|계약서"),
    re.compile(r"진단|처방|증상|치료|수술|의학"),
    re.compile(r"투자|주식|펀드|채권|파생상품|포트폴리오"),
    re.compile(r"세금|세무|회계|재무제표|손익계산"),
    re.compile(r"아키텍처|시스템\s*설계|인프라|클라우드"),
    re.compile(r"머신러닝|딥러닝|AI\s*모델|신경망", re.IGNORECASE),
    re.compile(r"논문|학술|연구|가설|실험"),
    re.compile(r"\b(legal|lawsuit|contract|diagnos\w*|prescription|tax|portfolio)\b", re.IGNORECASE),
]

LONG_CONTEXT_CHARS = 500


@dataclass
class ComplexityFactors:
    word_count: int
    has_code: bool
    has_multiple_questions: bool
    has_analysis_request: bool
    has_comparison_request: bool
    has_creative_request: bool
    has_expert_domain: bool
    has_simple_greeting: bool
    has_long_context: bool


def extract_factors(message: str) -> ComplexityFactors:
    stripped = message.strip()
    return ComplexityFactors(
        word_count=len(message.split()),
        has_code=any(p.search(message) for p in CODE_PATTERNS),
        has_multiple_questions=len(re.findall(r"\?|？", message)) > 1,
        has_analysis_request=any(p.search(message) for p in ANALYSIS_PATTERNS),
        has_comparison_request=bool(re.search(r"비교|차이|\bvs\b|versus", message, re.IGNORECASE)),
        has_creative_request=any(p.search(message) for p in CREATIVE_PATTERNS),
        has_expert_domain=any(p.search(message) for p in EXPERT_DOMAIN_PATTERNS),
        has_simple_greeting=any(p.search(stripped) for p in SIMPLE_PATTERNS),
        has_long_context=len(message) > LONG_CONTEXT_CHARS,
    )


def complexity_score(factors: ComplexityFactors) -> int:
    """Score 1-5; 1 is a greeting or a trivially short question."""
    if factors.has_simple_greeting and factors.word_count < 10:
        return 1
    if factors.word_count < 5 and not factors.has_code and not factors.has_expert_domain:
        return 1

    score = 2.0
    if factors.has_code:
        score += 2
    if factors.has_expert_domain:
        score += 2
    if factors.has_creative_request:
        score += 1
    if factors.has_analysis_request or factors.has_comparison_request:
        score += 1
    if factors.has_multiple_questions:
        score += 1
    if factors.has_long_context:
        score += 1
    if factors.word_count > 20:
        score += 0.5
    if factors.word_count > 50:
        score += 0.5

    # Half rounds up
    return min(5, max(1, math.floor(score + 0.5)))


class RuleBasedClassifier(Classifier):
    """Deterministic classifier used when no local runtime is configured."""

    async def classify(self, message: str) -> RoutingDecision:
        return self.classify_sync(message)

    def classify_sync(self, message: str) -> RoutingDecision:
        factors = extract_factors(message)
        score = complexity_score(factors)

        if score <= 1:
            decision = RoutingDecision(Category.SIMPLE, Target.LOCAL, 0.9, "simple greeting or short question")
        elif score == 2:
            decision = RoutingDecision(Category.MEDIUM, Target.CLOUD, 0.7, "general request")
        elif score == 3 or not factors.has_expert_domain:
            decision = RoutingDecision(Category.COMPLEX, Target.CLOUD, 0.7, _reasons(factors))
        else:
            decision = RoutingDecision(Category.SPECIALIZED, Target.CLOUD, 0.8, _reasons(factors))

        logger.debug(f"Rule-based score {score}: {decision.category.value}")
        return decision


def _reasons(factors: ComplexityFactors) -> str:
    reasons = []
    if factors.has_code:
        reasons.append("code/technical")
    if factors.has_expert_domain:
        reasons.append("expert domain")
    if factors.has_analysis_request:
        reasons.append("analysis request")
    if factors.has_comparison_request:
        reasons.append("comparison request")
    if factors.has_creative_request:
        reasons.append("creative request")
    if factors.has_multiple_questions:
        reasons.append("multiple questions")
    if factors.has_long_context:
        reasons.append("long context")
    return ", ".join(reasons) if reasons else "complex question"
