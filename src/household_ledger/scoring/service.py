"""Category scoring collaborators.

A scorer looks at a draft transaction and may suggest a category natural key
with a confidence in [0, 1]. Scorers never raise for "no idea": they return
None. The categorizer owns the threshold and the Unknown fallback.

Available scorers:
- KeywordScorer: deterministic keyword rules from configuration
- RemoteCategoryScorer: HTTP scoring service (JSON in, JSON out)
- NullScorer: never suggests anything
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from ..schemas.records import CategoryKey, Flow, MajorCategory

if TYPE_CHECKING:
    from ..config import Config, KeywordRule, ScoringConfig
    from ..schemas.records import DraftTransaction

logger = logging.getLogger(__name__)


@dataclass
class CategorySuggestion:
    """A scorer's category suggestion."""

    key: CategoryKey
    confidence: float
    reason: str = ""
    source: str = ""


class CategoryScorer:
    """Interface of a scoring collaborator."""

    name = "base"

    def score(self, draft: DraftTransaction) -> CategorySuggestion | None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullScorer(CategoryScorer):
    """Scorer used when scoring is switched off."""

    name = "off"

    def score(self, draft: DraftTransaction) -> CategorySuggestion | None:
        return None


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


class KeywordScorer(CategoryScorer):
    """
    Keyword rule scorer.

    A rule matches when one of its keywords appears as a whole word in the
    description or notes and the rule's flow equals the draft's flow. The
    highest-priority match wins; confidence is priority / 10.
    """

    name = "keywords"

    def __init__(self, rules: list[KeywordRule]):
        self.rules = []
        for rule in rules:
            try:
                key = CategoryKey(
                    Flow.parse(rule.flow),
                    MajorCategory.parse(rule.major_category),
                    rule.category.strip(),
                    rule.sub_category.strip(),
                )
            except ValueError as e:
                logger.warning("Skipping keyword rule %s: %s", rule.keywords, e)
                continue
            patterns = [re.compile(rf"\b{re.escape(_fold(k))}\b") for k in rule.keywords if k]
            if patterns and key.category and key.sub_category:
                self.rules.append((key, patterns, max(1, min(rule.priority, 10))))

    def score(self, draft: DraftTransaction) -> CategorySuggestion | None:
        text = _fold(" ".join(filter(None, [draft.description, draft.notes])))
        best: tuple[CategoryKey, int, str] | None = None
        for key, patterns, priority in self.rules:
            if key.flow != draft.flow:
                continue
            for pattern in patterns:
                if pattern.search(text):
                    if best is None or priority > best[1]:
                        best = (key, priority, pattern.pattern)
                    break

        if best is None:
            return None
        key, priority, matched = best
        return CategorySuggestion(
            key=key,
            confidence=priority / 10.0,
            reason=f"keyword match {matched}",
            source=self.name,
        )


class RemoteCategoryScorer(CategoryScorer):
    """
    HTTP scoring service client.

    POSTs {description, notes, amount, flow, date} and expects
    {flow, majorCategory, category, subCategory, confidence, reason}.
    Any transport or payload problem yields no suggestion.
    """

    name = "remote"

    def __init__(self, scoring_config: ScoringConfig) -> None:
        self.config = scoring_config

        headers = {}
        if scoring_config.auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in scoring_config.auth_header:
                key, value = scoring_config.auth_header.split(":", 1)
                headers[key.strip()] = value.strip()
            else:
                headers["Authorization"] = scoring_config.auth_header

        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=5.0,
                read=float(scoring_config.timeout_seconds),
                write=10.0,
                pool=5.0,
            ),
            headers=headers,
        )

    def score(self, draft: DraftTransaction) -> CategorySuggestion | None:
        payload = {
            "description": draft.description,
            "notes": draft.notes,
            "amount": str(draft.amount),
            "flow": draft.flow.value,
            "date": draft.date.isoformat(),
        }
        try:
            response = self._client.post(self.config.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning("Scoring request timed out after %ds", self.config.timeout_seconds)
            return None
        except httpx.HTTPStatusError as e:
            logger.error("Scoring service error %s at %s", e.response.status_code, self.config.url)
            return None
        except httpx.RequestError as e:
            logger.error("Scoring request failed: %s (URL: %s)", e, self.config.url)
            return None
        except ValueError:
            logger.error("Scoring service returned invalid JSON")
            return None

        if not isinstance(data, dict) or not data.get("category"):
            return None
        try:
            key = CategoryKey(
                Flow.parse(data.get("flow") or draft.flow),
                MajorCategory.parse(data.get("majorCategory")),
                str(data["category"]).strip(),
                str(data.get("subCategory") or data["category"]).strip(),
            )
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed scoring response: %s", e)
            return None

        return CategorySuggestion(
            key=key,
            confidence=max(0.0, min(confidence, 1.0)),
            reason=str(data.get("reason", "")),
            source=self.name,
        )

    def close(self) -> None:
        """Close HTTP client."""
        self._client.close()

    def __enter__(self) -> RemoteCategoryScorer:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def create_scorer(config: Config) -> CategoryScorer:
    """Build the scorer selected by scoring.mode."""
    mode = config.scoring.mode
    if mode == "remote":
        return RemoteCategoryScorer(config.scoring)
    if mode == "keywords":
        return KeywordScorer(config.scoring.rules)
    return NullScorer()
