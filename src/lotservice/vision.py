from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lotintel.config import PipelineConfig
from lotintel.data_models import DamageAssessment, ImageExclusion, ImageSelection, Lot
from lotintel.errors import BranchServiceError, VisionFormatError
from lotintel.images import select_images
from lotservice.retry import call_with_retry

logger = logging.getLogger(__name__)

INSPECTION_REGIONS = (
    "front",
    "driver side",
    "passenger side",
    "rear",
    "roof",
    "interior",
    "wheels/tires",
)

SYSTEM_PROMPT = f"""You are a professional automotive damage assessor reviewing salvage auction photos.
Inspect the vehicle systematically, region by region: {", ".join(INSPECTION_REGIONS)}.
For every region state what is visible, or that the region is not shown in the photos.
Be conservative: only report damage you can clearly see. Do not infer damage from the listing.

Respond ONLY with a JSON object with these exact fields:
{{
  "damageAssessment": "systematic description of visible damage, region by region",
  "damageAreas": ["list of damaged region labels"],
  "repairEstimate": "estimated repair cost range in USD",
  "overallCondition": "excellent | good | fair | poor",
  "investmentRecommendation": "buy | analyze | avoid",
  "confidenceLevel": "high | medium | low",
  "keyFindings": ["short findings an auction buyer must know"]
}}"""

NO_IMAGES_CONDITION = "Unable to assess - no valid images"
FORMAT_ERROR_CONDITION = "Unable to assess - unsupported image format"
UNAVAILABLE_CONDITION = "Unable to assess - analysis unavailable"

_CONDITIONS = {"excellent", "good", "fair", "poor"}
_RECOMMENDATIONS = {"buy": "buy", "analyze": "analyze", "avoid": "avoid", "pass": "avoid", "hold": "analyze"}
_CONFIDENCE_SCORES = {"high": 85, "medium": 60, "low": 35}


def _as_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, dict):
        return [f"{k}: {v}" for k, v in value.items()]
    if not isinstance(value, (list, tuple)):
        return [str(value)]
    out: list[str] = []
    for item in value:
        if isinstance(item, dict):
            out.append(", ".join(f"{k}: {v}" for k, v in item.items()))
        elif item is not None and str(item).strip():
            out.append(str(item))
    return out


class VisionReport(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    damage_assessment: str = Field(default="", alias="damageAssessment")
    damage_areas: list[str] = Field(default_factory=list, alias="damageAreas")
    repair_estimate: str = Field(default="", alias="repairEstimate")
    overall_condition: str = Field(default="", alias="overallCondition")
    investment_recommendation: str = Field(default="", alias="investmentRecommendation")
    confidence_level: str = Field(default="", alias="confidenceLevel")
    key_findings: list[str] = Field(default_factory=list, alias="keyFindings")

    @field_validator("damage_areas", "key_findings", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _as_text_list(value)

    @field_validator(
        "damage_assessment", "repair_estimate", "overall_condition",
        "investment_recommendation", "confidence_level", mode="before",
    )
    @classmethod
    def _text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, dict):
            return json.dumps(value, sort_keys=True)
        if isinstance(value, list):
            return "; ".join(_as_text_list(value))
        return str(value)


def report_to_assessment(
    report: VisionReport,
    image_count: int,
    excluded: tuple[ImageExclusion, ...] = (),
) -> DamageAssessment:
    condition = report.overall_condition.strip().lower()
    label = report.confidence_level.strip().lower()
    return DamageAssessment(
        damage_description=report.damage_assessment.strip(),
        damage_areas=tuple(report.damage_areas),
        repair_estimate=report.repair_estimate.strip(),
        overall_condition=condition if condition in _CONDITIONS else "unknown",
        recommendation=_RECOMMENDATIONS.get(report.investment_recommendation.strip().lower(), "analyze"),
        confidence_level=label if label in _CONFIDENCE_SCORES else "unknown",
        confidence=_CONFIDENCE_SCORES.get(label, 50),
        key_findings=tuple(report.key_findings),
        has_images=True,
        image_count=image_count,
        excluded_images=excluded,
    )


def no_images_assessment(excluded: tuple[ImageExclusion, ...] = ()) -> DamageAssessment:
    return DamageAssessment(
        damage_description="No valid still images were available for visual damage assessment.",
        overall_condition=NO_IMAGES_CONDITION,
        recommendation="manual_inspection",
        confidence_level="none",
        confidence=0,
        has_images=False,
        image_count=0,
        excluded_images=excluded,
    )


def format_error_assessment(
    reason: str,
    image_count: int,
    excluded: tuple[ImageExclusion, ...] = (),
) -> DamageAssessment:
    return DamageAssessment(
        damage_description=(
            "The vision model could not read the auction photos in their current format. "
            "Review the images manually before bidding."
        ),
        overall_condition=FORMAT_ERROR_CONDITION,
        recommendation="manual_inspection",
        confidence_level="none",
        confidence=0,
        has_images=True,
        image_count=image_count,
        excluded_images=excluded,
        error=reason,
    )


def unavailable_assessment(reason: str) -> DamageAssessment:
    return DamageAssessment(
        damage_description="AI vision analysis temporarily unavailable.",
        overall_condition=UNAVAILABLE_CONDITION,
        recommendation="manual_inspection",
        confidence_level="none",
        confidence=0,
        has_images=False,
        error=reason,
    )


def _is_image_format_error(exc: Exception) -> bool:
    if not isinstance(exc, openai.BadRequestError):
        return False
    message = str(exc).lower()
    return "image" in message and any(
        marker in message for marker in ("format", "unsupported", "invalid", "could not process")
    )


class VisionDamageAssessor:
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_tokens: int = 900,
        timeout_seconds: float = 45.0,
        retry_backoff_seconds: float = 0.5,
        config: PipelineConfig | None = None,
        client: AsyncOpenAI | None = None,
        max_images: int | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.retry_backoff_seconds = retry_backoff_seconds
        self.config = config or PipelineConfig()
        self.max_images = max_images or self.config.vision_max_images
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)
        self._client = client

    def _user_content(self, lot: Lot, urls: tuple[str, ...]) -> list[dict[str, Any]]:
        mileage = f"{lot.odometer:,} miles" if lot.odometer is not None else "unknown mileage"
        listed = lot.primary_damage or "not stated"
        content: list[dict[str, Any]] = [
            {
                "type": "text",
                "text": (
                    f"Assess this {lot.vehicle} ({mileage}). "
                    f"Listed primary damage: {listed}. {len(urls)} photos attached."
                ),
            }
        ]
        content.extend({"type": "image_url", "image_url": {"url": url, "detail": "high"}} for url in urls)
        return content

    async def assess(self, lot: Lot, selection: ImageSelection | None = None) -> DamageAssessment:
        if selection is None:
            selection = select_images(lot.photo_urls, self.config)
        if not selection.accepted:
            logger.info("No valid images for lot %s (%d excluded); skipping vision call", lot.lot_id, len(selection.excluded))
            return no_images_assessment(selection.excluded)

        if self._client is None:
            raise BranchServiceError("vision_assessment", "vision_not_configured")

        urls = selection.accepted[: self.max_images]
        client = self._client

        async def _request() -> Any:
            return await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self._user_content(lot, urls)},
                ],
                response_format={"type": "json_object"},
                max_tokens=self.max_tokens,
                temperature=0.2,
            )

        try:
            response = await call_with_retry(
                _request, label="vision assessment", backoff_seconds=self.retry_backoff_seconds,
            )
        except openai.OpenAIError as exc:
            if _is_image_format_error(exc):
                logger.warning("Vision model rejected images for lot %s: %s", lot.lot_id, exc)
                raise VisionFormatError(str(exc)) from exc
            raise BranchServiceError("vision_assessment", str(exc)) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise BranchServiceError("vision_assessment", "empty_response")
        try:
            report = VisionReport.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise BranchServiceError("vision_assessment", f"malformed_response: {exc}") from exc

        assessment = report_to_assessment(report, image_count=len(urls), excluded=selection.excluded)
        logger.info(
            "Vision assessment for lot %s: %s condition, %s confidence, %d images",
            lot.lot_id, assessment.overall_condition, assessment.confidence_level, len(urls),
        )
        return assessment

    async def assess_or_degrade(self, lot: Lot) -> DamageAssessment:
        """Like ``assess`` but turns image-format rejections into a degraded report."""
        selection = select_images(lot.photo_urls, self.config)
        try:
            return await self.assess(lot, selection)
        except VisionFormatError as exc:
            count = min(len(selection.accepted), self.max_images)
            return format_error_assessment(exc.reason, count, selection.excluded)
