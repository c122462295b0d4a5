from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PipelineConfig:
    year_window: int = 2
    active_listing_limit: int = 20
    vin_history_limit: int = 50
    comparable_limit: int = 20
    candidate_pool_limit: int = 500
    mileage_tolerance: int = 20_000
    completed_sale_statuses: tuple[str, ...] = ("sold", "pure sale", "sold on approval")

    # Decision engine
    buy_ratio_threshold: float = 0.7
    avoid_ratio_threshold: float = 1.2
    base_confidence: int = 70
    vin_history_confidence_bonus: int = 10
    comparable_confidence_bonus: int = 5
    min_comparables_for_bonus: int = 5
    buy_confidence_bonus: int = 15
    buy_confidence_cap: int = 95
    avoid_confidence_bonus: int = 10
    avoid_confidence_cap: int = 90
    insufficient_data_confidence: int = 50
    buy_max_bid_pct: float = 0.80
    analyze_ceiling_pct: float = 0.90
    competitive_range_pct: float = 0.10

    # Vision
    vision_max_images: int = 4
    supported_image_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp", ".gif")
    video_extensions: tuple[str, ...] = (".mp4", ".mov", ".avi", ".webm", ".m4v", ".mkv", ".wmv", ".flv", ".3gp")
