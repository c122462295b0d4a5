from __future__ import annotations


class LotIntelError(Exception):
    """Base class for failures raised by the lot intelligence pipeline."""


class InputValidationError(LotIntelError, ValueError):
    pass


class LotNotFoundError(LotIntelError, LookupError):
    def __init__(self, lot_id: str, marketplace: str) -> None:
        self.lot_id = lot_id
        self.marketplace = marketplace
        super().__init__(f"Lot {lot_id} not found on {marketplace}")


class MarketplaceUnavailableError(LotIntelError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Marketplace unavailable: {reason}")


class BranchServiceError(LotIntelError):
    """A non-terminal failure inside one pipeline branch.

    The orchestrator converts these into the branch's empty/degraded value.
    """

    def __init__(self, branch: str, reason: str) -> None:
        self.branch = branch
        self.reason = reason
        super().__init__(f"{branch}: {reason}")


class VisionFormatError(BranchServiceError):
    def __init__(self, reason: str) -> None:
        super().__init__("vision_assessment", reason)
