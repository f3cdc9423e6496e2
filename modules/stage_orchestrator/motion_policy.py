"""
Motion engine selection.

With `motion_engine = auto`, scenes take the premium engine while the job's
projected credit total stays below a configurable threshold, and the economy
engine afterwards. The projection includes the scenes already assigned in
this pass, so a single stage cannot overrun the threshold by fanning out.
"""

from typing import Callable, Collection, List, Optional

from shared.config import settings


class MotionEnginePolicy:
    def __init__(
        self,
        credit_threshold: Optional[int] = None,
        premium_engine: Optional[str] = None,
        economy_engine: Optional[str] = None,
    ):
        self.credit_threshold = (
            credit_threshold if credit_threshold is not None else settings.motion_auto_credit_threshold
        )
        self.premium_engine = premium_engine or settings.motion_premium_engine
        self.economy_engine = economy_engine or settings.motion_economy_engine

    def preferred(self, preference: str, projected_credits: int) -> str:
        if preference != "auto":
            return preference
        if projected_credits < self.credit_threshold:
            return self.premium_engine
        return self.economy_engine

    def _available(self, engine: str, available: Collection[str]) -> Optional[str]:
        if engine in available:
            return engine
        # Degrade to the other tier rather than skipping motion entirely
        for alternative in (self.economy_engine, self.premium_engine):
            if alternative in available:
                return alternative
        return None

    def assign(
        self,
        preference: str,
        scene_count: int,
        credits_used: int,
        available: Collection[str],
        cost_of: Callable[[str], int],
    ) -> List[Optional[str]]:
        """
        Engine per scene, in scene order. None means no engine is configured.

        Args:
            preference: Job's motion_engine setting ("auto" or an engine name)
            scene_count: Scenes that need a motion call
            credits_used: Credits charged to the job so far
            available: Engines with a configured backend
            cost_of: Credit cost per engine
        """
        engines: List[Optional[str]] = []
        projected = credits_used
        for _ in range(scene_count):
            engine = self._available(self.preferred(preference, projected), available)
            engines.append(engine)
            if engine is not None:
                projected += cost_of(engine)
        return engines
