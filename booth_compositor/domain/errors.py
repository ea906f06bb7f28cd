# booth_compositor/domain/errors.py
from typing import List, Sequence, Tuple


class CompositorError(Exception):
    """Base class for every error raised by the compositing pipeline."""


class NotFound(CompositorError, LookupError):
    pass


class TemplateNotFound(NotFound):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Unknown frame template '{template_id}'")


class ThemeNotFound(NotFound):
    def __init__(self, template_id: str, theme_id: str):
        self.template_id = template_id
        self.theme_id = theme_id
        super().__init__(f"Unknown theme '{theme_id}' for template '{template_id}'")


class RegionMapError(CompositorError, ValueError):
    """The region map failed validation."""


class AssetLoadTimeout(CompositorError):
    """
    Raised when the asset barrier times out. Not fatal: it carries whatever
    finished loading so the session can continue with partial assets.
    """

    def __init__(self, incomplete: Sequence[str], loaded: dict, timeout: float):
        self.incomplete = list(incomplete)
        self.loaded = loaded
        self.timeout = timeout
        super().__init__(f"{len(self.incomplete)} asset(s) still loading after {timeout:.1f}s: {', '.join(self.incomplete)}")


class CaptureFailed(CompositorError):
    def __init__(self, tier: str, reason: str):
        self.tier = tier
        self.reason = reason
        super().__init__(f"Capture at tier '{tier}' failed: {reason}")


class CaptureExhausted(CompositorError):
    """Every tier of a fallback ladder failed. Terminal for the session."""

    kind = "CaptureExhausted"

    def __init__(self, ladder: str, attempts: List[Tuple[str, str]]):
        self.ladder = ladder
        self.attempts = attempts
        tried = ", ".join(name for name, _ in attempts)
        super().__init__(f"All capture tiers failed for '{ladder}' (tried: {tried})")


class CaptureCancelled(CompositorError):
    """The caller stopped waiting; no further tiers are drawn."""

    kind = "CaptureCancelled"

    def __init__(self, session_id: str, next_tier: str):
        self.session_id = session_id
        self.next_tier = next_tier
        super().__init__(f"Session {session_id} cancelled before tier '{next_tier}'")


class SessionStateError(CompositorError, RuntimeError):
    pass
