from pydantic import BaseModel, Field
from typing import List, Optional

class CompositeRequest(BaseModel):
    session_id: Optional[str] = None
    template_id: str = "frame4x6"
    theme_id: Optional[str] = "classic"

    # Index-aligned with region position; null leaves the slot empty.
    # Local paths, URLs or base64 (data URLs supported)
    photos: List[Optional[str]] = Field(default_factory=list)

    # Upload archive/delivery tiers; when false the encoded tiers are returned inline
    deliver: bool = True
