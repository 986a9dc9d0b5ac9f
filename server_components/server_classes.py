from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone


class CardDescriptor(BaseModel):
    """Everything the catalog knows about one card. Never changes once loaded."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pack: str
    card: str
    name: str
    description: str = ""
    icon: Optional[str] = None
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    inputs: Dict[str, Any] = Field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        # shape used by the listing endpoint
        return {
            "pack": self.pack,
            "card": self.card,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
        }


class CardPage(BaseModel):
    success: bool = True
    version: str
    total: int
    page: int
    pageCount: int
    perPage: int
    cards: List[Dict[str, Any]]


class SaveStateRequest(BaseModel):
    apiKey: str
    cardKey: str
    state: str  # JSON-encoded


class AnalyticsRequest(BaseModel):
    apiKey: str
    cardKey: str
    pack: str
    card: str
    events: str  # JSON-encoded object or array of {key, data}


class APIKeyRecord(BaseModel):
    card_key: str
    api_key: str
    issued_at: float


class AnalyticsEvent(BaseModel):
    event_key: str
    data: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
