"""
Schema validation for user data written through the storage endpoint.

Unknown fields are dropped; the validated, normalised value is what gets
persisted and cached.
"""

from typing import Any, Dict, List, Optional

from pydantic import AnyUrl, BaseModel, Field, ValidationError

MAX_COST = 10_000_000


class CostItem(BaseModel):
    """A renovation or furnishing line item."""

    category: str = Field(..., min_length=1, max_length=100)
    cost: float = Field(..., ge=0, le=MAX_COST, strict=True)
    description: Optional[str] = Field(default=None, max_length=500)


class DesignInspiration(BaseModel):
    id: int = Field(..., gt=0, strict=True)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    image: Optional[AnyUrl] = None


class UserData(BaseModel):
    """Payload accepted by ``PUT /api/storage``."""

    renovationItems: List[CostItem] = Field(..., max_length=50)
    furnishingItems: List[CostItem] = Field(..., max_length=50)
    designInspirations: List[DesignInspiration] = Field(..., max_length=20)


def format_errors(error: ValidationError) -> List[str]:
    """Flatten pydantic errors into ``"path.to.field: message"`` strings."""
    messages = []
    for err in error.errors():
        path = ".".join(str(part) for part in err["loc"]) or "data"
        messages.append(f"{path}: {err['msg']}")
    return messages


def validate_user_data(data: Any) -> Dict[str, Any]:
    """
    Validate ``data`` against ``UserData``.

    Returns:
        The validated value as plain JSON-compatible data

    Raises:
        ValidationError: If ``data`` does not match the schema
    """
    return UserData.model_validate(data).model_dump(mode="json", exclude_none=True)
