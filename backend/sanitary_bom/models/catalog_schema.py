from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional

from sanitary_bom import config


class CatalogRow(BaseModel):
    """
    One parts-catalog row as loaded from a catalog source.
    Validated once at load time; lookups never touch raw strings again.
    """
    article_no: str = Field(..., min_length=1, description="e.g., 361.045.16.1")
    unit: Literal["PC", "M"] = Field(..., description="PC = count, M = run length")
    description: str = Field(..., min_length=1, description="e.g., bend PE-HD 45G d50 L4.5")
    category: str = Field(..., description="Fixture category, e.g., wash-basin")
    diameter: int = Field(..., description="Nominal class the article is filed under")
    subtype: Optional[str] = Field(
        None, description="Fitting subtype lookup key; None for accessories reachable by article only"
    )

    @field_validator("article_no", "description", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("diameter")
    @classmethod
    def _nominal(cls, value: int) -> int:
        if value not in config.NOMINAL_DIAMETERS:
            raise ValueError(f"diameter {value} is not one of {config.NOMINAL_DIAMETERS}")
        return value

    @field_validator("subtype", mode="before")
    @classmethod
    def _canonical_subtype(cls, value):
        if value is None:
            return None
        text = str(value).strip().lower()
        if not text:
            return None
        if text not in config.CATALOG_SUBTYPES:
            raise ValueError(f"subtype {text!r} is not one of {config.CATALOG_SUBTYPES}")
        return text

    @model_validator(mode="after")
    def _unit_matches_subtype(self) -> "CatalogRow":
        # Runs are priced by length, fittings by piece
        if self.subtype is None:
            return self
        is_run = self.subtype == config.STRAIGHT_RUN_SUBTYPE
        if is_run and self.unit != "M":
            raise ValueError(f"{self.article_no}: straight-run articles must use unit M")
        if not is_run and self.unit != "PC":
            raise ValueError(f"{self.article_no}: {self.subtype} articles must use unit PC")
        return self

# CSV layout accepted by SanitaryCatalog.from_csv:
# article_no,unit,description,category,diameter,subtype
# 361.045.16.1,PC,bend PE-HD 45G d50 L4.5,wash-basin,50,bend
