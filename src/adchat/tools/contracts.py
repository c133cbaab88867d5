"""Static tool catalog: one input model per tool, grouped by closed category."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ToolCategory(str, Enum):
    CREATIVE = "creative"
    COPY = "copy"
    TARGETING = "targeting"
    CAMPAIGN_MANAGEMENT = "campaign_management"
    GOAL = "goal"


ALL_CATEGORIES: frozenset[ToolCategory] = frozenset(ToolCategory)


class MutationKind(str, Enum):
    NONE = "none"
    IMAGE_EDIT = "image_edit"
    IMAGE_REGENERATE = "image_regenerate"
    COPY_EDIT = "copy_edit"


VariationIndex = Annotated[int, Field(ge=0, le=5, description="Zero-based variation index")]


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# -- creative --------------------------------------------------------------


class GenerateVariationsInput(_ToolInput):
    prompt: str = Field(min_length=3)
    count: int = Field(default=3, ge=1, le=6)
    style: str | None = None
    campaignId: str | None = None


class SelectVariationInput(_ToolInput):
    variationIndex: VariationIndex
    campaignId: str | None = None


class EditVariationInput(_ToolInput):
    imageUrl: str
    variationIndex: VariationIndex
    prompt: str = Field(min_length=3)
    campaignId: str | None = None


class RegenerateVariationInput(_ToolInput):
    variationIndex: VariationIndex
    originalPrompt: str = Field(min_length=1)
    campaignId: str | None = None


class DeleteVariationInput(_ToolInput):
    variationIndex: VariationIndex
    campaignId: str | None = None


# -- copy ------------------------------------------------------------------


class CopyFields(_ToolInput):
    primaryText: str | None = None
    headline: str | None = None
    description: str | None = None


class GenerateCopyVariationsInput(_ToolInput):
    prompt: str = Field(min_length=3)
    count: int = Field(default=3, ge=1, le=6)
    preferEmojis: bool = False
    campaignId: str | None = None


class SelectCopyVariationInput(_ToolInput):
    variationIndex: VariationIndex
    campaignId: str | None = None


class EditCopyInput(_ToolInput):
    variationIndex: VariationIndex
    prompt: str = Field(min_length=3)
    current: CopyFields = Field(default_factory=CopyFields)
    preferEmojis: bool = False
    campaignId: str | None = None


class RefineFieldInput(_ToolInput):
    variationIndex: VariationIndex
    currentText: str = ""
    prompt: str = Field(min_length=3)
    campaignId: str | None = None


# -- targeting -------------------------------------------------------------


class LocationInput(_ToolInput):
    name: str = Field(min_length=1)
    type: Literal["city", "region", "country", "radius"] = "city"
    mode: Literal["include", "exclude"] = "include"
    radius: float | None = Field(default=None, gt=0)


class AddLocationsInput(_ToolInput):
    locations: list[LocationInput] = Field(min_length=1)
    campaignId: str | None = None


class RemoveLocationInput(_ToolInput):
    name: str = Field(min_length=1)
    campaignId: str | None = None


class ClearLocationsInput(_ToolInput):
    reason: str | None = None
    campaignId: str | None = None


# -- campaign management ---------------------------------------------------


class CreateAdInput(_ToolInput):
    name: str | None = None
    campaignId: str | None = None


class RenameAdInput(_ToolInput):
    adId: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=120)


class DuplicateAdInput(_ToolInput):
    adId: str = Field(min_length=1)
    name: str | None = None


class DeleteAdInput(_ToolInput):
    adId: str = Field(min_length=1)


# -- goal ------------------------------------------------------------------


class SetupGoalInput(_ToolInput):
    goalType: Literal["leads", "calls", "website-visits"]
    conversionMethod: str | None = None
    campaignId: str | None = None


@dataclass(frozen=True, slots=True)
class ToolContract:
    name: str
    category: ToolCategory
    description: str
    input_model: type[BaseModel]
    requires_confirmation: bool = False
    mutation: MutationKind = MutationKind.NONE

    def parameters(self) -> dict[str, Any]:
        return self.input_model.model_json_schema()

    def validate_input(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Return normalized arguments; raises ``pydantic.ValidationError``."""
        return self.input_model.model_validate(arguments).model_dump(exclude_none=True)


CATALOG: tuple[ToolContract, ...] = (
    ToolContract(
        "generateVariations",
        ToolCategory.CREATIVE,
        "Generate a fresh set of ad creative image variations from a prompt.",
        GenerateVariationsInput,
    ),
    ToolContract(
        "selectVariation",
        ToolCategory.CREATIVE,
        "Select one creative variation as the active image.",
        SelectVariationInput,
    ),
    ToolContract(
        "editVariation",
        ToolCategory.CREATIVE,
        "Edit an existing creative image following the user's instruction.",
        EditVariationInput,
        mutation=MutationKind.IMAGE_EDIT,
    ),
    ToolContract(
        "regenerateVariation",
        ToolCategory.CREATIVE,
        "Regenerate ONE creative variation with a fresh take.",
        RegenerateVariationInput,
        mutation=MutationKind.IMAGE_REGENERATE,
    ),
    ToolContract(
        "deleteVariation",
        ToolCategory.CREATIVE,
        "Remove a creative variation.",
        DeleteVariationInput,
    ),
    ToolContract(
        "generateCopyVariations",
        ToolCategory.COPY,
        "Generate ad copy variations (primary text, headline, description).",
        GenerateCopyVariationsInput,
    ),
    ToolContract(
        "selectCopyVariation",
        ToolCategory.COPY,
        "Select one copy variation as the active copy.",
        SelectCopyVariationInput,
    ),
    ToolContract(
        "editCopy",
        ToolCategory.COPY,
        "Rewrite primary text, headline and description of an existing copy variation.",
        EditCopyInput,
        mutation=MutationKind.COPY_EDIT,
    ),
    ToolContract(
        "refineHeadline",
        ToolCategory.COPY,
        "Rewrite only the headline of a copy variation.",
        RefineFieldInput,
        mutation=MutationKind.COPY_EDIT,
    ),
    ToolContract(
        "refinePrimaryText",
        ToolCategory.COPY,
        "Rewrite only the primary text of a copy variation.",
        RefineFieldInput,
        mutation=MutationKind.COPY_EDIT,
    ),
    ToolContract(
        "refineDescription",
        ToolCategory.COPY,
        "Rewrite only the description of a copy variation.",
        RefineFieldInput,
        mutation=MutationKind.COPY_EDIT,
    ),
    ToolContract(
        "addLocations",
        ToolCategory.TARGETING,
        "Add one or more locations to include in or exclude from targeting.",
        AddLocationsInput,
        requires_confirmation=True,
    ),
    ToolContract(
        "removeLocation",
        ToolCategory.TARGETING,
        "Remove a single location from targeting.",
        RemoveLocationInput,
    ),
    ToolContract(
        "clearLocations",
        ToolCategory.TARGETING,
        "Remove every targeted location.",
        ClearLocationsInput,
        requires_confirmation=True,
    ),
    ToolContract(
        "createAd",
        ToolCategory.CAMPAIGN_MANAGEMENT,
        "Create a new draft ad in the campaign.",
        CreateAdInput,
    ),
    ToolContract(
        "renameAd",
        ToolCategory.CAMPAIGN_MANAGEMENT,
        "Rename an ad.",
        RenameAdInput,
    ),
    ToolContract(
        "duplicateAd",
        ToolCategory.CAMPAIGN_MANAGEMENT,
        "Duplicate an ad.",
        DuplicateAdInput,
    ),
    ToolContract(
        "deleteAd",
        ToolCategory.CAMPAIGN_MANAGEMENT,
        "Delete an ad.",
        DeleteAdInput,
    ),
    ToolContract(
        "setupGoal",
        ToolCategory.GOAL,
        "Configure the campaign goal and how conversions are collected.",
        SetupGoalInput,
    ),
)
