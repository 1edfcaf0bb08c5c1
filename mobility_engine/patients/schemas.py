"""Patient input schema for risk assessment.

Enumerated clinical fields are kept as free strings: values outside the
known vocabulary are normalized by the feature extractor rather than
rejected here.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class PatientRiskInput(BaseModel):
    """Clinical snapshot of one inpatient."""

    age: int = Field(..., ge=16, le=110, description="Age in years")
    sex: str | None = Field(default=None, description="male, female or other")
    weight_kg: float | None = Field(default=None, gt=0, description="Body weight in kilograms")
    height_cm: float | None = Field(default=None, gt=0, description="Height in centimetres")
    level_of_care: str = Field(default="ward", description="icu, stepdown (or step_down), ward, rehab")
    mobility_status: str = Field(
        default="bedbound",
        description="bedbound, chair_bound, standing_assist, walking_assist, independent",
    )
    cognitive_status: str = Field(default="normal", description="normal, mild_impairment, delirium_dementia")
    days_immobile: int = Field(default=0, ge=0, description="Consecutive days without mobilization")
    admission_diagnosis: str = Field(default="", description="Free-text admission diagnosis")
    comorbidities: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    devices: list[str] = Field(default_factory=list)
    incontinent: bool = False
    albumin_low: bool = False
    baseline_function: str | None = Field(default=None, description="independent, walker, dependent")
    on_vte_prophylaxis: bool = True

    # Structured medication flags. None means "not supplied": fall back to text inference.
    on_sedating_medications: bool | None = None
    on_anticoagulants: bool | None = None
    on_steroids: bool | None = None

    # Structured comorbidity flags
    has_diabetes: bool = False
    has_malnutrition: bool = False
    has_obesity: bool = False
    has_neuropathy: bool = False
    has_parkinson: bool = False
    has_stroke_history: bool = False
    has_active_cancer: bool = False
    has_vte_history: bool = False

    # Structured admission flags
    is_postoperative: bool = False
    is_trauma_admission: bool = False
    is_sepsis: bool = False
    is_cardiac_admission: bool = False
    is_neuro_admission: bool = False
    is_orthopedic: bool = False
    is_oncology: bool = False

    # Structured device flags
    has_foley_catheter: bool = False
    has_central_line: bool = False
    has_feeding_tube: bool = False
    has_ventilator: bool = False

    @field_validator("level_of_care", "mobility_status", "cognitive_status")
    @classmethod
    def normalize_token(cls, value: str) -> str:
        """Lower-case and trim enumerated tokens."""
        return value.strip().lower()

    @field_validator("sex", "baseline_function")
    @classmethod
    def normalize_optional_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None

    @property
    def has_structured_medication_flags(self) -> bool:
        return any(
            flag is not None
            for flag in (self.on_sedating_medications, self.on_anticoagulants, self.on_steroids)
        )
