"""Clinical feature extraction.

Turns a PatientRiskInput into the boolean/categorical flags consumed by the
risk model. Pure and total: unknown or missing values fall back to
clinically conservative defaults instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from mobility_engine.patients.schemas import PatientRiskInput


class MobilityLevel(StrEnum):
    BEDBOUND = "bedbound"
    CHAIR_BOUND = "chair_bound"
    STANDING_ASSIST = "standing_assist"
    WALKING_ASSIST = "walking_assist"
    INDEPENDENT = "independent"


class CognitiveStatus(StrEnum):
    NORMAL = "normal"
    MILD_IMPAIRMENT = "mild_impairment"
    DELIRIUM_DEMENTIA = "delirium_dementia"


class LevelOfCare(StrEnum):
    ICU = "icu"
    STEPDOWN = "stepdown"
    WARD = "ward"
    REHAB = "rehab"


class BaselineFunction(StrEnum):
    INDEPENDENT = "independent"
    WALKER = "walker"
    DEPENDENT = "dependent"


# Ordered: the first category with a matching keyword wins
ADMISSION_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "neuro",
        (
            "stroke", "cva", "intracranial hemorrhage", "ich", "tbi", "traumatic brain injury",
            "seizure", "epilepsy", "meningitis", "encephalitis", "spinal cord", "guillain",
        ),
    ),
    (
        "medical_pulm",
        (
            "pneumonia", "copd", "asthma", "respiratory failure", "pulmonary embolism", "pe",
            "pneumothorax", "pleural effusion", "lung",
        ),
    ),
    (
        "cardiac",
        (
            "heart failure", "chf", "mi", "myocardial infarction", "stemi", "nstemi", "cardiomyopathy",
            "arrhythmia", "atrial fibrillation", "afib", "cardiac arrest", "pericarditis", "aortic", "valve",
        ),
    ),
    (
        "postop",
        (
            "post-op", "postoperative", "surgery", "surgical", "appendectomy", "cholecystectomy",
            "laparoscopy", "bowel resection", "hernia repair",
        ),
    ),
    (
        "ortho",
        (
            "orthopedic", "hip fracture", "femur fracture", "spine", "vertebral", "joint replacement",
            "knee replacement", "hip replacement", "fracture", "dislocation", "amputation",
        ),
    ),
    (
        "oncology",
        ("cancer", "malignancy", "tumor", "leukemia", "lymphoma", "metastasis", "chemotherapy", "radiation"),
    ),
    (
        "sepsis",
        (
            "sepsis", "septic shock", "bacteremia", "infection", "cellulitis", "abscess", "osteomyelitis",
            "uti", "c diff", "mrsa",
        ),
    ),
    (
        "trauma",
        ("trauma", "mva", "motor vehicle", "fall", "assault", "gunshot", "stab", "blunt trauma", "polytrauma"),
    ),
    (
        "medical_gi",
        (
            "gi bleed", "gastrointestinal", "bleeding", "bowel obstruction", "pancreatitis", "liver",
            "hepatic", "cirrhosis", "colitis", "crohns",
        ),
    ),
    (
        "medical_renal",
        (
            "kidney", "renal", "dialysis", "acute kidney injury", "aki", "chronic kidney disease", "ckd",
            "urinary retention",
        ),
    ),
    (
        "medical_endo",
        ("diabetes", "diabetic ketoacidosis", "dka", "thyroid", "hyperthyroid", "hypothyroid", "adrenal"),
    ),
)
DEFAULT_ADMISSION_CATEGORY = "general_medical"

SEDATIVE_TOKENS = frozenset({
    "lorazepam", "diazepam", "alprazolam", "midazolam", "clonazepam", "zolpidem", "eszopiclone",
    "temazepam", "quetiapine", "haloperidol", "olanzapine", "trazodone", "morphine", "hydromorphone",
    "fentanyl", "oxycodone", "methadone", "propofol", "dexmedetomidine", "gabapentin",
})
ANTICOAGULANT_TOKENS = frozenset({
    "heparin", "enoxaparin", "fondaparinux", "apixaban", "rivaroxaban", "warfarin", "dabigatran",
})
STEROID_TOKENS = frozenset({"prednisone", "methylprednisolone", "dexamethasone", "hydrocortisone"})


@dataclass(frozen=True)
class PatientFeatureFlags:
    """Derived risk flags for one patient.

    Boolean flags are addressed by the names used in the weight tables
    (e.g. "age_80+", "no_prophylaxis") through is_set().
    """

    age: int
    mobility: MobilityLevel
    cognition: CognitiveStatus
    level_of_care: LevelOfCare
    admission_category: str
    bmi: float | None
    flags: frozenset[str]

    def is_set(self, name: str) -> bool:
        return name in self.flags

    def with_reference_mobility(self) -> PatientFeatureFlags:
        """Same patient, fully mobile and never immobilized."""
        return replace(
            self,
            mobility=MobilityLevel.INDEPENDENT,
            flags=self.flags - {"immobile_ge3"},
        )


def _coerce(enum_cls, value: str | None, default):
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default


def normalize_level_of_care(value: str | None) -> LevelOfCare:
    if value in ("step_down", "step-down"):
        return LevelOfCare.STEPDOWN
    return _coerce(LevelOfCare, value, LevelOfCare.WARD)


def normalize_mobility(value: str | None) -> MobilityLevel:
    return _coerce(MobilityLevel, value, MobilityLevel.BEDBOUND)


def normalize_cognition(value: str | None) -> CognitiveStatus:
    return _coerce(CognitiveStatus, value, CognitiveStatus.NORMAL)


def categorize_admission_text(diagnosis: str | None) -> str:
    """Map free-text admission diagnosis to an admission category."""
    text = (diagnosis or "").lower()
    if not text:
        return DEFAULT_ADMISSION_CATEGORY
    for category, keywords in ADMISSION_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return DEFAULT_ADMISSION_CATEGORY


def determine_admission_category(patient: PatientRiskInput) -> str:
    """Structured admission flags win over text inference."""
    structured = (
        (patient.is_cardiac_admission, "cardiac"),
        (patient.is_neuro_admission, "neuro"),
        (patient.is_orthopedic, "ortho"),
        (patient.is_oncology, "oncology"),
        (patient.is_postoperative, "postop"),
        (patient.is_trauma_admission, "trauma"),
        (patient.is_sepsis, "sepsis"),
    )
    for flag, category in structured:
        if flag:
            return category
    return categorize_admission_text(patient.admission_diagnosis)


def bucket_medications(patient: PatientRiskInput) -> tuple[bool, bool, bool]:
    """Classify medications into (sedating, anticoagulant, steroid).

    If any structured medication flag is supplied the structured values are
    used as-is; otherwise medication names are matched against token sets.
    """
    if patient.has_structured_medication_flags:
        return (
            bool(patient.on_sedating_medications),
            bool(patient.on_anticoagulants),
            bool(patient.on_steroids),
        )

    lowered = [med.lower() for med in patient.medications]

    def _any_token(tokens: frozenset[str]) -> bool:
        return any(token in med for med in lowered for token in tokens)

    return _any_token(SEDATIVE_TOKENS), _any_token(ANTICOAGULANT_TOKENS), _any_token(STEROID_TOKENS)


def compute_bmi(weight_kg: float | None, height_cm: float | None) -> float | None:
    if not weight_kg or not height_cm:
        return None
    height_m = height_cm / 100.0
    return weight_kg / (height_m * height_m)


def extract_features(patient: PatientRiskInput) -> PatientFeatureFlags:
    """Derive risk-model flags from a patient snapshot."""
    comorbidities = {c.strip().lower() for c in patient.comorbidities}
    text_category = categorize_admission_text(patient.admission_diagnosis)
    admission_category = determine_admission_category(patient)
    level_of_care = normalize_level_of_care(patient.level_of_care)
    mobility = normalize_mobility(patient.mobility_status)
    cognition = normalize_cognition(patient.cognitive_status)
    baseline = _coerce(BaselineFunction, patient.baseline_function, BaselineFunction.INDEPENDENT)
    bmi = compute_bmi(patient.weight_kg, patient.height_cm)
    sedating, anticoagulant, steroids = bucket_medications(patient)

    has_devices = bool(patient.devices) or any(
        (patient.has_foley_catheter, patient.has_central_line, patient.has_feeding_tube, patient.has_ventilator)
    )

    candidates: dict[str, bool] = {
        "age_65+": patient.age >= 65,
        "age_70+": patient.age >= 70,
        "age_80+": patient.age >= 80,
        "icu": level_of_care == LevelOfCare.ICU,
        "stepdown": level_of_care == LevelOfCare.STEPDOWN,
        "malnutrition": patient.has_malnutrition or "malnutrition" in comorbidities,
        "low_albumin": patient.albumin_low,
        "obesity": patient.has_obesity or "obesity" in comorbidities or (bmi is not None and bmi >= 30),
        "diabetes": patient.has_diabetes or "diabetes" in comorbidities,
        "neuropathy": patient.has_neuropathy or "neuropathy" in comorbidities,
        "parkinson": patient.has_parkinson or "parkinson" in comorbidities,
        # Pulmonary admissions also set the stroke flag in the deployed calculator
        "stroke": (
            patient.has_stroke_history
            or "stroke" in comorbidities
            or patient.is_neuro_admission
            or text_category in ("neuro", "medical_pulm")
        ),
        "walker_baseline": baseline == BaselineFunction.WALKER,
        "dependent_baseline": baseline == BaselineFunction.DEPENDENT,
        "cog_mild": cognition == CognitiveStatus.MILD_IMPAIRMENT,
        "cog_delirium": cognition == CognitiveStatus.DELIRIUM_DEMENTIA,
        "active_cancer": (
            patient.has_active_cancer
            or "active_cancer" in comorbidities
            or patient.is_oncology
            or text_category == "oncology"
        ),
        "history_vte": patient.has_vte_history or "history_vte" in comorbidities,
        "postop": patient.is_postoperative or text_category == "postop",
        "trauma": patient.is_trauma_admission or text_category == "trauma",
        "immobile_ge3": patient.days_immobile >= 3,
        "no_prophylaxis": not patient.on_vte_prophylaxis,
        "sedating_meds": sedating,
        "on_anticoagulant": anticoagulant,
        "on_steroids": steroids,
        "devices": has_devices,
        "moisture": patient.incontinent,
        "orthopedic": admission_category == "ortho",
    }

    return PatientFeatureFlags(
        age=patient.age,
        mobility=mobility,
        cognition=cognition,
        level_of_care=level_of_care,
        admission_category=admission_category,
        bmi=bmi,
        flags=frozenset(name for name, value in candidates.items() if value),
    )
