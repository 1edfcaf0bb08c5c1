"""Diagnosis and medication adjustment profiles.

Category-keyed immutable tables. Each enumeration is closed: adding a
category without a profile, label, monitoring list and stop-criteria list
fails at import time.
"""

from dataclasses import dataclass
from enum import StrEnum


class DiagnosisCategory(StrEnum):
    CARDIAC = "cardiac"
    PULMONARY = "pulmonary"
    ORTHOPEDIC = "orthopedic"
    NEUROLOGICAL = "neurological"
    ICU_RECOVERY = "icu_recovery"
    DELIRIUM = "delirium"
    FRAIL_ELDERLY = "frail_elderly"
    GENERAL = "general"


class MedicationCategory(StrEnum):
    BETA_BLOCKER = "beta_blocker"
    RATE_CONTROL = "rate_control"
    DIURETIC = "diuretic"
    SEDATING = "sedating"
    INSULIN = "insulin"
    ANTICOAGULANT = "anticoagulant"
    ANTIPARKINSONIAN = "antiparkinsonian"
    NONE = "none"


@dataclass(frozen=True)
class DiagnosisProfile:
    """Cadence/duration redistribution for a diagnosis category.

    resistance_multiplier documents the intended load shift; resistance
    itself is always re-derived from the energy-preserving power.
    """

    resistance_multiplier: float
    rpm_multiplier: float
    duration_multiplier: float
    rationale: str


@dataclass(frozen=True)
class MedicationProfile:
    intensity_multiplier: float
    resistance_focus: bool
    rpm_reduction: int
    duration_reduction: int
    rationale: str
    additional_monitoring: tuple[str, ...] = ()
    additional_stop_criteria: tuple[str, ...] = ()


DIAGNOSIS_PROFILES: dict[DiagnosisCategory, DiagnosisProfile] = {
    DiagnosisCategory.CARDIAC: DiagnosisProfile(
        1.25, 0.80, 1.0,
        "Higher resistance with controlled RPM reduces cardiac stress while maintaining muscle conditioning",
    ),
    DiagnosisCategory.PULMONARY: DiagnosisProfile(
        1.20, 0.85, 1.0,
        "Higher resistance with slower pedaling minimizes respiratory demand while preserving muscle work",
    ),
    DiagnosisCategory.ORTHOPEDIC: DiagnosisProfile(
        0.70, 1.15, 1.25,
        "Lower resistance with more rotations maximizes joint ROM and reduces surgical site stress",
    ),
    DiagnosisCategory.NEUROLOGICAL: DiagnosisProfile(
        0.90, 0.95, 1.15,
        "Moderate resistance with controlled pace supports bilateral coordination and motor relearning",
    ),
    DiagnosisCategory.ICU_RECOVERY: DiagnosisProfile(
        0.60, 0.70, 0.75,
        "Very gentle parameters for post-ICU reconditioning with progressive increase as tolerated",
    ),
    DiagnosisCategory.DELIRIUM: DiagnosisProfile(
        0.75, 0.80, 0.70,
        "Simplified, shorter sessions with consistent parameters to provide structured activity safely",
    ),
    DiagnosisCategory.FRAIL_ELDERLY: DiagnosisProfile(
        0.65, 0.75, 0.80,
        "Low-intensity approach prioritizing safety and fall prevention over conditioning intensity",
    ),
    DiagnosisCategory.GENERAL: DiagnosisProfile(
        1.0, 1.0, 1.0,
        "No diagnosis-specific adjustments recommended. Using evidence-based baseline prescription.",
    ),
}

MEDICATION_PROFILES: dict[MedicationCategory, MedicationProfile] = {
    MedicationCategory.BETA_BLOCKER: MedicationProfile(
        intensity_multiplier=0.90,
        resistance_focus=True,
        rpm_reduction=5,
        duration_reduction=0,
        rationale=(
            "Beta blocker blunts heart rate response. "
            "Focus on resistance/strength training rather than aerobic conditioning."
        ),
        additional_monitoring=(
            "Note: HR will not reflect true exertion - use RPE instead",
            "Monitor for fatigue at lower than expected HR",
        ),
        additional_stop_criteria=(
            "RPE >6/10 (HR unreliable due to beta blocker)",
            "Excessive fatigue despite normal HR",
        ),
    ),
    MedicationCategory.RATE_CONTROL: MedicationProfile(
        intensity_multiplier=0.85,
        resistance_focus=True,
        rpm_reduction=8,
        duration_reduction=0,
        rationale=(
            "Rate control medication limits heart rate response. "
            "Prioritize resistance-based exercise over aerobic RPM targets."
        ),
        additional_monitoring=(
            "Heart rate response will be blunted",
            "Use RPE 2-3/10 as primary intensity guide",
        ),
        additional_stop_criteria=(
            "RPE >5/10",
            "Any palpitations or irregular rhythm sensation",
        ),
    ),
    MedicationCategory.DIURETIC: MedicationProfile(
        intensity_multiplier=0.90,
        resistance_focus=False,
        rpm_reduction=0,
        duration_reduction=2,
        rationale=(
            "Diuretic may cause earlier fatigue and dehydration. "
            "Slightly shorter sessions with hydration awareness."
        ),
        additional_monitoring=(
            "Monitor for signs of dehydration",
            "Watch for muscle cramping (electrolyte imbalance)",
            "Assess energy level throughout session",
        ),
        additional_stop_criteria=(
            "Muscle cramping",
            "Dizziness or lightheadedness",
            "Excessive thirst or dry mouth",
        ),
    ),
    MedicationCategory.SEDATING: MedicationProfile(
        intensity_multiplier=0.75,
        resistance_focus=False,
        rpm_reduction=5,
        duration_reduction=3,
        rationale=(
            "Sedating medication affects coordination and alertness. "
            "Reduced intensity with close supervision required."
        ),
        additional_monitoring=(
            "Assess alertness before and during session",
            "Monitor coordination and balance",
            "Watch for excessive drowsiness",
        ),
        additional_stop_criteria=(
            "Drowsiness or confusion",
            "Impaired coordination observed",
            "Patient unable to follow simple instructions",
        ),
    ),
    MedicationCategory.INSULIN: MedicationProfile(
        intensity_multiplier=0.95,
        resistance_focus=False,
        rpm_reduction=0,
        duration_reduction=0,
        rationale=(
            "Insulin increases hypoglycemia risk during exercise. "
            "Ensure glucose monitoring and snack availability."
        ),
        additional_monitoring=(
            "Check blood glucose before session",
            "Have fast-acting glucose available",
            "Monitor for hypoglycemia symptoms",
        ),
        additional_stop_criteria=(
            "Blood glucose <70 mg/dL",
            "Symptoms of hypoglycemia (shakiness, sweating, confusion)",
            "Patient feels lightheaded or weak",
        ),
    ),
    MedicationCategory.ANTICOAGULANT: MedicationProfile(
        intensity_multiplier=1.0,
        resistance_focus=False,
        rpm_reduction=0,
        duration_reduction=0,
        rationale="Anticoagulant therapy - no exercise modification needed but maintain awareness of bleeding risk.",
        additional_monitoring=(
            "Inspect for bruising before session",
            "Note any complaints of unusual pain or swelling",
        ),
        additional_stop_criteria=(
            "Any signs of bleeding or unusual bruising",
            "Complaints of joint or muscle pain that could indicate bleeding",
        ),
    ),
    MedicationCategory.ANTIPARKINSONIAN: MedicationProfile(
        intensity_multiplier=0.90,
        resistance_focus=False,
        rpm_reduction=3,
        duration_reduction=0,
        rationale=(
            "Antiparkinsonian medication has timing-dependent effects. "
            'Schedule exercise during medication "on" periods.'
        ),
        additional_monitoring=(
            "Time session 1-2 hours after medication dose",
            "Monitor for dyskinesia or tremor changes",
            "Assess coordination throughout",
        ),
        additional_stop_criteria=(
            "Significant tremor interfering with pedaling",
            "Dyskinesia affecting safety",
            "Medication wearing off (freezing episodes)",
        ),
    ),
    MedicationCategory.NONE: MedicationProfile(
        intensity_multiplier=1.0,
        resistance_focus=False,
        rpm_reduction=0,
        duration_reduction=0,
        rationale="No medication-related exercise modifications required.",
    ),
}

DIAGNOSIS_LABELS: dict[DiagnosisCategory, str] = {
    DiagnosisCategory.CARDIAC: "Cardiac (Heart Failure/CHF)",
    DiagnosisCategory.PULMONARY: "Pulmonary (COPD/Respiratory)",
    DiagnosisCategory.ORTHOPEDIC: "Orthopedic (Joint Replacement/Fracture)",
    DiagnosisCategory.NEUROLOGICAL: "Neurological (Stroke/CVA)",
    DiagnosisCategory.ICU_RECOVERY: "ICU Recovery/Critical Illness",
    DiagnosisCategory.DELIRIUM: "Delirium/Confusion",
    DiagnosisCategory.FRAIL_ELDERLY: "Frail Elderly",
    DiagnosisCategory.GENERAL: "General Medical/Surgical",
}

MONITORING_BY_CATEGORY: dict[DiagnosisCategory, tuple[str, ...]] = {
    DiagnosisCategory.CARDIAC: (
        "Heart rate (target <100 bpm)",
        "Blood pressure (avoid drops >10 mmHg)",
        "SpO2",
        "Dyspnea score (0-10)",
        "Borg RPE (target 11-13)",
        "Signs of fluid overload",
    ),
    DiagnosisCategory.PULMONARY: (
        "SpO2 (maintain >90%)",
        "Respiratory rate (<25/min)",
        "Dyspnea score (0-10)",
        "Heart rate",
        "Accessory muscle use",
        "Pursed lip breathing pattern",
    ),
    DiagnosisCategory.ORTHOPEDIC: (
        "Pain level (0-10)",
        "Range of motion (degrees)",
        "Surgical site assessment",
        "Edema monitoring",
        "Blood pressure",
        "Total rotations completed",
    ),
    DiagnosisCategory.NEUROLOGICAL: (
        "Blood pressure (avoid >180 mmHg)",
        "Bilateral pedaling symmetry",
        "Motor strength (affected vs unaffected)",
        "Cognitive participation",
        "Balance and trunk control",
        "New neurological symptoms",
    ),
    DiagnosisCategory.ICU_RECOVERY: (
        "Heart rate (strict limits)",
        "Blood pressure (watch for orthostatic changes)",
        "SpO2 (continuous)",
        "Respiratory rate",
        "Level of alertness",
        "Muscle activation quality",
        "Fatigue level (frequent checks)",
    ),
    DiagnosisCategory.DELIRIUM: (
        "Behavioral status",
        "Agitation level (0-10)",
        "Participation quality",
        "Safety throughout",
        "CAM score (before and after)",
        "Orientation assessment",
    ),
    DiagnosisCategory.FRAIL_ELDERLY: (
        "Heart rate",
        "Blood pressure (orthostatic)",
        "Balance and stability",
        "Fatigue level",
        "Pain assessment",
        "Engagement and mood",
        "Fall risk indicators",
    ),
    DiagnosisCategory.GENERAL: (
        "Heart rate",
        "Blood pressure",
        "Perceived exertion (RPE)",
        "SpO2",
        "Overall tolerance",
        "Lower extremity assessment",
    ),
}

STOP_CRITERIA_BY_CATEGORY: dict[DiagnosisCategory, tuple[str, ...]] = {
    DiagnosisCategory.CARDIAC: (
        "HR >110 bpm or increase >20 bpm from rest",
        "SBP decrease >10 mmHg",
        "SpO2 <90%",
        "Dyspnea worsening >2 points",
        "Chest pain, dizziness, or palpitations",
        "New arrhythmia",
    ),
    DiagnosisCategory.PULMONARY: (
        "SpO2 <88% or drop >4%",
        "RR >28/min",
        "HR >120 bpm",
        "Severe dyspnea (>7/10)",
        "Confusion or altered mental status",
        "Excessive accessory muscle use",
    ),
    DiagnosisCategory.ORTHOPEDIC: (
        "Pain >6/10",
        "SBP <90 or >180 mmHg",
        "HR >120 bpm",
        "Significant increase in edema",
        "Signs of surgical complications",
        "Patient request",
    ),
    DiagnosisCategory.NEUROLOGICAL: (
        "SBP >180 or <100 mmHg",
        "New neurological symptoms",
        "Severe headache",
        "Dizziness or visual changes",
        "Unable to participate safely",
        "Excessive spasticity",
    ),
    DiagnosisCategory.ICU_RECOVERY: (
        "HR >130 bpm or <50 bpm",
        "SBP >180 or <90 mmHg",
        "SpO2 <88%",
        "RR >30/min",
        "New arrhythmias",
        "Patient distress or excessive fatigue",
        "Any new symptoms",
    ),
    DiagnosisCategory.DELIRIUM: (
        "Increased agitation",
        "Patient distress",
        "Unsafe behaviors",
        "Confusion worsening",
        "Unable to follow simple instructions",
        "Staff determines unable to continue safely",
    ),
    DiagnosisCategory.FRAIL_ELDERLY: (
        "HR >110 bpm",
        "SBP instability (>20 mmHg change)",
        "Excessive fatigue",
        "Pain increase >2 points",
        "Balance concerns",
        "Patient requests stop",
        "Signs of confusion or distress",
    ),
    DiagnosisCategory.GENERAL: (
        "HR >120 bpm",
        "SBP <90 or >180 mmHg",
        "SpO2 <90%",
        "Chest pain or pressure",
        "Severe dyspnea",
        "Patient distress",
    ),
}

# Dropdown labels map straight to a category before keyword matching
DIRECT_DIAGNOSIS_LABELS: tuple[tuple[str, DiagnosisCategory], ...] = (
    ("total knee arthroplasty", DiagnosisCategory.ORTHOPEDIC),
    ("hip fracture", DiagnosisCategory.ORTHOPEDIC),
    ("stroke/cva", DiagnosisCategory.NEUROLOGICAL),
    ("copd exacerbation", DiagnosisCategory.PULMONARY),
    ("heart failure", DiagnosisCategory.CARDIAC),
    ("icu stay/critical illness", DiagnosisCategory.ICU_RECOVERY),
    ("delirium/confusion", DiagnosisCategory.DELIRIUM),
    ("frail elderly (75+)", DiagnosisCategory.FRAIL_ELDERLY),
    ("general medical/surgical", DiagnosisCategory.GENERAL),
    ("other", DiagnosisCategory.GENERAL),
)

DIAGNOSIS_KEYWORDS: tuple[tuple[str, DiagnosisCategory], ...] = (
    ("heart failure", DiagnosisCategory.CARDIAC),
    ("chf", DiagnosisCategory.CARDIAC),
    ("cardiac", DiagnosisCategory.CARDIAC),
    ("cardiomyopathy", DiagnosisCategory.CARDIAC),
    ("atrial fibrillation", DiagnosisCategory.CARDIAC),
    ("copd", DiagnosisCategory.PULMONARY),
    ("pneumonia", DiagnosisCategory.PULMONARY),
    ("respiratory", DiagnosisCategory.PULMONARY),
    ("asthma", DiagnosisCategory.PULMONARY),
    ("knee", DiagnosisCategory.ORTHOPEDIC),
    ("hip", DiagnosisCategory.ORTHOPEDIC),
    ("arthroplasty", DiagnosisCategory.ORTHOPEDIC),
    ("fracture", DiagnosisCategory.ORTHOPEDIC),
    ("orif", DiagnosisCategory.ORTHOPEDIC),
    ("joint", DiagnosisCategory.ORTHOPEDIC),
    ("orthopedic", DiagnosisCategory.ORTHOPEDIC),
    ("stroke", DiagnosisCategory.NEUROLOGICAL),
    ("cva", DiagnosisCategory.NEUROLOGICAL),
    ("tbi", DiagnosisCategory.NEUROLOGICAL),
    ("hemiplegia", DiagnosisCategory.NEUROLOGICAL),
    ("icu", DiagnosisCategory.ICU_RECOVERY),
    ("critical illness", DiagnosisCategory.ICU_RECOVERY),
    ("sepsis", DiagnosisCategory.ICU_RECOVERY),
    ("ventilator", DiagnosisCategory.ICU_RECOVERY),
    ("delirium", DiagnosisCategory.DELIRIUM),
    ("confusion", DiagnosisCategory.DELIRIUM),
    ("encephalopathy", DiagnosisCategory.DELIRIUM),
    ("frail", DiagnosisCategory.FRAIL_ELDERLY),
    ("debility", DiagnosisCategory.FRAIL_ELDERLY),
    ("failure to thrive", DiagnosisCategory.FRAIL_ELDERLY),
)

MEDICATION_KEYWORDS: tuple[tuple[str, MedicationCategory], ...] = (
    ("metoprolol", MedicationCategory.BETA_BLOCKER),
    ("atenolol", MedicationCategory.BETA_BLOCKER),
    ("carvedilol", MedicationCategory.BETA_BLOCKER),
    ("propranolol", MedicationCategory.BETA_BLOCKER),
    ("digoxin", MedicationCategory.RATE_CONTROL),
    ("diltiazem", MedicationCategory.RATE_CONTROL),
    ("verapamil", MedicationCategory.RATE_CONTROL),
    ("furosemide", MedicationCategory.DIURETIC),
    ("lasix", MedicationCategory.DIURETIC),
    ("spironolactone", MedicationCategory.DIURETIC),
    ("hydrochlorothiazide", MedicationCategory.DIURETIC),
    ("bumetanide", MedicationCategory.DIURETIC),
    ("oxycodone", MedicationCategory.SEDATING),
    ("hydrocodone", MedicationCategory.SEDATING),
    ("morphine", MedicationCategory.SEDATING),
    ("fentanyl", MedicationCategory.SEDATING),
    ("tramadol", MedicationCategory.SEDATING),
    ("lorazepam", MedicationCategory.SEDATING),
    ("ativan", MedicationCategory.SEDATING),
    ("diazepam", MedicationCategory.SEDATING),
    ("valium", MedicationCategory.SEDATING),
    ("alprazolam", MedicationCategory.SEDATING),
    ("xanax", MedicationCategory.SEDATING),
    ("zolpidem", MedicationCategory.SEDATING),
    ("ambien", MedicationCategory.SEDATING),
    ("quetiapine", MedicationCategory.SEDATING),
    ("seroquel", MedicationCategory.SEDATING),
    ("haloperidol", MedicationCategory.SEDATING),
    ("haldol", MedicationCategory.SEDATING),
    ("insulin", MedicationCategory.INSULIN),
    ("warfarin", MedicationCategory.ANTICOAGULANT),
    ("coumadin", MedicationCategory.ANTICOAGULANT),
    ("apixaban", MedicationCategory.ANTICOAGULANT),
    ("eliquis", MedicationCategory.ANTICOAGULANT),
    ("rivaroxaban", MedicationCategory.ANTICOAGULANT),
    ("xarelto", MedicationCategory.ANTICOAGULANT),
    ("enoxaparin", MedicationCategory.ANTICOAGULANT),
    ("lovenox", MedicationCategory.ANTICOAGULANT),
    ("heparin", MedicationCategory.ANTICOAGULANT),
    ("carbidopa", MedicationCategory.ANTIPARKINSONIAN),
    ("levodopa", MedicationCategory.ANTIPARKINSONIAN),
    ("sinemet", MedicationCategory.ANTIPARKINSONIAN),
    ("pramipexole", MedicationCategory.ANTIPARKINSONIAN),
    ("mirapex", MedicationCategory.ANTIPARKINSONIAN),
    ("ropinirole", MedicationCategory.ANTIPARKINSONIAN),
)


def _check_exhaustive() -> None:
    for table_name, table in (
        ("DIAGNOSIS_PROFILES", DIAGNOSIS_PROFILES),
        ("DIAGNOSIS_LABELS", DIAGNOSIS_LABELS),
        ("MONITORING_BY_CATEGORY", MONITORING_BY_CATEGORY),
        ("STOP_CRITERIA_BY_CATEGORY", STOP_CRITERIA_BY_CATEGORY),
    ):
        missing = set(DiagnosisCategory) - set(table)
        if missing:
            raise RuntimeError(f"{table_name} is missing categories: {sorted(missing)}")
    missing = set(MedicationCategory) - set(MEDICATION_PROFILES)
    if missing:
        raise RuntimeError(f"MEDICATION_PROFILES is missing categories: {sorted(missing)}")


_check_exhaustive()
