"""Tests for clinical feature extraction.

Tests cover:
- Admission text categorization and structured-flag precedence
- Medication bucketing (structured flags vs token matching)
- Normalization of unknown enumerated values
- BMI and obesity derivation
- Reference-mobility copy used by the odds-ratio computation
"""

import pytest

from mobility_engine.patients.schemas import PatientRiskInput
from mobility_engine.risk.features import (
    CognitiveStatus,
    LevelOfCare,
    MobilityLevel,
    bucket_medications,
    categorize_admission_text,
    compute_bmi,
    determine_admission_category,
    extract_features,
    normalize_level_of_care,
)


def make_patient(**overrides) -> PatientRiskInput:
    """Create a PatientRiskInput with neutral defaults."""
    fields = {
        "age": 60,
        "level_of_care": "ward",
        "mobility_status": "walking_assist",
        "cognitive_status": "normal",
    }
    fields.update(overrides)
    return PatientRiskInput(**fields)


# ============================================================================
# Admission category
# ============================================================================


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Acute ischemic stroke", "neuro"),
        ("Community acquired pneumonia", "medical_pulm"),
        ("Congestive heart failure", "cardiac"),
        ("Elective knee replacement", "ortho"),
        ("Metastatic colon cancer", "oncology"),
        ("Urosepsis", "sepsis"),
        ("Acute kidney injury", "medical_renal"),
        ("", "general_medical"),
        ("Feeling unwell", "general_medical"),
    ],
)
def test_categorize_admission_text(text, expected):
    """Test that admission text maps to the first matching category."""
    assert categorize_admission_text(text) == expected


def test_structured_admission_flags_win_over_text():
    """Test that structured admission flags take precedence over the diagnosis text."""
    patient = make_patient(admission_diagnosis="Community acquired pneumonia", is_cardiac_admission=True)
    assert determine_admission_category(patient) == "cardiac"


def test_structured_admission_precedence_order():
    """Test that cardiac beats neuro and neuro beats ortho when several flags are set."""
    assert determine_admission_category(make_patient(is_neuro_admission=True, is_orthopedic=True)) == "neuro"
    assert determine_admission_category(make_patient(is_orthopedic=True, is_sepsis=True)) == "ortho"


# ============================================================================
# Medications
# ============================================================================


def test_medication_tokens_match_case_insensitively():
    """Test that medication names are bucketed by substring token match."""
    patient = make_patient(medications=["Lorazepam 1mg PRN", "ENOXAPARIN 40mg", "prednisone"])
    assert bucket_medications(patient) == (True, True, True)


def test_structured_medication_flags_replace_text_inference():
    """Test that any supplied structured flag switches off token matching."""
    patient = make_patient(medications=["lorazepam", "heparin"], on_steroids=True)
    assert bucket_medications(patient) == (False, False, True)


def test_no_medications_no_buckets():
    """Test that an empty medication list sets no medication flags."""
    assert bucket_medications(make_patient()) == (False, False, False)


# ============================================================================
# Normalization
# ============================================================================


def test_unknown_values_fall_back_to_conservative_defaults():
    """Test that unknown mobility, cognition and level of care normalize to defaults."""
    features = extract_features(
        make_patient(mobility_status="crawling", cognitive_status="confused", level_of_care="hallway")
    )
    assert features.mobility == MobilityLevel.BEDBOUND
    assert features.cognition == CognitiveStatus.NORMAL
    assert features.level_of_care == LevelOfCare.WARD


def test_step_down_spelling_normalizes_to_stepdown():
    """Test that step_down is accepted as stepdown."""
    assert normalize_level_of_care("step_down") == LevelOfCare.STEPDOWN
    assert extract_features(make_patient(level_of_care="Step_Down")).is_set("stepdown")


# ============================================================================
# Flags
# ============================================================================


def test_bmi_requires_weight_and_height():
    """Test that BMI is omitted when weight or height is missing."""
    assert compute_bmi(80, None) is None
    assert compute_bmi(None, 180) is None
    assert compute_bmi(81, 180) == pytest.approx(25.0)


def test_obesity_derived_from_bmi():
    """Test that BMI >= 30 sets the obesity flag without a comorbidity entry."""
    features = extract_features(make_patient(weight_kg=100, height_cm=170))
    assert features.bmi == pytest.approx(34.6, abs=0.1)
    assert features.is_set("obesity")


def test_age_bands_are_cumulative():
    """Test that an 82 year old sets all three age flags."""
    features = extract_features(make_patient(age=82))
    assert features.is_set("age_65+")
    assert features.is_set("age_70+")
    assert features.is_set("age_80+")


def test_pulmonary_admission_sets_stroke_flag():
    """Test that a pulmonary text category also sets the stroke flag."""
    features = extract_features(make_patient(admission_diagnosis="COPD exacerbation"))
    assert features.is_set("stroke")


def test_device_flags_and_device_list_both_count():
    """Test that either a device list or a structured device flag sets devices."""
    assert extract_features(make_patient(devices=["foley"])).is_set("devices")
    assert extract_features(make_patient(has_central_line=True)).is_set("devices")
    assert not extract_features(make_patient()).is_set("devices")


def test_orthopedic_flag_follows_admission_category():
    """Test that the orthopedic flag comes from the resolved admission category."""
    assert extract_features(make_patient(admission_diagnosis="Hip fracture")).is_set("orthopedic")
    assert extract_features(make_patient(is_orthopedic=True)).is_set("orthopedic")


def test_prophylaxis_and_immobility_flags():
    """Test that missing prophylaxis and 3+ immobile days are flagged."""
    features = extract_features(make_patient(on_vte_prophylaxis=False, days_immobile=3))
    assert features.is_set("no_prophylaxis")
    assert features.is_set("immobile_ge3")


def test_reference_mobility_copy():
    """Test that the reference copy is independent and drops only the immobility flag."""
    features = extract_features(make_patient(mobility_status="bedbound", days_immobile=5, age=82))
    reference = features.with_reference_mobility()

    assert reference.mobility == MobilityLevel.INDEPENDENT
    assert not reference.is_set("immobile_ge3")
    assert reference.is_set("age_80+")
    assert features.is_set("immobile_ge3")
