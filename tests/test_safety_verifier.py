from conftest import FakeGemini, make_prescription, no_dosage_warnings, no_interactions

from rx_fulfillment.agents.safety_verifier import (
    check_interactions,
    check_static_dosages,
    normalize_severity,
    sort_by_severity,
    verify_dosages,
    verify_prescription,
)
from rx_fulfillment.models.extraction import InteractionCheckResult
from rx_fulfillment.models.prescription import PatientInfo, PrescribedMedication, PrescriptionWarning


def _warning(severity, message=""):
    return PrescriptionWarning(type="dosage", severity=severity, message=message or severity)


def test_sort_by_severity_orders_and_is_stable():
    warnings = [_warning("low", "a"), _warning("critical"), _warning("medium"), _warning("low", "b")]
    ordered = sort_by_severity(warnings)
    assert [w.message for w in ordered] == ["critical", "medium", "a", "b"]


def test_normalize_severity():
    assert normalize_severity("Major") == "high"
    assert normalize_severity("minor") == "low"
    assert normalize_severity("critical") == "critical"
    assert normalize_severity("whatever") == "medium"
    assert normalize_severity(None) == "medium"


def test_verify_merges_and_orders_warnings():
    prescription = make_prescription(
        PrescribedMedication(name="Napa", dosage="500mg"),
        PrescribedMedication(name="Seclo", dosage="20mg"),
    )
    prescription.warnings = [_warning("low", "analyzer")]

    def interactions(names):
        return InteractionCheckResult(warnings=[
            PrescriptionWarning(type="interaction", severity="critical", message="pair"),
        ])

    def dosages(meds, patient):
        return [_warning("medium", "dose")]

    verify_prescription(prescription, interaction_checker=interactions, dosage_verifier=dosages)
    assert [w.message for w in prescription.warnings] == ["pair", "dose", "analyzer"]


def test_failing_checks_leave_analyzer_warnings():
    prescription = make_prescription(PrescribedMedication(name="Napa", dosage="500mg"))
    prescription.warnings = [_warning("low", "analyzer")]

    def broken(*args):
        raise RuntimeError("model down")

    verify_prescription(prescription, interaction_checker=broken, dosage_verifier=broken)
    assert [w.message for w in prescription.warnings] == ["analyzer"]


def test_unsuccessful_interaction_check_keeps_its_static_warnings():
    prescription = make_prescription(
        PrescribedMedication(name="Warfarin", dosage="5mg"),
        PrescribedMedication(name="Aspirin", dosage="75mg"),
    )

    def checker(names):
        return check_interactions(names, client=FakeGemini(RuntimeError("quota")))

    verify_prescription(prescription, interaction_checker=checker, dosage_verifier=no_dosage_warnings)
    assert len(prescription.warnings) == 1
    assert prescription.warnings[0].severity == "critical"
    assert prescription.warnings[0].message == "Increased bleeding risk"


def test_no_warnings_for_clean_prescription():
    prescription = make_prescription(PrescribedMedication(name="Napa", dosage="500mg"))
    verify_prescription(prescription, interaction_checker=no_interactions, dosage_verifier=no_dosage_warnings)
    assert prescription.warnings == []


def test_check_interactions_single_medication_skips_model():
    client = FakeGemini()
    result = check_interactions(["Napa"], client=client)
    assert result.success and result.warnings == []
    assert client.prompts == []


def test_check_interactions_from_model():
    client = FakeGemini({"interactions": [
        {"drug1": "Napa", "drug2": "Seclo", "severity": "Moderate", "description": "minor overlap"},
        {"drug1": "Napa"},
    ]})
    result = check_interactions(["Napa", "Seclo"], client=client)

    assert result.success
    assert len(result.warnings) == 1
    assert result.warnings[0].severity == "medium"
    assert result.warnings[0].message == "Napa + Seclo: minor overlap"
    assert result.warnings[0].medications == ["Napa", "Seclo"]


def test_static_paracetamol_limits():
    child = PatientInfo(age=8)
    med = PrescribedMedication(name="Napa Extra", dosage="1200mg")
    warnings = check_static_dosages(med, child)
    assert {(w.type, w.severity) for w in warnings} == {("dosage", "high"), ("age_restriction", "critical")}

    assert check_static_dosages(PrescribedMedication(name="Napa", dosage="500mg"), child) == []
    assert check_static_dosages(PrescribedMedication(name="Seclo", dosage="2000mg"), child) == []


def test_verify_dosages_model_verdicts():
    meds = [PrescribedMedication(name="Seclo", dosage="40mg")]
    client = FakeGemini({"is_safe": False, "warnings": ["too high"], "age_appropriate": False})
    warnings = verify_dosages(meds, PatientInfo(age=70), client=client)

    assert [(w.type, w.severity) for w in warnings] == [
        ("dosage", "medium"),
        ("age_restriction", "medium"),
    ]
    assert warnings[0].message == "Seclo: too high"


def test_verify_dosages_minor_not_age_appropriate():
    meds = [PrescribedMedication(name="Seclo", dosage="20mg")]
    client = FakeGemini({"is_safe": True, "age_appropriate": False})
    warnings = verify_dosages(meds, PatientInfo(age=10), client=client)
    assert [(w.type, w.severity) for w in warnings] == [("age_restriction", "high")]


def test_verify_dosages_model_failure_keeps_static_checks():
    meds = [PrescribedMedication(name="Napa", dosage="1500mg")]
    warnings = verify_dosages(meds, PatientInfo(age=30), client=FakeGemini(RuntimeError("down")))
    assert [(w.type, w.severity) for w in warnings] == [("dosage", "high")]


def test_static_warning_names_prescribed_medications():
    prescription = make_prescription(
        PrescribedMedication(name="Warfarin 5mg", dosage="5mg"),
        PrescribedMedication(name="Ecosprin (Aspirin)", dosage="75mg"),
    )

    def checker(names):
        return check_interactions(names, client=FakeGemini(RuntimeError("quota")))

    verify_prescription(prescription, interaction_checker=checker, dosage_verifier=no_dosage_warnings)

    names = set(prescription.medication_names())
    assert prescription.warnings
    for warning in prescription.warnings:
        assert set(warning.medications) <= names
    assert prescription.warnings[0].medications == ["Warfarin 5mg", "Ecosprin (Aspirin)"]


def test_model_drug_names_map_to_prescribed_names():
    names = ["Warfarin 5mg", "Ecosprin (Aspirin)"]
    client = FakeGemini({"interactions": [
        {"drug1": "warfarin", "drug2": "Aspirin", "severity": "high", "description": "bleeding"},
        {"drug1": "Warfarin", "drug2": "Ibuprofen", "severity": "medium", "description": "not prescribed"},
    ]})
    result = check_interactions(names, client=client)

    model_warnings = [w for w in result.warnings if w.message.startswith("warfarin + Aspirin")]
    assert model_warnings[0].medications == ["Warfarin 5mg", "Ecosprin (Aspirin)"]
    unprescribed = [w for w in result.warnings if "Ibuprofen" in w.message]
    assert unprescribed[0].medications == ["Warfarin 5mg"]
    for warning in result.warnings:
        assert set(warning.medications) <= set(names)
