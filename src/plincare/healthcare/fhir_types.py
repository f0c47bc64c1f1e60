"""FHIR Resource Type Definitions.

This module provides the shapes of the FHIR resources exchanged by the
integration engine. Resources travel as plain JSON dictionaries; these
definitions document and type-check them.
"""

from typing import Any, Dict, List, Literal, Optional, TypedDict, Union


class FHIRResourceBase(TypedDict, total=False):
    """Base FHIR Resource type definition."""

    resourceType: str
    id: str
    meta: Dict[str, Any]
    extension: List[Dict[str, Any]]
    contained: List[Dict[str, Any]]


class FHIRCoding(TypedDict, total=False):
    """FHIR Coding type definition."""

    system: str
    code: str
    display: str


class FHIRCodeableConcept(TypedDict, total=False):
    """FHIR CodeableConcept type definition."""

    coding: List[FHIRCoding]
    text: str


class FHIRIdentifier(TypedDict, total=False):
    """FHIR Identifier type definition."""

    use: Literal["usual", "official", "temp", "secondary", "old"]
    type: FHIRCodeableConcept
    system: str
    value: str


class FHIRReference(TypedDict, total=False):
    """FHIR Reference type definition."""

    reference: str
    display: str


class FHIRQuantity(TypedDict, total=False):
    """FHIR Quantity type definition."""

    value: Union[int, float]
    unit: str
    system: str
    code: str


class FHIRHumanName(TypedDict, total=False):
    """FHIR HumanName type definition."""

    use: Literal["usual", "official", "temp", "nickname", "anonymous", "old", "maiden"]
    family: str
    given: List[str]


class FHIRAttachment(TypedDict, total=False):
    """FHIR Attachment type definition."""

    contentType: str
    data: str
    title: str


class FHIRPatient(FHIRResourceBase, total=False):
    """FHIR Patient resource type definition."""

    identifier: List[FHIRIdentifier]
    name: List[FHIRHumanName]
    gender: Literal["male", "female", "other", "unknown"]
    birthDate: str


class FHIRObservation(FHIRResourceBase, total=False):
    """FHIR Observation resource type definition."""

    status: Literal[
        "registered",
        "preliminary",
        "final",
        "amended",
        "corrected",
        "cancelled",
        "entered-in-error",
        "unknown",
    ]
    code: FHIRCodeableConcept
    subject: FHIRReference
    effectiveDateTime: str
    valueQuantity: FHIRQuantity
    valueString: str
    referenceRange: List[Dict[str, Any]]


class FHIRDiagnosticReport(FHIRResourceBase, total=False):
    """FHIR DiagnosticReport resource type definition."""

    status: str
    code: FHIRCodeableConcept
    subject: FHIRReference
    effectiveDateTime: str
    effectivePeriod: Dict[str, str]
    issued: str
    result: List[FHIRReference]
    presentedForm: List[FHIRAttachment]


class FHIRDocumentReference(FHIRResourceBase, total=False):
    """FHIR DocumentReference resource type definition."""

    status: Literal["current", "superseded", "entered-in-error"]
    type: FHIRCodeableConcept
    subject: FHIRReference
    date: str
    description: str
    content: List[Dict[str, Any]]
    context: Dict[str, Any]


class FHIRAppointmentParticipant(TypedDict, total=False):
    """FHIR Appointment.participant type definition."""

    actor: FHIRReference
    status: Literal["accepted", "declined", "tentative", "needs-action"]


class FHIRAppointment(FHIRResourceBase, total=False):
    """FHIR Appointment resource type definition."""

    identifier: List[FHIRIdentifier]
    status: str
    description: str
    appointmentType: FHIRCodeableConcept
    serviceType: List[FHIRCodeableConcept]
    reasonCode: List[FHIRCodeableConcept]
    start: str
    end: str
    minutesDuration: int
    slot: List[FHIRReference]
    participant: List[FHIRAppointmentParticipant]


class FHIRSchedule(FHIRResourceBase, total=False):
    """FHIR Schedule resource type definition."""

    active: bool
    actor: List[FHIRReference]


class FHIRSlot(FHIRResourceBase, total=False):
    """FHIR Slot resource type definition."""

    schedule: FHIRReference
    status: Literal["busy", "free", "busy-unavailable", "busy-tentative"]
    start: str
    end: str


FHIRResource = Dict[str, Any]


def reference_to(resource: FHIRResource) -> FHIRReference:
    """Build a literal reference ``<resourceType>/<id>`` to a resource."""
    return {"reference": f"{resource['resourceType']}/{resource['id']}"}


def first_coding(concept: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return the first coding of a CodeableConcept, or an empty dict."""
    codings = (concept or {}).get("coding") or []
    return codings[0] if codings else {}
