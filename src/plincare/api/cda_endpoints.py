"""DMP document REST API endpoints.

Generates CI-SIS CDA documents from FHIR resources and validates documents
before they are published to the DMP.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from plincare.config import Settings, get_settings
from plincare.healthcare.cda import (
    AuthorOptions,
    CDAGeneratorOptions,
    CustodianOptions,
    create_document_reference,
    format_validation_report,
    generate_cr_bio,
    validate_cda_structure,
)
from plincare.utils.exceptions import CDAGenerationError
from plincare.utils.logging import audit_logger, get_logger

router = APIRouter(prefix="/api/dmp", tags=["dmp"])
logger = get_logger(__name__)

ACTOR_ID = "CDA_API"

# Module-level dependency variables to avoid B008 errors
settings_dependency = Depends(get_settings)


# Request Models
class AuthorInput(BaseModel):
    """Document author; settings defaults apply to missing values."""

    rppsId: Optional[str] = None
    familyName: Optional[str] = None
    givenName: Optional[str] = None


class CustodianInput(BaseModel):
    """Custodian facility; settings defaults apply to missing values."""

    finessId: Optional[str] = None
    name: Optional[str] = None


class GenerationOptionsInput(BaseModel):
    """Document generation options."""

    author: AuthorInput = Field(default_factory=AuthorInput)
    custodian: CustodianInput = Field(default_factory=CustodianInput)
    useStructuredBody: bool = False
    documentCode: str = "CR_BIO"


class GenerateCDARequest(BaseModel):
    """Resources a document is generated from."""

    patient: Dict[str, Any]
    diagnosticReport: Dict[str, Any]
    observations: List[Dict[str, Any]] = Field(default_factory=list)
    options: GenerationOptionsInput = Field(default_factory=GenerationOptionsInput)


class ValidateCDARequest(BaseModel):
    """Document to validate."""

    cdaXml: str


def build_generator_options(
    options: GenerationOptionsInput, settings: Settings
) -> CDAGeneratorOptions:
    """Merge request options with the configured author and custodian."""
    return CDAGeneratorOptions(
        author=AuthorOptions(
            rpps_id=options.author.rppsId or settings.default_rpps,
            family_name=options.author.familyName or settings.default_author_family,
            given_name=options.author.givenName or settings.default_author_given,
        ),
        custodian=CustodianOptions(
            finess_id=options.custodian.finessId or settings.default_finess,
            name=options.custodian.name or settings.default_establishment,
        ),
        use_structured_body=options.useStructuredBody,
        document_code=options.documentCode,
    )


@router.post("/generate-cda", status_code=status.HTTP_201_CREATED)
async def generate_cda(
    request: GenerateCDARequest,
    settings: Settings = settings_dependency,
) -> Dict[str, Any]:
    """Generate a CDA document and its DocumentReference.

    A compliance failure (missing INS, official name, author or custodian)
    is returned as 422 with the failing rule code.
    """
    patient_id = request.patient.get("id", "")
    options = build_generator_options(request.options, settings)

    try:
        document = generate_cr_bio(
            request.patient,
            request.diagnosticReport,
            request.observations,
            options,
        )
    except CDAGenerationError as e:
        logger.warning("cda_generation_rejected", patient_id=patient_id, error_code=e.code)
        audit_logger.log(
            ACTOR_ID,
            "GENERATE_CDA",
            patient_id,
            "CDA_DOCUMENT",
            "failure",
            {"error_code": e.code},
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": str(e)},
        ) from e

    document_reference = create_document_reference(
        document,
        request.patient,
        request.diagnosticReport,
        options.document_code,
    )
    validation = validate_cda_structure(document)

    audit_logger.log(
        ACTOR_ID,
        "GENERATE_CDA",
        document_reference["id"],
        "CDA_DOCUMENT",
        "success",
        {
            "patient_id": patient_id,
            "document_code": options.document_code,
            "is_valid": validation.is_valid,
        },
    )

    return {
        "documentReference": document_reference,
        "cdaXml": document,
        "validation": validation.to_dict(),
    }


@router.post("/validate-cda")
async def validate_cda(request: ValidateCDARequest) -> Dict[str, Any]:
    """Validate a CDA document and return the findings and a text report."""
    validation = validate_cda_structure(request.cdaXml)
    result = validation.to_dict()
    result["report"] = format_validation_report(validation)
    return result
