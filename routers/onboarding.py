import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from certificates.csr_builder import COMMON_NAME_PREFIX, CertificateRequestBuilder
from config import ENV, get_logger
from signing.exceptions import FieldFormatError, MissingFieldError, MissingInputError, ZatcaApiError
from zatca_api.registration import get_compliance_csid, get_production_csid

logger = get_logger("csr_logger", "csr_generation.log")

router = APIRouter()


class GenerateCSRReq(BaseModel):
    vat_reg_number: str
    organization_name: str
    branch_name: str
    address: str
    business_category: str
    country: str = "SA"
    invoice_type: str = "1100"
    solution_name: str = "MicroPOS"
    model: str = "1.0.0"
    egs_uuid: Optional[str] = None
    common_name: Optional[str] = None
    environment: str = ENV


class ComplianceCSIDReq(BaseModel):
    csr_base64: str
    otp: str


class ProductionCSIDReq(BaseModel):
    binary_security_token: str  # From Compliance CSID response
    secret: str                 # From Compliance CSID response
    request_id: str             # Compliance request id


def raise_api_error(e: ZatcaApiError, what: str):
    logger.error("%s failed: %s", what, e)
    status_code = e.status_code if e.status_code and e.status_code >= 400 else 502
    raise HTTPException(status_code=status_code, detail=e.context.get("errors") or str(e))


@router.post("/generate-csr", summary="Generate CSR for an EGS unit")
async def generate_csr(data: GenerateCSRReq):
    """
    Generates a Certificate Signing Request (CSR) and a fresh secp256k1
    private key for one EGS unit. The CSR is returned as PEM and as the base64
    form the compliance endpoint expects.
    """
    egs_uuid = data.egs_uuid or str(uuid.uuid4())
    common_name = data.common_name or f"{COMMON_NAME_PREFIX.get(data.environment, 'TST')}-{egs_uuid}"

    logger.info("Received CSR generation request for VAT: %s", data.vat_reg_number)
    try:
        request = (CertificateRequestBuilder()
                   .set_environment(data.environment)
                   .set_organization_identifier(data.vat_reg_number)
                   .set_serial_number(data.solution_name, data.model, egs_uuid)
                   .set_common_name(common_name)
                   .set_country_name(data.country)
                   .set_organization_name(data.organization_name)
                   .set_organizational_unit_name(data.branch_name)
                   .set_address(data.address)
                   .set_invoice_type(data.invoice_type)
                   .set_business_category(data.business_category)
                   .build())
    except (FieldFormatError, MissingFieldError) as e:
        logger.error("CSR generation rejected: %s", e)
        raise HTTPException(status_code=422, detail=str(e))

    logger.info("CSR generation successful, UUID: %s", egs_uuid)
    return {
        "csr": request.csr_pem,
        "csr_base64": request.csr_base64,
        "private_key": request.private_key_pem,
        "egs_uuid": egs_uuid
    }


@router.post("/get-compliance-csid", summary="Get Compliance CSID from CSR")
async def get_compliance_csid_endpoint(data: ComplianceCSIDReq):
    """
    Sends a CSR to the compliance API to retrieve the CSID.
    Requires:
        - csr_base64: Base64-encoded CSR
        - otp: One-time password from the Fatoora portal
    """
    logger.info("Sending CSR to Compliance API")
    try:
        result = get_compliance_csid(data.csr_base64, data.otp)
    except MissingInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ZatcaApiError as e:
        raise_api_error(e, "Compliance CSID request")

    logger.info("Compliance CSID received, request id %s", result.get("requestID"))
    return result


@router.post("/get-production-csid", summary="Get Production CSID")
async def get_production_csid_endpoint(data: ProductionCSIDReq):
    """
    Retrieves the Production CSID using:
    - binary_security_token: Received from Compliance CSID response
    - secret: Received from Compliance CSID response
    - request_id: The compliance request id
    """
    logger.info("Requesting Production CSID for request_id: %s", data.request_id)
    try:
        result = get_production_csid(data.request_id, data.binary_security_token, data.secret)
    except MissingInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ZatcaApiError as e:
        raise_api_error(e, "Production CSID request")

    logger.info("Successfully received Production CSID")
    return {
        "status": "success",
        "data": result
    }
