from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from certificates.certificate_handle import CertificateHandle
from config import get_logger
from routers.onboarding import raise_api_error
from signing import invoice_signer
from signing.exceptions import (EncodingOverflowError, LoadError, MissingInputError, ParseError, UnsupportedKeyError,
                               ZatcaApiError)
from zatca_api.invoice_compliance import check_invoice_compliance, clear_invoice, report_invoice

logger = get_logger("invoice_logger", "invoices.log")

router = APIRouter()


class SignInvoiceReq(BaseModel):
    invoice_xml: str
    certificate: str   # PEM, base64 DER or binarySecurityToken
    private_key: str


class HashInvoiceReq(BaseModel):
    invoice_xml: str


class SubmitInvoiceReq(BaseModel):
    signed_xml: str
    invoice_hash: str
    uuid: str
    binary_security_token: str
    secret: str
    mode: str = "reporting"   # reporting / clearance / compliance


@router.post("/sign", summary="Sign an invoice and stamp its QR code")
async def sign_invoice(data: SignInvoiceReq):
    try:
        with CertificateHandle(data.certificate, data.private_key) as handle:
            result = invoice_signer.sign(data.invoice_xml, handle)
    except (LoadError, UnsupportedKeyError) as e:
        logger.error("Rejected signing credentials: %s", e)
        raise HTTPException(status_code=422, detail=str(e))
    except (ParseError, EncodingOverflowError) as e:
        logger.error("Rejected invoice: %s", e)
        raise HTTPException(status_code=422, detail=str(e))

    logger.info("Signed invoice, hash %s", result.invoice_hash)
    return {
        "signed_xml": result.signed_xml,
        "invoice_hash": result.invoice_hash,
        "digital_signature": result.digital_signature,
        "qr_code": result.qr_code
    }


@router.post("/hash", summary="Compute the invoice hash without signing")
async def hash_invoice(data: HashInvoiceReq):
    try:
        return {"invoice_hash": invoice_signer.get_hash(data.invoice_xml)}
    except ParseError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/report", summary="Report, clear or compliance-check a signed invoice")
async def submit_invoice(data: SubmitInvoiceReq):
    submitters = {
        "reporting": report_invoice,
        "clearance": clear_invoice,
        "compliance": check_invoice_compliance
    }
    submit = submitters.get(data.mode)
    if submit is None:
        raise HTTPException(status_code=422, detail=f"Unknown mode {data.mode!r}")

    logger.info("Submitting invoice %s (%s)", data.uuid, data.mode)
    try:
        result = submit(data.invoice_hash, data.uuid, data.signed_xml,
                        data.binary_security_token, data.secret)
    except MissingInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ZatcaApiError as e:
        raise_api_error(e, f"Invoice {data.mode}")

    return result
