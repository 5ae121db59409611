import logging
from typing import Dict, Optional, Union

from requests.auth import HTTPBasicAuth

from certificates.certificate_handle import CertificateHandle
from signing.exceptions import MissingInputError
from zatca_api.client import base_headers, send

logger = logging.getLogger(__name__)

COMPLIANCE_PATH = "compliance"
PRODUCTION_PATH = "production/csids"

Credentials = Union[CertificateHandle, str]


def auth_for(credentials: Credentials, secret: Optional[str]):
    """
    Authorization for CSID-authenticated calls. A handle builds its own basic
    auth header; a binarySecurityToken string is paired with `secret`.
    """
    if isinstance(credentials, CertificateHandle):
        return {"Authorization": credentials.authorization_header()}, None
    if not secret:
        raise MissingInputError("secret")
    return {}, HTTPBasicAuth(credentials, secret)


def get_compliance_csid(csr_base64: str, otp: str) -> Dict:
    """
    Exchanges a CSR (base64 of the PEM text) and the portal OTP for a
    compliance CSID. The response carries `binarySecurityToken`, `secret`
    and `requestID`.
    """
    if not otp:
        raise MissingInputError("otp")
    logger.info("Requesting compliance CSID")
    return send("post", COMPLIANCE_PATH, {"csr": csr_base64}, base_headers(OTP=otp))


def get_production_csid(request_id: str, credentials: Credentials, secret: Optional[str] = None) -> Dict:
    """
    Exchanges a compliance request id for the production CSID. `credentials`
    is either the compliance certificate handle or the compliance
    binarySecurityToken (then `secret` is required).
    """
    if not request_id:
        raise MissingInputError("request_id")
    extra, auth = auth_for(credentials, secret)
    logger.info("Requesting production CSID for compliance request %s", request_id)
    return send("post", PRODUCTION_PATH, {"compliance_request_id": request_id},
                base_headers(**extra), auth=auth)


def renew_production_csid(otp: str, csr_base64: str, credentials: Credentials,
                          secret: Optional[str] = None) -> Dict:
    """ Renews an expiring production CSID with a new CSR. """
    if not otp:
        raise MissingInputError("otp")
    extra, auth = auth_for(credentials, secret)
    extra["OTP"] = otp
    logger.info("Renewing production CSID")
    return send("patch", PRODUCTION_PATH, {"csr": csr_base64}, base_headers(**extra), auth=auth)
