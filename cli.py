import base64
import json
import os
import uuid

import click

import config
from certificates.certificate_handle import CertificateHandle
from certificates.csr_builder import COMMON_NAME_PREFIX, CertificateRequestBuilder
from qr import tlv
from signing import invoice_signer
from signing.exceptions import ZatcaError
from zatca_api.registration import get_compliance_csid, get_production_csid

current_dir = os.getcwd()

logger = config.get_logger("cli_logger", "cli.log")


def _read(path: str) -> str:
    with open(path, "r", encoding="utf-8") as inf:
        return inf.read()


def _write(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as outf:
        outf.write(content)


def _auth_data(response: dict) -> dict:
    return {
        "req_id": response.get("requestID"),
        "secret": response.get("secret"),
        "token": response.get("binarySecurityToken")
    }


@click.group()
@click.option("--env", type=click.Choice(["sandbox", "simulation", "prod"]),
              default=config.ENV if config.ENV in COMMON_NAME_PREFIX else "sandbox",
              show_default=True, help="Onboarding environment, selects the CSR template.")
@click.pass_context
def mycommands(ctx, env):
    ctx.ensure_object(dict)
    ctx.obj["env"] = env


@mycommands.command("generate-csr")
@click.option("--uid", required=True, help="VAT registration number (15 digits, starts and ends with 3).")
@click.option("--c", "country", default="SA", show_default=True, help="Country code")
@click.option("--cn", default=None, help="Common Name")
@click.option("--o", "organization", default="My Company", help="Organization Name")
@click.option("--ou", "organizational_unit", default="Main Branch", help="Organizational Unit")
@click.option("--solution", default="MicroPOS", show_default=True, help="Solution name for the serial number")
@click.option("--model", default="1.0.0", show_default=True, help="Model / version for the serial number")
@click.option("--egs-uuid", default=None, help="Unique ID of the EGS unit")
@click.option("--title", default="1100", show_default=True, help="Invoice types: standard, simplified, 0, 0")
@click.option("--category", default="Retail", help="Business category")
@click.option("--address", default="King Fahd Road Riyadh 12345", help="Registered address")
@click.option("--output-dir", default=os.path.join(current_dir, "csrs"), help="Directory to save generated files")
@click.pass_context
def generate_csr(ctx, uid, country, cn, organization, organizational_unit, solution, model, egs_uuid,
                 title, category, address, output_dir):
    env = ctx.obj["env"]
    if egs_uuid is None:
        egs_uuid = str(uuid.uuid4())
    if cn is None:
        cn = f"{COMMON_NAME_PREFIX[env]}-{egs_uuid}"

    try:
        request = (CertificateRequestBuilder()
                   .set_environment(env)
                   .set_organization_identifier(uid)
                   .set_serial_number(solution, model, egs_uuid)
                   .set_common_name(cn)
                   .set_country_name(country)
                   .set_organization_name(organization)
                   .set_organizational_unit_name(organizational_unit)
                   .set_address(address)
                   .set_invoice_type(title)
                   .set_business_category(category)
                   .build())
    except ZatcaError as e:
        raise click.UsageError(str(e))

    csr_path = os.path.join(output_dir, "certificate.csr")
    key_path = os.path.join(output_dir, "private.pem")
    _write(csr_path, request.csr_pem)
    _write(key_path, request.private_key_pem)

    logger.info("CSR generated for EGS unit %s", egs_uuid)
    click.echo(f"CSR saved at {csr_path}")
    click.echo(f"Private key saved at {key_path}")


@mycommands.command("generate-ccsid")
@click.option("--csr-dir", default=os.path.join(current_dir, "csrs"), help="The directory where the CSR is present.")
@click.option("--otp", required=True, help="The OTP provided by the Fatoora portal.")
@click.option("--output-dir", default=current_dir, help="The output directory.")
def generate_ccsid(csr_dir: str, otp: str, output_dir: str):
    if not otp.isdigit() or len(otp) != 6:
        raise click.UsageError("OTP must be 6 digits")

    csr_pem = _read(os.path.join(csr_dir, "certificate.csr"))
    csr_base64 = base64.b64encode(csr_pem.encode("utf-8")).decode("utf-8")

    try:
        response = get_compliance_csid(csr_base64, otp)
    except ZatcaError as e:
        logger.error("Compliance CSID request failed: %s", e)
        raise click.ClickException(str(e))

    out_path = os.path.join(output_dir, "compliance_auth.json")
    _write(out_path, json.dumps(_auth_data(response), indent=4))
    logger.info("Compliance CSID retrieved, request id %s", response.get("requestID"))
    click.echo(f"Compliance CSID retrieved, details saved at {out_path}")


@mycommands.command("generate-pcsid")
@click.option("--csid-dir", default=current_dir, help="The directory where compliance_auth.json is present.")
@click.option("--output-dir", default=current_dir, help="The output directory.")
def generate_pcsid(csid_dir: str, output_dir: str):
    data = json.loads(_read(os.path.join(csid_dir, "compliance_auth.json")))

    try:
        response = get_production_csid(data["req_id"], data["token"], data["secret"])
    except KeyError as e:
        raise click.UsageError(f"compliance_auth.json is missing {e}")
    except ZatcaError as e:
        logger.error("Production CSID request failed: %s", e)
        raise click.ClickException(str(e))

    out_path = os.path.join(output_dir, "production_auth.json")
    _write(out_path, json.dumps(_auth_data(response), indent=4))
    logger.info("Production CSID retrieved, request id %s", response.get("requestID"))
    click.echo(f"Production CSID retrieved, details saved at {out_path}")


@mycommands.command("sign-invoice")
@click.option("--invoice", "invoice_path", required=True, type=click.Path(exists=True), help="Unsigned invoice XML")
@click.option("--cert", "cert_path", required=True, type=click.Path(exists=True),
              help="Certificate: PEM, base64 DER or binarySecurityToken")
@click.option("--key", "key_path", required=True, type=click.Path(exists=True), help="EC private key")
@click.option("--output", "output_path", default=None, help="Where to write the signed invoice")
def sign_invoice(invoice_path, cert_path, key_path, output_path):
    try:
        with CertificateHandle.from_files(cert_path, key_path) as handle:
            with open(invoice_path, "rb") as inf:
                result = invoice_signer.sign(inf.read(), handle)
    except ZatcaError as e:
        logger.error("Signing %s failed: %s", invoice_path, e)
        raise click.ClickException(str(e))

    if output_path is None:
        root, ext = os.path.splitext(invoice_path)
        output_path = f"{root}_signed{ext or '.xml'}"
    _write(output_path, result.signed_xml)

    logger.info("Signed %s -> %s", invoice_path, output_path)
    click.echo(f"Signed invoice saved at {output_path}")
    click.echo(f"Invoice hash: {result.invoice_hash}")
    click.echo(f"Digital signature: {result.digital_signature}")
    click.echo(f"QR code: {result.qr_code}")


@mycommands.command("hash-invoice")
@click.argument("invoice_path", type=click.Path(exists=True))
def hash_invoice(invoice_path):
    try:
        with open(invoice_path, "rb") as inf:
            click.echo(invoice_signer.get_hash(inf.read()))
    except ZatcaError as e:
        raise click.ClickException(str(e))


@mycommands.command("decode-qr")
@click.argument("payload")
def decode_qr(payload):
    try:
        fields = tlv.decode_base64(payload)
    except ZatcaError as e:
        raise click.ClickException(str(e))

    for field in fields:
        if field.kind == tlv.BYTES:
            value = base64.b64encode(field.value).decode("utf-8")
        else:
            value = field.value
        click.echo(f"{field.tag}: {value}")


if __name__ == "__main__":
    mycommands()
