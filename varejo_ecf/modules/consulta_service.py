"""
VAREJO-ECF — Module 5: ConsultaService
Fetches the ECF export for one date range from the Varejo Fácil SOAP service.

Varejo Fácil ConsultaEcf Endpoint:
- URL: POST /TmConsultoria/VarejoFacil.asmx
- Headers: Content-Type: text/xml; charset=utf-8, SOAPAction: http://tempuri.org/ConsultaEcf
- Body: SOAP 1.1 envelope
    <tem:ConsultaEcf>
      <tem:ConsultaEcfRequest>
        <tem:dataInicial>DD.MM.YYYY</tem:dataInicial>
        <tem:dataFinal>DD.MM.YYYY</tem:dataFinal>
        <tem:estabelecimento>1</tem:estabelecimento>
      </tem:ConsultaEcfRequest>
    </tem:ConsultaEcf>
- Response: XML with repeated cupom / cupom_item / cupom_finalizadora /
  cupom_fichatecnica / cupom_resumo records
"""

import httpx
import logging
from typing import Optional
from xml.sax.saxutils import escape

from varejo_ecf.core.config import SOAP_ACTION_CONSULTA_ECF, get_service_url, settings
from varejo_ecf.modules.reconciler import reconcile_xml
from varejo_ecf.schemas.models import ConsultaResult, QueryParams

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when the ConsultaEcf request does not come back with a 2xx response."""
    def __init__(self, message: str, status_code: int = 502, response_text: str = None):
        self.message = message
        self.status_code = status_code
        self.response_text = response_text or ""
        super().__init__(self.message)


SOAP_ENVELOPE = """<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" xmlns:tem="http://tempuri.org/">
  <soapenv:Header/>
  <soapenv:Body>
    <tem:ConsultaEcf>
      <tem:ConsultaEcfRequest>
        <tem:dataInicial>{data_inicial}</tem:dataInicial>
        <tem:dataFinal>{data_final}</tem:dataFinal>
        <tem:estabelecimento>{estabelecimento}</tem:estabelecimento>
      </tem:ConsultaEcfRequest>
    </tem:ConsultaEcf>
  </soapenv:Body>
</soapenv:Envelope>"""


def build_envelope(params: QueryParams) -> str:
    return SOAP_ENVELOPE.format(
        data_inicial=escape(params.data_inicial),
        data_final=escape(params.data_final),
        estabelecimento=escape(params.estabelecimento),
    )


class ConsultaService:
    """
    Fetch collaborator for the ConsultaEcf query.

    Usage:
        service = ConsultaService()
        xml_text = await service.fetch_xml(params)
        result = await service.consultar(params)
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or get_service_url("consulta_ecf")
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.transport = transport

    async def fetch_xml(self, params: QueryParams) -> str:
        """
        Run ConsultaEcf for one date range and return the raw XML text.

        Raises:
            TransportError: Non-2xx response, timeout or connection failure
        """
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": SOAP_ACTION_CONSULTA_ECF,
        }

        logger.info(
            f"ConsultaEcf: {params.data_inicial}..{params.data_final}, "
            f"estabelecimento={params.estabelecimento}"
        )

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(
                    self.url, content=build_envelope(params).encode("utf-8"), headers=headers
                )

        except httpx.TimeoutException:
            raise TransportError(
                f"Timeout ao consultar o Varejo Fácil ({self.timeout_seconds}s).",
                status_code=504,
            )

        except httpx.ConnectError as e:
            raise TransportError(
                f"Não foi possível conectar ao Varejo Fácil: {e}", status_code=502
            )

        except httpx.HTTPError as e:
            logger.exception(f"HTTP error on ConsultaEcf: {e}")
            raise TransportError(f"Erro na requisição: {e}", status_code=502) from e

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> str:
        if 200 <= response.status_code < 300:
            return response.text

        raise TransportError(
            message=f"Erro na requisição: {response.status_code} {response.reason_phrase}",
            status_code=response.status_code,
            response_text=response.text[:300],
        )

    async def consultar(self, params: QueryParams) -> ConsultaResult:
        """Fetch and reconcile one date range. Raises TransportError or ParseError."""
        xml_text = await self.fetch_xml(params)
        return reconcile_xml(xml_text)