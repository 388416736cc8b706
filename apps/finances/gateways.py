"""
Payment Gateway Integrations

Card gateway (Stripe), alternate processor (PayPal) and the manual bank
transfer fallback. HTTP gateways translate every transport or protocol
problem into ExternalServiceError and every refusal into PaymentDeclined,
so the orchestrator only ever sees the PaymentError family.

With PAYMENT_GATEWAY_SANDBOX (or DEBUG) enabled the HTTP gateways emulate
the provider locally. Outside the sandbox every gateway in the chain must
have credentials; a missing key is a configuration error, never an
emulated success.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging
import time
import uuid

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from shared.domain.exceptions import ExternalServiceError, PaymentDeclined
from apps.finances.domain.entities import PaymentMethod

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


@dataclass(frozen=True)
class ChargeRequest:
    booking_id: UUID
    booking_number: str
    amount: Decimal
    currency: str
    correlation_id: str
    method: PaymentMethod = PaymentMethod.CREDIT_CARD
    payment_details: dict = field(default_factory=dict)
    description: str = ''
    # Seconds the whole attempt may take; None means the gateway default
    timeout: Optional[float] = None


@dataclass(frozen=True)
class GatewayResult:
    """Successful charge as reported by the provider"""
    transaction_id: str
    payment_id: str = ''
    raw: dict = field(default_factory=dict)

    def as_gateway_data(self) -> dict:
        return {**self.raw, 'transaction_id': self.transaction_id, 'payment_id': self.payment_id}


class PaymentGateway(ABC):
    name: str = ''

    def method_for(self, requested: PaymentMethod) -> PaymentMethod:
        """Payment method recorded on the ledger entry for this gateway"""
        return requested

    @abstractmethod
    def charge(self, request: ChargeRequest) -> GatewayResult:
        """
        Charge the renter or raise PaymentDeclined / ExternalServiceError

        Must give up within request.timeout: the orchestrator tries the next
        gateway as soon as this returns, so a timed-out call has to be
        aborted, not left running.
        """


class HttpPaymentGateway(PaymentGateway):
    """
    Shared HTTP plumbing

    Subclasses build the request and interpret the provider's body. The
    attempt deadline is passed to requests as the connect and read timeout,
    so a slow provider is cut off by the client itself.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, sandbox: bool = False,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.sandbox = sandbox
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _timeout_for(self, request: ChargeRequest) -> float:
        return request.timeout if request.timeout is not None else self.timeout

    def _post(self, path: str, timeout: float, **kwargs) -> requests.Response:
        try:
            return self.session.post(self._url(path), timeout=timeout, **kwargs)
        except requests.Timeout as e:
            raise ExternalServiceError(
                f"{self.name} did not answer within {timeout}s",
                gateway=self.name,
            ) from e
        except requests.RequestException as e:
            raise ExternalServiceError(f"{self.name} request failed: {e}", gateway=self.name) from e

    def _json(self, response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError(
                f"{self.name} returned a non-JSON body (HTTP {response.status_code})",
                gateway=self.name,
            ) from e
        if not isinstance(data, dict):
            raise ExternalServiceError(f"{self.name} returned an unexpected body", gateway=self.name)
        return data

    def _check_status(self, response: requests.Response) -> dict:
        """5xx -> ExternalServiceError, other 4xx -> PaymentDeclined"""
        if response.status_code >= 500:
            raise ExternalServiceError(
                f"{self.name} unavailable (HTTP {response.status_code})",
                gateway=self.name,
                response={'status_code': response.status_code},
            )
        data = self._json(response)
        if response.status_code >= 400:
            raise PaymentDeclined(
                self._error_message(data) or f"{self.name} declined (HTTP {response.status_code})",
                gateway=self.name,
                response=data,
            )
        return data

    def _error_message(self, data: dict) -> str:
        return ''

    def charge(self, request: ChargeRequest) -> GatewayResult:
        logger.info(
            f"Charging {request.amount} {request.currency} for booking {request.booking_number} "
            f"via {self.name} (correlation {request.correlation_id})"
        )

        if self.sandbox:
            logger.warning(f"Using {self.name} emulation (sandbox mode)")
            return self._emulate(request)

        result = self._charge(request)
        logger.info(f"{self.name} charge succeeded: {result.transaction_id}")
        return result

    @abstractmethod
    def _charge(self, request: ChargeRequest) -> GatewayResult:
        pass

    def _emulate(self, request: ChargeRequest) -> GatewayResult:
        # payment_details={'simulate': 'decline' | 'error'} exercises failure paths locally
        simulate = request.payment_details.get('simulate')
        if simulate == 'decline':
            raise PaymentDeclined(f"{self.name} sandbox declined the charge", gateway=self.name,
                                  response={'sandbox': True, 'status': 'declined'})
        if simulate == 'error':
            raise ExternalServiceError(f"{self.name} sandbox unavailable", gateway=self.name)

        payment_id = f"{self.name}_{uuid.uuid4().hex[:16]}"
        return GatewayResult(
            transaction_id=f"sandbox_{uuid.uuid4().hex[:16]}",
            payment_id=payment_id,
            raw={'sandbox': True, 'status': 'succeeded', 'amount': str(request.amount)},
        )


class StripeGateway(HttpPaymentGateway):
    """
    Card payments through Stripe PaymentIntents

    One confirmed PaymentIntent per attempt; the correlation id is the
    Idempotency-Key so a retried request never charges twice.
    """

    name = 'stripe'

    def __init__(self, api_key: str, base_url: str = 'https://api.stripe.com', **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    @classmethod
    def from_settings(cls, timeout: float, sandbox: bool) -> 'StripeGateway':
        api_key = getattr(settings, 'STRIPE_API_KEY', '')
        if not (api_key or sandbox):
            raise ImproperlyConfigured("STRIPE_API_KEY is required when PAYMENT_GATEWAY_SANDBOX is off")
        return cls(
            api_key=api_key,
            base_url=getattr(settings, 'STRIPE_API_BASE_URL', 'https://api.stripe.com'),
            timeout=timeout,
            sandbox=sandbox,
        )

    def _error_message(self, data: dict) -> str:
        error = data.get('error')
        if isinstance(error, str):
            return error
        if not isinstance(error, dict):
            return ''
        return error.get('decline_code') or error.get('message') or ''

    def _charge(self, request: ChargeRequest) -> GatewayResult:
        cents = int((request.amount * 100).to_integral_value())
        payload = {
            'amount': cents,
            'currency': request.currency.lower(),
            'confirm': 'true',
            'description': request.description or f"Booking {request.booking_number}",
            'metadata[booking_id]': str(request.booking_id),
            'metadata[booking_number]': request.booking_number,
        }
        if request.payment_details.get('payment_method'):
            payload['payment_method'] = request.payment_details['payment_method']

        response = self._post(
            '/v1/payment_intents',
            self._timeout_for(request),
            data=payload,
            headers={
                'Authorization': f"Bearer {self.api_key}",
                'Idempotency-Key': request.correlation_id,
            },
        )
        data = self._check_status(response)

        status = data.get('status')
        if status != 'succeeded':
            raise PaymentDeclined(f"Stripe payment intent ended in status {status}",
                                  gateway=self.name, response=data)
        if not data.get('id'):
            raise ExternalServiceError("Stripe response without payment intent id",
                                       gateway=self.name, response=data)

        return GatewayResult(
            transaction_id=data.get('latest_charge') or data['id'],
            payment_id=data['id'],
            raw={'status': status, 'amount': data.get('amount')},
        )


class PayPalGateway(HttpPaymentGateway):
    """
    Alternate processor: PayPal order created with immediate capture

    OAuth token first, then the order. PayPal-Request-Id carries the
    correlation id.
    """

    name = 'paypal'

    def __init__(self, client_id: str, secret: str,
                 base_url: str = 'https://api-m.paypal.com', **kwargs):
        super().__init__(base_url, **kwargs)
        self.client_id = client_id
        self.secret = secret

    @classmethod
    def from_settings(cls, timeout: float, sandbox: bool) -> 'PayPalGateway':
        client_id = getattr(settings, 'PAYPAL_CLIENT_ID', '')
        secret = getattr(settings, 'PAYPAL_SECRET', '')
        if not ((client_id and secret) or sandbox):
            raise ImproperlyConfigured(
                "PAYPAL_CLIENT_ID and PAYPAL_SECRET are required when PAYMENT_GATEWAY_SANDBOX is off"
            )
        return cls(
            client_id=client_id,
            secret=secret,
            base_url=getattr(settings, 'PAYPAL_API_BASE_URL', 'https://api-m.paypal.com'),
            timeout=timeout,
            sandbox=sandbox,
        )

    def method_for(self, requested: PaymentMethod) -> PaymentMethod:
        return PaymentMethod.PAYPAL

    def _error_message(self, data: dict) -> str:
        details = data.get('details')
        if isinstance(details, list) and details and isinstance(details[0], dict) and details[0].get('issue'):
            return str(details[0]['issue'])
        message = data.get('message')
        return message if isinstance(message, str) else ''

    def _access_token(self, timeout: float) -> str:
        response = self._post(
            '/v1/oauth2/token',
            timeout,
            data={'grant_type': 'client_credentials'},
            auth=(self.client_id, self.secret),
        )
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"PayPal authentication failed (HTTP {response.status_code})",
                gateway=self.name,
            )
        token = self._json(response).get('access_token')
        if not token:
            raise ExternalServiceError("PayPal returned no access token", gateway=self.name)
        return token

    def _charge(self, request: ChargeRequest) -> GatewayResult:
        # Token and order calls share the attempt deadline
        timeout = self._timeout_for(request)
        deadline = time.monotonic() + timeout
        token = self._access_token(timeout)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ExternalServiceError(f"{self.name} did not answer within {timeout}s", gateway=self.name)
        payload = {
            'intent': 'CAPTURE',
            'purchase_units': [{
                'reference_id': request.booking_number,
                'custom_id': str(request.booking_id),
                'amount': {'currency_code': request.currency, 'value': f"{request.amount:.2f}"},
            }],
        }
        if request.payment_details.get('payment_source'):
            payload['payment_source'] = request.payment_details['payment_source']

        response = self._post(
            '/v2/checkout/orders',
            remaining,
            json=payload,
            headers={
                'Authorization': f"Bearer {token}",
                'PayPal-Request-Id': request.correlation_id,
            },
        )
        data = self._check_status(response)

        status = data.get('status')
        if status != 'COMPLETED':
            raise PaymentDeclined(f"PayPal order ended in status {status}",
                                  gateway=self.name, response=data)

        try:
            capture_id = data['purchase_units'][0]['payments']['captures'][0]['id']
        except (KeyError, IndexError, TypeError):
            capture_id = data.get('id', '')
        if not capture_id:
            raise ExternalServiceError("PayPal response without order id", gateway=self.name, response=data)

        return GatewayResult(
            transaction_id=capture_id,
            payment_id=data.get('id', ''),
            raw={'status': status},
        )


class BankTransferGateway:
    """
    Manual bank transfer, the last resort of the fallback chain

    Never charges anything: it only produces the instructions stored on the
    pending ledger entry until an operator confirms the transfer.
    """

    name = 'bank'

    def __init__(self, account_name: str = '', iban: str = '', bank_name: str = ''):
        self.account_name = account_name
        self.iban = iban
        self.bank_name = bank_name

    @classmethod
    def from_settings(cls) -> 'BankTransferGateway':
        return cls(
            account_name=getattr(settings, 'BANK_TRANSFER_ACCOUNT_NAME', ''),
            iban=getattr(settings, 'BANK_TRANSFER_IBAN', ''),
            bank_name=getattr(settings, 'BANK_TRANSFER_BANK_NAME', ''),
        )

    def instructions(self, booking_number: str, amount: Decimal, currency: str) -> dict:
        return {
            'type': 'bank_transfer',
            'account_name': self.account_name,
            'iban': self.iban,
            'bank_name': self.bank_name,
            'reference': booking_number,
            'amount': f"{amount:.2f}",
            'currency': currency,
            'status': 'awaiting_transfer',
        }


GATEWAY_BUILDERS = {
    'stripe': StripeGateway.from_settings,
    'paypal': PayPalGateway.from_settings,
}


def build_gateway_chain(chain: Optional[str] = None, timeout: Optional[float] = None,
                        sandbox: Optional[bool] = None) -> List[PaymentGateway]:
    """Gateways in fallback order, from PAYMENT_GATEWAY_CHAIN (e.g. "stripe,paypal")"""
    chain = chain if chain is not None else getattr(settings, 'PAYMENT_GATEWAY_CHAIN', 'stripe,paypal')
    timeout = timeout if timeout is not None else getattr(settings, 'PAYMENT_GATEWAY_TIMEOUT', DEFAULT_TIMEOUT)
    if sandbox is None:
        sandbox = getattr(settings, 'PAYMENT_GATEWAY_SANDBOX', False) or settings.DEBUG

    gateways = []
    for name in (part.strip() for part in chain.split(',')):
        if not name:
            continue
        builder = GATEWAY_BUILDERS.get(name)
        if builder is None:
            raise ImproperlyConfigured(f"Unknown payment gateway in PAYMENT_GATEWAY_CHAIN: {name}")
        gateways.append(builder(timeout=timeout, sandbox=sandbox))
    return gateways
