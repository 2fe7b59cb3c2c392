"""Stripe payment service for PaymentIntents, refunds and webhooks.

Provides integration with Stripe using the StripeClient pattern. Every
call is bounded by a request timeout and Stripe's own network retries are
disabled; retrying is decided by the caller.
"""

import hashlib
import os
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from booking_core.utils.logging import get_logger

from .ssm_service import SSMServiceError, get_ssm_service, parameter_path

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10

# Expansions needed to read the payment method and settlement fee
PAYMENT_INTENT_EXPAND = ["payment_method", "latest_charge.balance_transaction"]


class StripeServiceError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(
        self,
        message: str,
        stripe_error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        """Initialize with message and optional Stripe error details.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
            http_status: HTTP status returned by Stripe if available.
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code
        self.http_status = http_status

    @property
    def is_not_found(self) -> bool:
        return self.stripe_error_code == "resource_missing" or self.http_status == 404


def to_plain(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject (or dict) into a plain recursive dict."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _wrap_error(action: str, e: stripe.StripeError) -> StripeServiceError:
    error_code = getattr(e, "code", None)
    if error_code is None and isinstance(e, stripe.APIConnectionError):
        error_code = "api_connection_error"
    logger.error("Stripe %s failed: %s (code: %s)", action, str(e), error_code)
    return StripeServiceError(
        f"Failed to {action}: {e}",
        stripe_error_code=error_code,
        http_status=getattr(e, "http_status", None),
    )


class StripeService:
    """Service for Stripe payment operations.

    Handles:
    - PaymentIntent creation (idempotent) and retrieval
    - PaymentMethod retrieval for instrument sync
    - Refund creation
    - Webhook signature validation

    Usage:
        stripe_svc = get_stripe_service()
        intent = stripe_svc.create_payment_intent(
            amount_cents=27000,
            currency="usd",
            metadata={"booking_id": "..."},
            idempotency_key="booking_BKG-261016-K7QM4",
        )
    """

    def __init__(
        self,
        environment: str | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        """Initialize Stripe service.

        Args:
            environment: Environment name (dev, prod). Defaults to ENVIRONMENT env var.
            timeout_seconds: Per-request timeout. Defaults to STRIPE_TIMEOUT_SECONDS.
        """
        self._environment = environment or os.environ.get("ENVIRONMENT", "dev")
        self._timeout = timeout_seconds or int(
            os.environ.get("STRIPE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        )
        self._ssm = get_ssm_service()
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            StripeServiceError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.resolve(
                    "STRIPE_SECRET_KEY",
                    parameter_path(self._environment, "stripe", "secret_key"),
                )
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to initialize Stripe client: {e}") from e

            self._client = StripeClient(
                secret_key,
                max_network_retries=0,
                http_client=stripe.RequestsClient(timeout=self._timeout),
            )
            logger.info("Stripe client initialized for environment: %s", self._environment)
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._ssm.resolve(
                    "STRIPE_WEBHOOK_SECRET",
                    parameter_path(self._environment, "stripe", "webhook_secret"),
                )
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to get webhook secret: {e}") from e
        return self._webhook_secret

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
        customer_id: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        """Create a PaymentIntent.

        Args:
            amount_cents: Amount in minor units.
            currency: ISO currency code.
            metadata: Correlation metadata (must include booking_id).
            idempotency_key: Key that makes repeated calls return the same intent.
            customer_id: Optional Stripe customer ID.
            description: Optional description shown in the dashboard.

        Returns:
            The PaymentIntent as a plain dict (id, client_secret, amount, status...).

        Raises:
            StripeServiceError: If creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        if description:
            params["description"] = description

        try:
            logger.info(
                "Creating PaymentIntent, amount %d %s, idempotency key %s",
                amount_cents,
                currency,
                idempotency_key,
            )
            intent = client.v1.payment_intents.create(
                params=params,  # type: ignore[arg-type]
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise _wrap_error("create payment intent", e) from e

        result = to_plain(intent)
        logger.info("PaymentIntent ready: %s", result.get("id"))
        return result

    def retrieve_payment_intent(
        self,
        payment_intent_id: str,
        expand: list[str] | None = None,
    ) -> dict[str, Any]:
        """Retrieve a PaymentIntent with optional expansions.

        Raises:
            StripeServiceError: If retrieval fails (see is_not_found).
        """
        client = self._get_client()
        params: dict[str, Any] = {}
        if expand:
            params["expand"] = expand

        try:
            intent = client.v1.payment_intents.retrieve(
                payment_intent_id,
                params=params,  # type: ignore[arg-type]
            )
        except stripe.StripeError as e:
            raise _wrap_error("retrieve payment intent", e) from e

        return to_plain(intent)

    def retrieve_payment_method(self, payment_method_id: str) -> dict[str, Any]:
        """Retrieve a PaymentMethod.

        Raises:
            StripeServiceError: If retrieval fails.
        """
        client = self._get_client()
        try:
            method = client.v1.payment_methods.retrieve(payment_method_id)
        except stripe.StripeError as e:
            raise _wrap_error("retrieve payment method", e) from e

        return to_plain(method)

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create a refund for a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx).
            amount_cents: Refund amount in cents. If None, full refund.
            reason: Reason for refund (stored in metadata).
            idempotency_key: Optional key to make the refund request idempotent.
            metadata: Extra metadata (booking_id, pending_refund_id...).

        Returns:
            Dict with refund_id, amount and status.

        Raises:
            StripeServiceError: If refund creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        refund_metadata = dict(metadata or {})
        if reason:
            refund_metadata["reason"] = reason
        if refund_metadata:
            params["metadata"] = refund_metadata

        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %s cents",
                payment_intent_id,
                amount_cents if amount_cents is not None else "full",
            )
            refund = client.v1.refunds.create(
                params=params,  # type: ignore[arg-type]
                options=options,  # type: ignore[arg-type]
            )
        except stripe.StripeError as e:
            raise _wrap_error("create refund", e) from e

        data = to_plain(refund)
        logger.info("Refund created: %s for PaymentIntent %s", data.get("id"), payment_intent_id)
        return {
            "refund_id": data["id"],
            "amount": data["amount"],
            "status": data.get("status"),
        }

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event as a plain dict.

        Raises:
            StripeServiceError: If signature is invalid.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise StripeServiceError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("Malformed webhook payload: %s", str(e))
            raise StripeServiceError("Invalid webhook payload") from e

        data = to_plain(event)
        logger.info("Webhook signature verified for event: %s", data.get("id"))
        return data

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of webhook payload for the audit log."""
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance (singleton pattern)."""
    return StripeService()
