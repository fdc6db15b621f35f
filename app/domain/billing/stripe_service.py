"""Stripe service - Integration with the Stripe API"""

import logging
from typing import Optional

import stripe

from ...config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

logger = logging.getLogger(__name__)


class StripeNotConfiguredError(RuntimeError):
    """Raised when a Stripe call is attempted without STRIPE_SECRET_KEY"""


class StripeGateway:
    """Service for Stripe API operations"""

    def __init__(
        self,
        api_key: Optional[str] = STRIPE_SECRET_KEY,
        webhook_secret: Optional[str] = STRIPE_WEBHOOK_SECRET,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY not set; payment endpoints will fail until configured")

    def is_available(self) -> bool:
        """Check if Stripe is configured"""
        return bool(self.api_key)

    def _require(self) -> None:
        if not self.api_key:
            raise StripeNotConfiguredError("Stripe client not configured")

    async def get_or_create_customer(self, user) -> str:
        """Return the user's Stripe customer id, creating the customer on first use"""
        self._require()
        if user.stripe_customer_id:
            return user.stripe_customer_id

        try:
            customer = await stripe.Customer.create_async(
                api_key=self.api_key,
                email=user.email,
                name=user.name,
                metadata={"user_id": user.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer for {user.id}: {e}")
            raise

        logger.info(f"Created Stripe customer {customer['id']} for user {user.id}")
        return customer["id"]

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ):
        self._require()
        try:
            return await stripe.PaymentIntent.create_async(
                api_key=self.api_key,
                amount=amount,
                currency=currency.lower(),
                customer=customer_id,
                description=description,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create payment intent for {customer_id}: {e}")
            raise

    async def confirm_payment_intent(self, intent_id: str, payment_method_id: Optional[str] = None):
        """Confirm server side when a payment method is supplied; otherwise just retrieve"""
        self._require()
        try:
            if payment_method_id:
                return await stripe.PaymentIntent.confirm_async(
                    intent_id, api_key=self.api_key, payment_method=payment_method_id
                )
            return await stripe.PaymentIntent.retrieve_async(intent_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"Failed to confirm payment intent {intent_id}: {e}")
            raise

    async def refund_payment_intent(
        self, intent_id: str, amount: Optional[int] = None, reason: Optional[str] = None
    ):
        self._require()
        params = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = amount
        if reason:
            params["metadata"] = {"reason": reason}
        try:
            return await stripe.Refund.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Failed to refund payment intent {intent_id}: {e}")
            raise

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        trial_days: Optional[int] = None,
        metadata: Optional[dict] = None,
    ):
        self._require()
        params = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "metadata": metadata or {},
            "payment_behavior": "default_incomplete",
            "expand": ["latest_invoice.payment_intent"],
        }
        if trial_days:
            params["trial_period_days"] = trial_days
        try:
            return await stripe.Subscription.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Failed to create subscription for {customer_id}: {e}")
            raise

    async def cancel_subscription(self, subscription_id: str, immediately: bool = False):
        self._require()
        try:
            if immediately:
                return await stripe.Subscription.cancel_async(subscription_id, api_key=self.api_key)
            return await stripe.Subscription.modify_async(
                subscription_id, api_key=self.api_key, cancel_at_period_end=True
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to cancel subscription {subscription_id}: {e}")
            raise

    def construct_event(self, payload: bytes, signature: str):
        """Verify a webhook payload; raises ValueError or stripe.SignatureVerificationError"""
        if not self.webhook_secret:
            raise StripeNotConfiguredError("STRIPE_WEBHOOK_SECRET not configured")
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
