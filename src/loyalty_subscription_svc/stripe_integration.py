import time
import logging
from typing import Any, Dict, List, Optional

import stripe

from loyalty_subscription_svc.config import get_settings


class StripeIntegration:
    """
    This class encapsulates the read-only integration with the Stripe API:
    webhook signature verification and invoice history, with a retry
    mechanism for transient connection failures.
    """

    def __init__(self, max_retries: Optional[int] = None, retry_delay: Optional[float] = None,
                 api_key: Optional[str] = None) -> None:
        settings = get_settings()
        api_key = api_key or settings.stripe_api_key
        if not api_key:
            raise EnvironmentError('Stripe API key (STRIPE_API_KEY) not set in environment variables.')
        stripe.api_key = api_key
        self.max_retries = settings.stripe_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.stripe_retry_delay if retry_delay is None else retry_delay

    def list_invoices(self, customer_ref: str, limit: int = 20) -> List[Dict[str, Any]]:
        """
        List the most recent invoices for a Stripe customer with retry mechanism.

        :param customer_ref: The ID of the customer in Stripe.
        :param limit: Maximum number of invoices to return.
        :return: Invoice summaries (id, amount, status, created, invoice_pdf, period bounds).
        :raises ValueError: if customer_ref is empty.
        :raises Exception: if listing fails after retries.
        """
        if not customer_ref or not customer_ref.strip():
            raise ValueError('customer_ref cannot be empty')
        attempt = 0
        while attempt < self.max_retries:
            try:
                invoices = stripe.Invoice.list(customer=customer_ref, limit=limit)
                return [self._summarize_invoice(invoice) for invoice in invoices['data']]
            except (stripe.AuthenticationError, stripe.APIConnectionError) as e:
                logging.error(f"Error listing invoices (attempt {attempt + 1}): {e}", exc_info=True)
                attempt += 1
                time.sleep(self.retry_delay)
            except Exception as e:
                logging.error(f"General error while listing invoices: {e}", exc_info=True)
                raise e
        raise Exception('Failed to list invoices after retries.')

    @staticmethod
    def _summarize_invoice(invoice) -> Dict[str, Any]:
        return {
            'id': invoice['id'],
            'amount': invoice.get('amount_paid') or invoice.get('total'),
            'status': invoice.get('status'),
            'created': invoice.get('created'),
            'invoice_pdf': invoice.get('invoice_pdf'),
            'period_start': invoice.get('period_start'),
            'period_end': invoice.get('period_end'),
        }

    def process_webhook_event(self, payload: str, sig_header: str, endpoint_secret: str) -> Dict[str, Any]:
        """
        Process and validate a webhook event from Stripe.

        :param payload: The raw payload from the webhook.
        :param sig_header: The Stripe-Signature header from the webhook.
        :param endpoint_secret: The webhook endpoint secret used for signature verification.
        :return: The reconstructed event from Stripe as a dictionary.
        :raises Exception: if signature verification or event processing fails.
        """
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
            return event
        except stripe.SignatureVerificationError as e:
            logging.error(f'Webhook signature verification failed: {e}', exc_info=True)
            raise Exception('Invalid signature.')
        except Exception as e:
            logging.error(f'General error processing webhook event: {e}', exc_info=True)
            raise e
