"""Payment provider adapters."""
from voxelhub.domain.settlement.models import PayoutMethod
from voxelhub.infra.payments.base import PayoutProvider
from voxelhub.infra.payments.paypal_provider import PayPalPayoutProvider
from voxelhub.infra.payments.simulated import simulated_paypal, simulated_stripe
from voxelhub.infra.payments.stripe_provider import StripePayoutProvider


def build_providers(settings) -> dict[PayoutMethod, PayoutProvider]:
    """Simulated providers in development, live ones in production. Bank transfers have none."""
    if settings.is_development:
        return {
            PayoutMethod.STRIPE: simulated_stripe(),
            PayoutMethod.PAYPAL: simulated_paypal(),
        }
    return {
        PayoutMethod.STRIPE: StripePayoutProvider(settings.stripe_secret_key),
        PayoutMethod.PAYPAL: PayPalPayoutProvider(
            settings.paypal_client_id,
            settings.paypal_client_secret,
            settings.paypal_api_base,
            timeout=settings.paypal_timeout_seconds,
        ),
    }
