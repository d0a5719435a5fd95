"""Processor and platform fee calculation for card and bank-account payments"""

from dataclasses import dataclass
from decimal import Decimal

from dues_gateway.domain.exceptions import ValidationError
from dues_gateway.domain.models import FeeBreakdown, PaymentMethodType
from dues_gateway.domain.money import round_cents


@dataclass(frozen=True)
class FeeSchedule:
    """Fee constants; rates are fractions, fixed amounts are cents"""

    card_rate: Decimal = Decimal("0.029")
    card_fixed_cents: int = 30
    bank_rate: Decimal = Decimal("0.008")
    bank_cap_cents: int = 500
    platform_rate: Decimal = Decimal("0.01")


class FeeCalculator:
    """
    Computes who pays what for one installment charge.

    Fee-bearing policy:
    - Bank account: processor fee (0.8%, capped at $5) comes out of the
      chapter's share; the payer is charged the installment amount only.
    - Card: processor fee (2.9% + 30¢) is grossed up and passed to the payer so
      that after the processor takes its cut the full amount remains.
    - Platform fee (1%) is always deducted from the chapter's share.

    All rounding is half-up to the cent on exact Decimal values.
    """

    def __init__(self, schedule: FeeSchedule | None = None):
        self.schedule = schedule or FeeSchedule()

    def processor_fee(self, amount_cents: int, method_type: PaymentMethodType) -> int:
        amount = Decimal(amount_cents)
        if method_type == PaymentMethodType.BANK_ACCOUNT:
            return min(round_cents(amount * self.schedule.bank_rate), self.schedule.bank_cap_cents)

        # Reverse-calculate so amount + fee nets back to amount after the card fee
        gross = (amount + self.schedule.card_fixed_cents) / (Decimal(1) - self.schedule.card_rate)
        return round_cents(gross - amount)

    def platform_fee(self, amount_cents: int) -> int:
        return round_cents(Decimal(amount_cents) * self.schedule.platform_rate)

    def calculate(self, amount_cents: int, method_type: PaymentMethodType) -> FeeBreakdown:
        """Full fee split for a charge of amount_cents"""
        if amount_cents < 0:
            raise ValidationError("Charge amount cannot be negative")

        method_type = PaymentMethodType(method_type)
        processor_fee = self.processor_fee(amount_cents, method_type)
        platform_fee = self.platform_fee(amount_cents)

        if method_type == PaymentMethodType.BANK_ACCOUNT:
            total_charge = amount_cents
            net = amount_cents - processor_fee - platform_fee
        else:
            total_charge = amount_cents + processor_fee
            net = amount_cents - platform_fee

        return FeeBreakdown(
            method_type=method_type,
            base_cents=amount_cents,
            processor_fee_cents=processor_fee,
            platform_fee_cents=platform_fee,
            total_charge_cents=total_charge,
            net_cents=max(net, 0),
        )
